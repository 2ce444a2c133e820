"""Typewriter reveal of streamed text.

Decoupled from chunk arrival: the target grows as chunks land, and the shown
prefix catches up at a fixed rate.
"""

import asyncio
from collections.abc import Awaitable, Callable

from ..config import TYPEWRITER_CHARS_PER_SECOND


class Typewriter:
    """Reveals a target text a few characters at a time.

    Args:
        chars_per_second: Reveal speed
        sleep: Awaitable sleep, replaceable in tests
    """

    def __init__(
        self,
        chars_per_second: float = TYPEWRITER_CHARS_PER_SECOND,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if chars_per_second <= 0:
            raise ValueError("chars_per_second must be positive")
        self.chars_per_second = chars_per_second
        self._sleep = sleep
        self._target = ""
        self._shown_count = 0

    @property
    def target(self) -> str:
        return self._target

    @property
    def shown(self) -> str:
        return self._target[:self._shown_count]

    @property
    def done(self) -> bool:
        return self._shown_count >= len(self._target)

    def set_target(self, text: str) -> None:
        """Replace the text being revealed.

        Progress is kept when the new text extends what is already shown;
        otherwise the reveal starts over.
        """
        if not text.startswith(self.shown):
            self._shown_count = 0
        self._target = text

    def advance(self, count: int = 1) -> str:
        self._shown_count = min(len(self._target), self._shown_count + max(count, 0))
        return self.shown

    def finish(self) -> str:
        """Show the whole target at once."""
        self._shown_count = len(self._target)
        return self.shown

    async def run(self, on_update: Callable[[str], None]) -> None:
        """Reveal until the shown text catches up with the target."""
        interval = 1.0 / self.chars_per_second
        while not self.done:
            await self._sleep(interval)
            on_update(self.advance())
