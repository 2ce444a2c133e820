"""Marshaling of state mutations onto the UI-owning context."""

import asyncio
import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class UIDispatcher:
    """Runs callables on the thread that owns the event loop.

    Calls made on the owning thread run immediately unless earlier calls from
    other threads are still queued, in which case they queue behind them.
    Calls from any other thread are queued with ``loop.call_soon_threadsafe``.
    Either way, calls run in submission order.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop
        self._thread_id = threading.get_ident()
        self._queued = 0
        self._lock = threading.Lock()

    def bind(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Bind to ``loop`` (the running loop by default) and the current thread."""
        self._loop = loop or asyncio.get_running_loop()
        self._thread_id = threading.get_ident()

    @property
    def on_owner_thread(self) -> bool:
        return threading.get_ident() == self._thread_id

    @property
    def queued(self) -> int:
        """Calls waiting to run on the owning loop."""
        return self._queued

    def dispatch(self, func: Callable[..., Any], *args: Any) -> None:
        """Call ``func`` on the UI-owning context."""
        if self._loop is None or (self.on_owner_thread and not self._queued):
            func(*args)
            return

        if self._loop.is_closed():
            logger.warning("Dropping %s: UI loop is closed", getattr(func, "__name__", func))
            return

        with self._lock:
            self._queued += 1
        self._loop.call_soon_threadsafe(self._run_queued, func, args)

    def _run_queued(self, func: Callable[..., Any], args: tuple) -> None:
        with self._lock:
            self._queued -= 1
        func(*args)
