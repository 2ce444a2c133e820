"""Persistence gateway: remote history plus the local history cache.

Cache writes are fire-and-forget from the caller's point of view. Failures
are logged and never reach the user.
"""

import asyncio
import logging
from datetime import datetime

from ..backend.base import ChatBackend
from ..cache.history_cache import HistoryCache
from .errors import ChatBackendError, classify_error
from .history import parse_history
from .models import Conversation

logger = logging.getLogger(__name__)


class PersistenceGateway:
    """Loads and saves conversation history.

    Args:
        backend: Remote backend serving history records
        cache: Local history cache; caching is disabled when None
    """

    def __init__(self, backend: ChatBackend, cache: HistoryCache | None = None):
        self.backend = backend
        self.cache = cache
        self._pending: set[asyncio.Task] = set()

    async def fetch_history(self, now: datetime) -> list[Conversation]:
        """Fetch and parse remote history.

        Raises:
            ChatBackendError: Classified failure of the remote fetch
        """
        try:
            records = await self.backend.fetch_history()
        except ChatBackendError:
            raise
        except Exception as e:
            raise classify_error(e) from e
        return parse_history(records, now)

    async def load_cached(self) -> list[Conversation] | None:
        """Read cached history. Any failure reads as a cache miss."""
        if self.cache is None:
            return None
        try:
            return await self.cache.load()
        except Exception:
            logger.warning("Failed to read history cache", exc_info=True)
            return None

    async def save(self, history: list[Conversation]) -> None:
        """Write history to the cache, logging and swallowing failures."""
        if self.cache is None:
            return
        try:
            await self.cache.save(history)
        except Exception:
            logger.warning("Failed to cache chat history", exc_info=True)

    async def clear_cached(self) -> None:
        """Drop cached history once scheduled writes have landed."""
        if self.cache is None:
            return
        await self.flush()
        try:
            await self.cache.clear()
        except Exception:
            logger.warning("Failed to clear history cache", exc_info=True)

    def schedule_save(self, history: list[Conversation]) -> asyncio.Task | None:
        """Start a background cache write of a snapshot of ``history``.

        Returns:
            The write task, or None when caching is disabled or no loop is running
        """
        if self.cache is None:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; skipping history cache write")
            return None

        snapshot = [c.model_copy(deep=True) for c in history]
        task = loop.create_task(self.save(snapshot))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def flush(self) -> None:
        """Wait for all scheduled cache writes to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
