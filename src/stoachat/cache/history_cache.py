"""Serialized history under a single cache key."""

import logging

from pydantic import TypeAdapter, ValidationError

from ..chat.models import Conversation
from ..config import HISTORY_CACHE_KEY
from .base import KeyValueStore

logger = logging.getLogger(__name__)

_history_adapter = TypeAdapter(list[Conversation])


class HistoryCache:
    """Reads and writes the full history list as one JSON blob.

    Absence or corruption reads as a cache miss.
    """

    def __init__(self, store: KeyValueStore, key: str = HISTORY_CACHE_KEY):
        self.store = store
        self.key = key

    async def save(self, history: list[Conversation]) -> None:
        await self.store.set(self.key, _history_adapter.dump_json(history))
        logger.debug("Cached %d conversations under %s", len(history), self.key)

    async def load(self) -> list[Conversation] | None:
        data = await self.store.get(self.key)
        if data is None:
            return None
        try:
            return _history_adapter.validate_json(data)
        except ValidationError as e:
            logger.warning("Discarding corrupt history cache: %d errors", e.error_count())
            return None

    async def clear(self) -> None:
        await self.store.delete(self.key)
