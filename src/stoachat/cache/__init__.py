"""Local cache module for stoachat.

Keeps a copy of conversation history on the device for fast startup.
"""

from .base import KeyValueStore
from .factory import create_key_value_store
from .history_cache import HistoryCache
from .in_memory import InMemoryKeyValueStore

__all__ = [
    "HistoryCache",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "create_key_value_store",
]
