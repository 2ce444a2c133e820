"""Abstract base class for local key-value caches.

This module defines the interface for local byte storage.
The abstraction hides:
- Storage location (process memory, SQLite file)
- Connection management
"""

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """Abstract key-value byte store.

    Values are opaque bytes; callers own serialization.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the store."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the store gracefully."""

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Read a value, None when absent."""

    @abstractmethod
    async def set(self, key: str, value: bytes) -> None:
        """Write a value, replacing any previous one."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a value if present."""

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Get the backend type identifier."""
