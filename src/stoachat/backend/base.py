from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from .models import BackendEvent, ChatRequest


class ChatBackend(ABC):
    """Abstract base class for remote chat backends.

    This module hides the design decision of how the assistant is reached.
    Implementations must handle:
    - Transport and authentication
    - Decoding the event stream into ``BackendEvent`` objects
    - Mapping transport and server failures to ``ChatBackendError`` subclasses

    Supports async context manager protocol for proper resource cleanup:
        async with backend:
            async for event in backend.stream_message(request):
                ...
    """

    @abstractmethod
    def stream_message(self, request: ChatRequest) -> AsyncIterator[BackendEvent]:
        """Send a message and iterate over the reply's events.

        Args:
            request: Message, conversation id and chat mode

        Returns:
            Async iterator of events, ending after ``complete``

        Raises:
            ChatBackendError: On transport failures, HTTP errors and ``error`` events
        """

    @abstractmethod
    async def fetch_history(self) -> list[dict[str, Any]]:
        """Fetch the caller's conversation records.

        Raises:
            ChatBackendError: On transport failures or malformed responses
        """

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections or resources."""

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Get the backend type identifier."""

    async def __aenter__(self) -> "ChatBackend":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit with automatic cleanup."""
        await self.close()
