"""Events emitted by the chat core.

A presentation layer subscribes to these instead of observing state. Events
are delivered synchronously, in emission order, on the UI-owning context.
"""

import logging
from collections.abc import Callable

from pydantic import BaseModel, ConfigDict

from ..suggestions.models import Suggestion
from .models import SectionedHistory

logger = logging.getLogger(__name__)


class ChatEvent(BaseModel):
    """Base class for chat events."""

    model_config = ConfigDict(frozen=True)


class StreamStarted(ChatEvent):
    """An assistant placeholder was created and is receiving chunks."""

    message_id: str
    conversation_id: str


class ChunkApplied(ChatEvent):
    """A chunk was appended to the streaming target."""

    message_id: str
    chunk: str
    raw_text: str
    cleaned_text: str


class StreamCompleted(ChatEvent):
    """The streaming target received its authoritative text."""

    message_id: str
    conversation_id: str
    cleaned_text: str
    suggestion: Suggestion | None = None


class StreamFailed(ChatEvent):
    """The streaming target was removed after a failure or cancellation."""

    message_id: str
    error_message: str | None = None
    cancelled: bool = False


class HistoryUpdated(ChatEvent):
    """History (and its sections) changed."""

    sections: list[SectionedHistory]


class HistoryLoadFailed(ChatEvent):
    """A history reload failed; the previous history is unchanged."""

    error_message: str


EventHandler = Callable[[ChatEvent], None]


class EventBus:
    """Fan-out of chat events to subscribers.

    A subscriber that raises is logged and skipped; it never interrupts a
    state transition or the remaining subscribers.
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler.

        Returns:
            Callable that removes the handler again
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, event: ChatEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", type(event).__name__)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)
