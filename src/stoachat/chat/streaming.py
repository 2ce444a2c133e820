"""Streaming ingestion state machine.

Owns the lifecycle of one in-flight assistant reply:

    IDLE -> STREAMING -> COMPLETING -> IDLE
                     \\-> FAILED -----/

The active streaming target is identified by message id. Any callback that
names a different target, or arrives while no target is active, is dropped.
"""

import logging
from enum import Enum
from typing import TYPE_CHECKING

from ..backend.models import CompletionPayload
from ..context import StaticUserContextProvider, UserContextProvider
from ..suggestions.base import SuggestionDetector
from ..suggestions.factory import create_detector_registry
from ..suggestions.models import DetectionContext
from .dispatcher import UIDispatcher
from .errors import ChatBackendError, ServerError, StreamInProgressError, classify_error
from .events import (
    ChunkApplied,
    EventBus,
    HistoryUpdated,
    StreamCompleted,
    StreamFailed,
    StreamStarted,
)
from .models import Author, ChatMessage, ChatMode
from .store import ConversationStore

if TYPE_CHECKING:
    from .persistence import PersistenceGateway

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    """Lifecycle state of the streaming target."""

    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETING = "completing"
    FAILED = "failed"


class StreamingStateMachine:
    """Applies backend stream events to the conversation store.

    All methods mutate the store and must run on the UI-owning context, with
    the exception of ``receive_chunk`` which may be called from any thread.

    Args:
        store: Conversation view-state
        detectors: Suggestion detector per chat mode
        events: Bus that receives stream and history events
        dispatcher: Marshals chunk updates onto the UI-owning context
        gateway: Persists history after each completed exchange
        user_context: Supplies the user id handed to detectors
    """

    def __init__(
        self,
        store: ConversationStore,
        detectors: dict[ChatMode, SuggestionDetector] | None = None,
        events: EventBus | None = None,
        dispatcher: UIDispatcher | None = None,
        gateway: "PersistenceGateway | None" = None,
        user_context: UserContextProvider | None = None,
    ):
        self.store = store
        self.detectors = detectors or create_detector_registry()
        self.events = events or EventBus()
        self.dispatcher = dispatcher or UIDispatcher()
        self.gateway = gateway
        self.user_context = user_context or StaticUserContextProvider()

        self._state = StreamState.IDLE
        self._target_id: str | None = None

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def target_id(self) -> str | None:
        """Id of the assistant message currently receiving chunks."""
        return self._target_id

    @property
    def is_streaming(self) -> bool:
        return self._state is not StreamState.IDLE

    @property
    def is_typing(self) -> bool:
        """True while streaming and nothing has arrived yet."""
        if self._state is not StreamState.STREAMING or self._target_id is None:
            return False
        target = self.store.find_message(self._target_id)
        return target is not None and not target.raw_text

    @property
    def detector(self) -> SuggestionDetector:
        return self.detectors[self.store.mode]

    def _is_current(self, target_id: str | None) -> bool:
        if self._state is not StreamState.STREAMING or self._target_id is None:
            return False
        return target_id is None or target_id == self._target_id

    def start(self, conversation_id: str | None = None) -> str:
        """Open a turn with an empty assistant placeholder.

        Args:
            conversation_id: Server-assigned conversation id to adopt

        Returns:
            Id of the new streaming target

        Raises:
            StreamInProgressError: If a stream is already active
        """
        if self._state is not StreamState.IDLE:
            raise StreamInProgressError(
                f"Cannot start a stream while {self._state.value} (target {self._target_id})"
            )

        if conversation_id:
            self.store.current_conversation_id = conversation_id

        placeholder = ChatMessage(author=Author.ASSISTANT, timestamp=self.store.now())
        self.store.append_message(placeholder)
        self._target_id = placeholder.id
        self._state = StreamState.STREAMING

        logger.debug("Stream started: target %s", placeholder.id)
        self.events.emit(
            StreamStarted(message_id=placeholder.id, conversation_id=self.store.current_conversation_id)
        )
        return placeholder.id

    def receive_chunk(self, text: str, target_id: str | None = None) -> None:
        """Append a chunk to the streaming target. Safe to call from any thread."""
        self.dispatcher.dispatch(self._apply_chunk, text, target_id)

    def _apply_chunk(self, text: str, target_id: str | None) -> None:
        if not self._is_current(target_id):
            logger.debug("Dropping chunk for inactive target %s", target_id or self._target_id)
            return

        target = self.store.find_message(self._target_id)
        if target is None:
            logger.warning("Dropping chunk: target %s is not in the message list", self._target_id)
            return

        target.raw_text += text
        target.cleaned_text = self.detector.clean_streaming_text(target.raw_text)
        self.events.emit(
            ChunkApplied(
                message_id=target.id,
                chunk=text,
                raw_text=target.raw_text,
                cleaned_text=target.cleaned_text,
            )
        )

    def complete(self, payload: CompletionPayload, target_id: str | None = None) -> ChatMessage | None:
        """Finish the turn with the authoritative full text.

        Adopts backend metadata, overwrites the raw text, runs detection once,
        persists the conversation and returns to idle.

        Returns:
            The completed message, or None when the call was stale
        """
        if not self._is_current(target_id):
            logger.debug("Ignoring completion for inactive target %s", target_id or self._target_id)
            return None

        self._state = StreamState.COMPLETING
        message_id = self._target_id
        try:
            if payload.conversation_id:
                self.store.current_conversation_id = payload.conversation_id

            target = self.store.find_message(message_id)
            if target is not None:
                detector = self.detector
                target.raw_text = payload.message
                context = DetectionContext(user_id=self.user_context.current().user_id, message_id=message_id)
                target.suggestion = detector.detect(payload.message, context)
                target.cleaned_text = detector.clean_text(payload.message)

                self.store.save_active(payload.title)
                if self.gateway is not None:
                    self.gateway.schedule_save(self.store.history)
        finally:
            self._target_id = None
            self._state = StreamState.IDLE

        if target is None:
            logger.warning("Completion target %s is no longer in the message list", message_id)
            self.events.emit(StreamFailed(message_id=message_id, cancelled=True))
            return None

        logger.info(
            "Stream completed: target %s, suggestion=%s",
            message_id,
            target.suggestion.kind if target.suggestion else None,
        )
        self.events.emit(HistoryUpdated(sections=self.store.sections))
        self.events.emit(
            StreamCompleted(
                message_id=message_id,
                conversation_id=self.store.current_conversation_id,
                cleaned_text=target.cleaned_text,
                suggestion=target.suggestion,
            )
        )
        return target

    def fail(self, error: BaseException, target_id: str | None = None) -> ChatBackendError | None:
        """Abort the turn: remove the placeholder and surface the error.

        Returns:
            The classified error, or None when the call was stale
        """
        if not self._is_current(target_id):
            logger.debug("Ignoring failure for inactive target %s: %s", target_id or self._target_id, error)
            return None

        self._state = StreamState.FAILED
        message_id = self._target_id
        classified: ChatBackendError = ServerError(f"Unexpected error: {type(error).__name__}")
        try:
            classified = classify_error(error)
            self.store.remove_message(message_id)
            self.store.error = classified.user_message
        finally:
            self._target_id = None
            self._state = StreamState.IDLE

        logger.info("Stream failed: %s (%s)", type(classified).__name__, classified.detail)
        self.events.emit(StreamFailed(message_id=message_id, error_message=classified.user_message))
        return classified

    def cancel(self) -> bool:
        """Abandon the turn without surfacing an error.

        Returns:
            Whether a stream was active
        """
        if self._state is not StreamState.STREAMING or self._target_id is None:
            return False

        message_id = self._target_id
        try:
            self.store.remove_message(message_id)
        finally:
            self._target_id = None
            self._state = StreamState.IDLE

        logger.info("Stream cancelled: target %s", message_id)
        self.events.emit(StreamFailed(message_id=message_id, cancelled=True))
        return True
