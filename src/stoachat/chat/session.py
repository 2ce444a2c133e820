"""Chat session: the view-model of one chat screen.

Wires the backend stream into the streaming state machine, keeps history in
sync with the remote backend and the local cache, and reacts to user and mode
changes. Every collaborator is passed in; nothing is looked up globally.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from enum import Enum

from ..backend.base import ChatBackend
from ..backend.cloud import error_from_event
from ..backend.models import (
    BackendEvent,
    ChatRequest,
    ChunkPayload,
    CompletionPayload,
    EndPayload,
    EventType,
    StartPayload,
)
from ..config import (
    HISTORY_LOAD_THROTTLE_SECONDS,
    MSG_HISTORY_LOAD_FAILED,
    STREAM_IDLE_TIMEOUT_SECONDS,
)
from ..context import StaticUserContextProvider, UserContext, UserContextProvider
from ..suggestions.base import SuggestionDetector
from ..suggestions.factory import create_detector_registry
from ..suggestions.models import DetectionContext
from .dispatcher import UIDispatcher
from .errors import (
    ChatBackendError,
    ParseError,
    RateLimitExceededError,
    ServerError,
    StreamInProgressError,
    classify_error,
)
from .events import ChatEvent, EventBus, HistoryLoadFailed, HistoryUpdated, StreamCompleted, StreamFailed
from .history import rehydrate_messages
from .models import ChatMessage, ChatMode, Conversation, SectionedHistory, utcnow
from .persistence import PersistenceGateway
from .store import Clock, ConversationStore
from .streaming import StreamingStateMachine

logger = logging.getLogger(__name__)


class LimitPrompt(str, Enum):
    """Which upsell a usage limit should trigger."""

    LOGIN = "login"      # Anonymous caller: ask them to sign in
    UPGRADE = "upgrade"  # Signed-in caller: offer premium


class ChatSession:
    """View-model for one chat screen.

    Args:
        backend: Remote chat backend
        gateway: History persistence; built from ``backend`` without a cache when None
        user_context: Current user provider
        detectors: Suggestion detector per chat mode
        store: Conversation view-state
        events: Event bus the presentation layer subscribes to
        dispatcher: Marshals chunk updates onto the UI-owning loop
        clock: Wall clock for timestamps and sections
        stream_timeout: Seconds without a backend event before the stream fails
        history_throttle: Minimum seconds between history reloads
        monotonic: Monotonic clock used for throttling
    """

    def __init__(
        self,
        backend: ChatBackend,
        gateway: PersistenceGateway | None = None,
        user_context: UserContextProvider | None = None,
        detectors: dict[ChatMode, SuggestionDetector] | None = None,
        store: ConversationStore | None = None,
        events: EventBus | None = None,
        dispatcher: UIDispatcher | None = None,
        clock: Clock = utcnow,
        stream_timeout: float | None = STREAM_IDLE_TIMEOUT_SECONDS,
        history_throttle: float = HISTORY_LOAD_THROTTLE_SECONDS,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.gateway = gateway or PersistenceGateway(backend)
        self.user_context = user_context or StaticUserContextProvider()
        self.detectors = detectors or create_detector_registry()
        self.store = store or ConversationStore(clock=clock)
        self.events = events or EventBus()
        self.dispatcher = dispatcher or UIDispatcher()
        self.clock = clock
        self.stream_timeout = stream_timeout
        self.history_throttle = history_throttle
        self._monotonic = monotonic

        self.machine = StreamingStateMachine(
            store=self.store,
            detectors=self.detectors,
            events=self.events,
            dispatcher=self.dispatcher,
            gateway=self.gateway,
            user_context=self.user_context,
        )

        self.is_loading = False
        self.is_loading_history = False
        self.history_error: str | None = None
        self.limit_prompt: LimitPrompt | None = None
        self.limit_message: str | None = None
        self.mode_restricted = False

        self._last_history_load: float | None = None
        self._history_generation = 0
        self._deferred_history: list[Conversation] | None = None
        self._send_target: str | None = None
        self._unsubscribe = self.events.subscribe(self._on_event)

    # View-state

    @property
    def messages(self) -> list[ChatMessage]:
        return self.store.messages

    @property
    def error(self) -> str | None:
        return self.store.error

    @property
    def history(self) -> list[Conversation]:
        return self.store.history

    @property
    def sections(self) -> list[SectionedHistory]:
        return self.store.sections

    @property
    def mode(self) -> ChatMode:
        return self.store.mode

    @property
    def is_streaming(self) -> bool:
        return self.machine.is_streaming

    @property
    def is_typing(self) -> bool:
        return self.machine.is_typing

    def _current_user(self) -> UserContext:
        return self.user_context.current()

    # Sending

    async def send_message(self, text: str) -> bool:
        """Send a user message and stream the reply into the store.

        Errors never propagate: they end up in ``error`` (and ``limit_prompt``
        for usage limits).

        Returns:
            False when the message was ignored (blank, or a send is outstanding)
        """
        if not text.strip():
            return False
        if self.is_loading:
            logger.info("Send ignored: a message is already being answered")
            return False

        self.is_loading = True
        self.store.error = None
        self.dismiss_limit_prompt()
        self.store.add_user_message(text)

        current = self.store.current_conversation
        request = ChatRequest(
            message=text,
            conversation_id=current.id if current else None,
            chat_mode=self.store.mode.value,
        )

        self._send_target = None
        try:
            await self._consume_stream(request)
        except StreamInProgressError:
            logger.warning("Stream rejected: another stream is still active")
        except asyncio.CancelledError:
            if self._send_target is not None:
                self.machine.cancel()
            raise
        except Exception as e:
            self._handle_failure(e, self._send_target)
        finally:
            self._send_target = None
            self.is_loading = False
        return True

    async def _next_event(self, stream) -> BackendEvent:
        if self.stream_timeout is None:
            return await anext(stream)
        return await asyncio.wait_for(anext(stream), self.stream_timeout)

    def _start(self, conversation_id: str | None = None) -> str:
        self._send_target = self.machine.start(conversation_id)
        return self._send_target

    async def _consume_stream(self, request: ChatRequest) -> None:
        stream = self.backend.stream_message(request)
        target_id: str | None = None
        full_text: str | None = None

        try:
            while True:
                try:
                    event = await self._next_event(stream)
                except StopAsyncIteration:
                    break

                if target_id is not None and self.machine.target_id != target_id:
                    logger.debug("Stream %s was cancelled; ignoring the rest of the reply", target_id)
                    return

                if event.type is EventType.START:
                    if target_id is None:
                        target_id = self._start(StartPayload.model_validate(event.data).conversation_id)
                    else:
                        logger.debug("Ignoring repeated start event")

                elif event.type is EventType.CHUNK:
                    if target_id is None:
                        target_id = self._start()
                    self.machine.receive_chunk(ChunkPayload.model_validate(event.data).text, target_id)

                elif event.type is EventType.END:
                    full_text = EndPayload.model_validate(event.data).full_text

                elif event.type is EventType.COMPLETE:
                    if target_id is None:
                        target_id = self._start()
                    self.machine.complete(CompletionPayload.model_validate(event.data), target_id)
                    return

                elif event.type is EventType.ERROR:
                    raise error_from_event(event)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if target_id is not None and self.machine.target_id != target_id:
            return

        if target_id is not None and full_text is not None:
            logger.info("Stream ended without a complete event; completing with the end text")
            self.machine.complete(CompletionPayload(message=full_text), target_id)
            return

        raise ParseError("Stream ended without a completion event")

    def _handle_failure(self, error: BaseException, target_id: str | None) -> None:
        if target_id is not None:
            classified = self.machine.fail(error, target_id)
            if classified is None:
                logger.debug("Dropping failure for a stream that already ended: %s", error)
                return
        else:
            classified = classify_error(error)
            self.store.error = classified.user_message
            logger.info("Send failed before streaming started: %s", classified.detail)

        self._apply_limit_prompt(classified)

    def _apply_limit_prompt(self, error: ChatBackendError) -> None:
        user = self._current_user()
        prompt: LimitPrompt | None = None

        if isinstance(error, RateLimitExceededError):
            prompt = LimitPrompt.LOGIN if not user.is_registered else LimitPrompt.UPGRADE
        elif isinstance(error, ServerError):
            lowered = error.detail.lower()
            if "anonymous" in lowered:
                prompt = LimitPrompt.LOGIN
            elif "free tier" in lowered or "upgrade to premium" in lowered:
                prompt = LimitPrompt.UPGRADE

        if prompt is not None:
            self.limit_prompt = prompt
            self.limit_message = error.user_message
            logger.info("Usage limit reached, prompting %s", prompt.value)

    def dismiss_limit_prompt(self) -> None:
        self.limit_prompt = None
        self.limit_message = None

    # History

    async def load_history(self, force: bool = False) -> bool:
        """Reload history from the backend.

        Throttled unless ``force``. While a stream is active the result is held
        back and applied when the stream ends.

        Returns:
            Whether a reload was performed successfully
        """
        now = self._monotonic()
        if not force and self._last_history_load is not None:
            if now - self._last_history_load < self.history_throttle:
                logger.debug("History reload throttled")
                return False
        self._last_history_load = now

        self._history_generation += 1
        generation = self._history_generation
        self.is_loading_history = True
        self.history_error = None

        try:
            conversations = await self.gateway.fetch_history(self.clock())
        except ChatBackendError as e:
            if generation == self._history_generation:
                self.is_loading_history = False
                self.history_error = f"{MSG_HISTORY_LOAD_FAILED}: {e.user_message}"
                logger.warning("History load failed: %s", e.detail)
                self.events.emit(HistoryLoadFailed(error_message=self.history_error))
            return False

        if generation != self._history_generation:
            logger.debug("Discarding superseded history load")
            return False
        self.is_loading_history = False

        if self.machine.is_streaming:
            logger.debug("Deferring history update until the active stream ends")
            self._deferred_history = conversations
            return True

        self._apply_history(conversations)
        return True

    def _apply_history(self, conversations: list[Conversation], keep: Conversation | None = None) -> None:
        self.store.replace_history(conversations)
        if keep is not None:
            self.store.upsert_conversation(keep)
        self.store.match_active_to_history(conversations, rehydrate=self._rehydrate)
        self.gateway.schedule_save(self.store.history)
        self.events.emit(HistoryUpdated(sections=self.store.sections))

    def _on_event(self, event: ChatEvent) -> None:
        if isinstance(event, (StreamCompleted, StreamFailed)) and self._deferred_history is not None:
            conversations, self._deferred_history = self._deferred_history, None
            # Fetched before the exchange ended, so it may predate the reply just saved
            keep = self.store.current_conversation if isinstance(event, StreamCompleted) else None
            self._apply_history(conversations, keep=keep)

    async def restore_cached_history(self) -> bool:
        """Seed history from the local cache when nothing is loaded yet."""
        cached = await self.gateway.load_cached()
        if not cached or self.store.history:
            return False
        self.store.replace_history(cached)
        self.events.emit(HistoryUpdated(sections=self.store.sections))
        logger.info("Restored %d conversations from cache", len(cached))
        return True

    def _rehydrate(self, conversation: Conversation) -> list[ChatMessage]:
        user_id = self._current_user().user_id
        return rehydrate_messages(
            conversation.messages,
            self.detectors[conversation.mode],
            lambda message: DetectionContext(user_id=user_id, message_id=message.id),
        )

    def load_conversation(self, conversation: Conversation) -> None:
        """Make a history entry the active conversation."""
        self.machine.cancel()
        self.store.set_current_conversation(conversation, self._rehydrate(conversation))
        logger.info("Loaded conversation %s in %s mode", conversation.id, conversation.mode.value)

    # Mode and lifecycle

    def switch_mode(self, mode: ChatMode | str) -> bool:
        """Switch chat mode, which always starts a new conversation.

        Habit mode needs a registered user; otherwise ``mode_restricted`` is
        set and nothing changes.
        """
        mode = ChatMode(mode)
        if mode is ChatMode.HABIT and not self._current_user().is_registered:
            self.mode_restricted = True
            logger.info("Habit mode requires a signed-in account")
            return False

        self.mode_restricted = False
        self.store.set_mode(mode)
        self.new_conversation()
        logger.info("Switched to %s mode", mode.display_name)
        return True

    def new_conversation(self) -> None:
        """Abandon any active stream and start an empty conversation."""
        self.machine.cancel()
        self.store.clear()
        self.dismiss_limit_prompt()

    async def handle_user_change(self, user: UserContext) -> None:
        """React to sign-in, anonymous sign-in and sign-out."""
        self.dismiss_limit_prompt()

        if user.is_registered:
            logger.info("User signed in; resetting chat and reloading history")
            self.new_conversation()
            await self.load_history(force=True)
            return

        self._history_generation += 1
        self.is_loading_history = False
        self.store.clear_history()
        await self.gateway.clear_cached()

        if user.is_authenticated:
            logger.info("Anonymous user; clearing history")
            self.store.current_conversation = None
        else:
            logger.info("User signed out; clearing chat and history")
            self.new_conversation()
            if self.store.mode is ChatMode.HABIT:
                self.store.set_mode(ChatMode.TASK)

        self.events.emit(HistoryUpdated(sections=self.store.sections))

    def cancel(self) -> bool:
        """Cancel the active stream, if any."""
        return self.machine.cancel()

    async def aclose(self) -> None:
        """Cancel streaming, flush cache writes and close the backend."""
        self.machine.cancel()
        self._unsubscribe()
        await self.gateway.flush()
        await self.backend.close()
