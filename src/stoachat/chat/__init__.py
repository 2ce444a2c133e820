"""Chat core for stoachat.

Streaming ingestion, the conversation store with sectioned history, and the
session view-model that ties them to the backend and the local cache.
"""

from .dispatcher import UIDispatcher
from .errors import (
    ChatBackendError,
    NetworkError,
    NotAuthenticatedError,
    ParseError,
    RateLimitExceededError,
    ServerError,
    StreamInProgressError,
    StreamTimeoutError,
    classify_error,
)
from .events import (
    ChatEvent,
    ChunkApplied,
    EventBus,
    HistoryLoadFailed,
    HistoryUpdated,
    StreamCompleted,
    StreamFailed,
    StreamStarted,
)
from .history import infer_mode, parse_history, parse_timestamp, rehydrate_messages
from .models import Author, ChatMessage, ChatMode, Conversation, HistorySection, SectionedHistory
from .persistence import PersistenceGateway
from .session import ChatSession, LimitPrompt
from .store import ConversationStore, generate_title, new_conversation_id, sectionize
from .streaming import StreamingStateMachine, StreamState
from .typewriter import Typewriter

__all__ = [
    "Author",
    "ChatBackendError",
    "ChatEvent",
    "ChatMessage",
    "ChatMode",
    "ChatSession",
    "ChunkApplied",
    "Conversation",
    "ConversationStore",
    "EventBus",
    "HistoryLoadFailed",
    "HistorySection",
    "HistoryUpdated",
    "LimitPrompt",
    "NetworkError",
    "NotAuthenticatedError",
    "ParseError",
    "PersistenceGateway",
    "RateLimitExceededError",
    "SectionedHistory",
    "ServerError",
    "StreamCompleted",
    "StreamFailed",
    "StreamInProgressError",
    "StreamStarted",
    "StreamState",
    "StreamTimeoutError",
    "StreamingStateMachine",
    "Typewriter",
    "UIDispatcher",
    "classify_error",
    "generate_title",
    "infer_mode",
    "new_conversation_id",
    "parse_history",
    "parse_timestamp",
    "rehydrate_messages",
    "sectionize",
]
