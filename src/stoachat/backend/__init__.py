from .base import ChatBackend
from .cloud import CloudFunctionBackend, iter_events, iter_lines, parse_sse_line
from .factory import create_chat_backend
from .models import (
    BackendEvent,
    ChatRequest,
    ChunkPayload,
    CompletionPayload,
    EndPayload,
    ErrorPayload,
    EventType,
    StartPayload,
)

__all__ = [
    "ChatBackend",
    "create_chat_backend",
    "CloudFunctionBackend",
    "BackendEvent",
    "ChatRequest",
    "ChunkPayload",
    "CompletionPayload",
    "EndPayload",
    "ErrorPayload",
    "EventType",
    "StartPayload",
    "iter_events",
    "iter_lines",
    "parse_sse_line",
]
