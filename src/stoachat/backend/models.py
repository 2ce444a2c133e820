"""Wire models for the remote chat backend.

The streaming endpoint answers with server-sent events, one JSON object per
``data:`` line: ``{"type": "<event type>", "data": {...}}``.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """Request body for the streaming chat endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(description="User message text")
    conversation_id: str | None = Field(
        default=None,
        alias="conversationId",
        description="Existing conversation to continue"
    )
    chat_mode: str = Field(default="task", alias="chatMode", description="task or habit")
    stream: bool = True

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class EventType(str, Enum):
    """Server-sent event types."""

    START = "start"        # Stream opened, may carry a server conversation id
    CHUNK = "chunk"        # Incremental text
    END = "end"            # Text finished, carries the full text
    COMPLETE = "complete"  # Final metadata, carries the authoritative message
    ERROR = "error"        # Terminal failure


class BackendEvent(BaseModel):
    """A single parsed server-sent event."""

    type: EventType
    data: dict[str, Any] = Field(default_factory=dict)


class StartPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    conversation_id: str | None = Field(default=None, alias="conversationId")


class ChunkPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: str = ""


class EndPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    full_text: str = Field(alias="fullText")


class CompletionPayload(BaseModel):
    """Authoritative end of a turn."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message: str = Field(description="Full assistant text, payloads included")
    conversation_id: str | None = Field(default=None, alias="conversationId")
    title: str | None = Field(default=None, description="Backend-generated conversation title")


class ErrorPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str = "Unknown streaming error"
