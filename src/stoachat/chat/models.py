"""Data models for chat conversations.

These models define messages, conversations and history sections
independent of where they are stored or how they are rendered.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from uuid_extensions import uuid7

from ..suggestions.models import ChatMode, Suggestion

__all__ = [
    "Author",
    "ChatMessage",
    "ChatMode",
    "Conversation",
    "HistorySection",
    "SectionedHistory",
    "utcnow",
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Author(str, Enum):
    """Who wrote a message."""

    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """A single chat turn.

    Mutated in place while it is the streaming target; ``id``, ``author`` and
    ``timestamp`` never change after creation.
    """

    id: str = Field(default_factory=lambda: str(uuid7()), frozen=True)
    author: Author = Field(frozen=True)
    raw_text: str = Field(default="", description="Full text as sent or received, payloads included")
    cleaned_text: str | None = Field(
        default=None,
        description="Text with payloads and generation flags removed"
    )
    suggestion: Suggestion | None = Field(
        default=None,
        description="Structured suggestion found in the complete text"
    )
    timestamp: datetime = Field(default_factory=utcnow, frozen=True)

    @property
    def is_user(self) -> bool:
        return self.author is Author.USER

    @property
    def display_text(self) -> str:
        """Text to show: cleaned when available, raw otherwise."""
        return self.cleaned_text if self.cleaned_text is not None else self.raw_text

    def same_turn(self, other: "ChatMessage") -> bool:
        """Whether two messages carry the same text from the same author."""
        return self.author is other.author and self.raw_text == other.raw_text


class Conversation(BaseModel):
    """A conversation in the history list.

    Replaced wholesale in the history list rather than versioned.
    """

    id: str = Field(frozen=True)
    title: str
    mode: ChatMode = Field(frozen=True, description="Sticky for the conversation's lifetime")
    messages: list[ChatMessage] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utcnow, description="Last-modified time")

    @property
    def last_message_preview(self) -> str:
        if not self.messages:
            return "No messages"
        text = self.messages[-1].display_text
        return text[:30] + "..." if len(text) > 30 else text


class HistorySection(str, Enum):
    """Relative-time bucket for history display, in display order."""

    TODAY = "Today"
    YESTERDAY = "Yesterday"
    LAST_WEEK = "Last Week"
    EARLIER = "Earlier"


class SectionedHistory(BaseModel):
    """Conversations that fall in one history section."""

    model_config = ConfigDict(frozen=True)

    section: HistorySection
    conversations: list[Conversation]
