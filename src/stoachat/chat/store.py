"""In-memory conversation store and history sectioning.

The store holds the view-state of one chat screen: the active message list,
the history list and its date sections. Only the streaming state machine and
the session write to it, always from the UI-owning context.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone, tzinfo
from uuid import uuid4

from ..config import DEFAULT_CONVERSATION_TITLE, LAST_WEEK_DAYS, TITLE_MAX_WORDS
from .models import (
    Author,
    ChatMessage,
    ChatMode,
    Conversation,
    HistorySection,
    SectionedHistory,
    utcnow,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def new_conversation_id(now: datetime | None = None) -> str:
    """Generate a client-side conversation id: ISO timestamp plus a random suffix."""
    now = (now or utcnow()).astimezone(timezone.utc)
    return f"{now.strftime('%Y-%m-%dT%H:%M:%SZ')}-{uuid4().hex[:8].upper()}"


def generate_title(messages: Iterable[ChatMessage]) -> str:
    """Title from the first user message: its first few words, or a default."""
    first = next((m for m in messages if m.is_user and m.raw_text.strip()), None)
    if first is None:
        return DEFAULT_CONVERSATION_TITLE

    words = first.raw_text.split()
    if len(words) <= TITLE_MAX_WORDS:
        return first.raw_text.strip()
    return " ".join(words[:TITLE_MAX_WORDS]) + "..."


def _local_date(timestamp: datetime, now: datetime):
    if now.tzinfo is None:
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone().replace(tzinfo=None)
        return timestamp.date()

    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(now.tzinfo).date()


def _section_for(day_offset: int) -> HistorySection:
    # Future timestamps (clock skew) land in Today
    if day_offset <= 0:
        return HistorySection.TODAY
    if day_offset == 1:
        return HistorySection.YESTERDAY
    if day_offset <= LAST_WEEK_DAYS:
        return HistorySection.LAST_WEEK
    return HistorySection.EARLIER


def sectionize(conversations: Iterable[Conversation], now: datetime) -> list[SectionedHistory]:
    """Partition conversations into relative-day sections.

    Day boundaries are calendar days in ``now``'s time zone (the local zone when
    ``now`` is naive). Timestamps in the future count as today. Sections are
    returned in display order, newest first inside each, and empty sections
    are omitted.

    Args:
        conversations: Conversations to partition
        now: Reference time

    Returns:
        Non-empty sections in display order
    """
    today = now.date()
    buckets: dict[HistorySection, list[Conversation]] = {section: [] for section in HistorySection}

    for conversation in conversations:
        offset = (today - _local_date(conversation.timestamp, now)).days
        buckets[_section_for(offset)].append(conversation)

    return [
        SectionedHistory(
            section=section,
            conversations=sorted(items, key=lambda c: _sort_key(c.timestamp), reverse=True),
        )
        for section, items in buckets.items()
        if items
    ]


def _sort_key(timestamp: datetime) -> float:
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc).timestamp()
    return timestamp.timestamp()


class ConversationStore:
    """View-state for the active conversation and the history list.

    Args:
        clock: Returns the current time (timezone-aware)
        tz: Time zone used for history sections; the local zone when None
    """

    def __init__(self, clock: Clock = utcnow, tz: tzinfo | None = None):
        self._clock = clock
        self._tz = tz

        self.messages: list[ChatMessage] = []
        self.error: str | None = None
        self.history: list[Conversation] = []
        self.sections: list[SectionedHistory] = []
        self.current_conversation: Conversation | None = None
        self.current_conversation_id: str = new_conversation_id(clock())
        self.mode: ChatMode = ChatMode.TASK

    def now(self) -> datetime:
        return self._clock()

    # Active messages

    def append_message(self, message: ChatMessage) -> None:
        self.messages.append(message)

    def find_message(self, message_id: str) -> ChatMessage | None:
        return next((m for m in self.messages if m.id == message_id), None)

    def remove_message(self, message_id: str) -> bool:
        """Remove a message by id. Returns whether anything was removed."""
        before = len(self.messages)
        self.messages = [m for m in self.messages if m.id != message_id]
        return len(self.messages) != before

    def add_user_message(self, text: str) -> ChatMessage:
        message = ChatMessage(author=Author.USER, raw_text=text, timestamp=self._clock())
        self.append_message(message)
        return message

    def set_mode(self, mode: ChatMode) -> None:
        self.mode = ChatMode(mode)

    # History

    def recompute_sections(self) -> list[SectionedHistory]:
        self.sections = sectionize(self.history, self._clock().astimezone(self._tz))
        return self.sections

    def upsert_conversation(self, conversation: Conversation) -> None:
        """Replace the entry with the same id, or insert it at the front."""
        for index, existing in enumerate(self.history):
            if existing.id == conversation.id:
                self.history[index] = conversation
                break
        else:
            self.history.insert(0, conversation)
        self.recompute_sections()

    def replace_history(self, conversations: list[Conversation]) -> None:
        self.history = list(conversations)
        self.recompute_sections()

    def clear_history(self) -> None:
        self.replace_history([])

    def save_active(self, title: str | None = None) -> Conversation:
        """Snapshot the active messages into the history list.

        Args:
            title: Backend-supplied title; derived from the first user message when None

        Returns:
            The stored conversation, now also the current conversation
        """
        conversation = Conversation(
            id=self.current_conversation_id,
            title=title or generate_title(self.messages),
            mode=self.mode,
            messages=[m.model_copy(deep=True) for m in self.messages],
            timestamp=self._clock(),
        )
        self.upsert_conversation(conversation)
        self.current_conversation = conversation
        logger.debug("Saved conversation %s (%d messages)", conversation.id, len(conversation.messages))
        return conversation

    def match_active_to_history(
        self,
        history: list[Conversation],
        rehydrate: Callable[[Conversation], list[ChatMessage]] | None = None,
    ) -> Conversation | None:
        """Adopt the history entry whose tail equals the active messages.

        Runs only when there is no current conversation and the active list is
        non-empty. Among several candidates the most recent one wins.

        Args:
            history: Freshly loaded history
            rehydrate: Re-processes the adopted conversation's messages

        Returns:
            The adopted conversation, or None when nothing matched
        """
        if self.current_conversation is not None or not self.messages:
            return None

        count = len(self.messages)
        candidates = [
            conversation
            for conversation in history
            if len(conversation.messages) >= count
            and all(
                stored.same_turn(active)
                for stored, active in zip(conversation.messages[-count:], self.messages)
            )
        ]
        if not candidates:
            return None

        match = max(candidates, key=lambda c: _sort_key(c.timestamp))
        messages = rehydrate(match) if rehydrate else list(match.messages)
        self.set_current_conversation(match, messages)
        logger.info("Matched active messages to conversation %s", match.id)
        return match

    def set_current_conversation(self, conversation: Conversation, messages: list[ChatMessage]) -> None:
        self.current_conversation = conversation
        self.current_conversation_id = conversation.id
        self.messages = list(messages)
        self.mode = conversation.mode
        self.error = None

    def clear(self) -> None:
        """Drop the active conversation and start a fresh id."""
        self.messages = []
        self.current_conversation = None
        self.current_conversation_id = new_conversation_id(self._clock())
        self.error = None
