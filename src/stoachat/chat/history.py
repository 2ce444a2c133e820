"""Parsing and re-processing of remote conversation history.

The history backend returns loosely-shaped records. Timestamps may arrive as
epoch seconds, as a ``{"_seconds": n}`` object, or as ISO-8601 strings; all of
them are accepted and anything else falls back to "now".
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import DEFAULT_HISTORY_TITLE
from ..suggestions.base import SuggestionDetector
from ..suggestions.habit import LEGACY_WRAPPER_KEY
from ..suggestions.models import DetectionContext, HabitSuggestion, TaskSuggestion
from .models import Author, ChatMessage, ChatMode, Conversation

logger = logging.getLogger(__name__)

_SECONDS_KEYS = ("_seconds", "seconds")
_NANOS_KEYS = ("_nanoseconds", "nanoseconds", "nanos")


def _from_epoch(seconds: float) -> datetime | None:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(value: Any) -> datetime | None:
    """Coerce a backend timestamp into an aware datetime.

    Args:
        value: Epoch seconds, ``{"_seconds"|"seconds": n}`` object or ISO-8601 string

    Returns:
        UTC-aware datetime, or None when the value cannot be parsed
    """
    if isinstance(value, bool) or value is None:
        return None

    if isinstance(value, (int, float)):
        return _from_epoch(float(value))

    if isinstance(value, dict):
        seconds = next((value[k] for k in _SECONDS_KEYS if k in value), None)
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
            return None
        nanos = next((value[k] for k in _NANOS_KEYS if k in value), 0)
        if isinstance(nanos, bool) or not isinstance(nanos, (int, float)):
            nanos = 0
        return _from_epoch(float(seconds) + float(nanos) / 1e9)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return _from_epoch(float(text))
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    return None


class RemoteMessage(BaseModel):
    """A message as stored by the history backend."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    content: str
    role: str
    timestamp: Any = None


class RemoteConversation(BaseModel):
    """A conversation record as returned by the history backend."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    title: str | None = None
    messages: list[dict[str, Any]]
    timestamp: Any = None
    last_updated: Any = Field(default=None, alias="lastUpdated")
    chat_mode: str | None = Field(default=None, alias="chatMode")


def _to_message(data: dict[str, Any], now: datetime) -> ChatMessage | None:
    try:
        remote = RemoteMessage.model_validate(data)
    except ValidationError as e:
        logger.debug("Skipping malformed history message: %s", e.errors())
        return None

    fields: dict[str, Any] = {
        "author": Author.USER if remote.role == "user" else Author.ASSISTANT,
        "raw_text": remote.content,
        "timestamp": parse_timestamp(remote.timestamp) or now,
    }
    if remote.id:
        fields["id"] = remote.id
    return ChatMessage(**fields)


def _parse_mode(value: str | None) -> ChatMode | None:
    if value is None:
        return None
    try:
        return ChatMode(value.lower())
    except ValueError:
        logger.debug("Unknown chat mode in history: %s", value)
        return None


def parse_history(records: Iterable[Any], now: datetime) -> list[Conversation]:
    """Convert backend records into conversations.

    Records without an id or without any usable message are skipped. When no
    mode was stored it is inferred from the messages.

    Args:
        records: Raw records from the history backend
        now: Fallback timestamp

    Returns:
        Parsed conversations in backend order
    """
    records = list(records)
    conversations: list[Conversation] = []

    for record in records:
        if not isinstance(record, dict):
            continue
        try:
            remote = RemoteConversation.model_validate(record)
        except ValidationError as e:
            logger.debug("Skipping malformed history record: %s", e.errors())
            continue

        messages = [
            message
            for message in (_to_message(m, now) for m in remote.messages if isinstance(m, dict))
            if message is not None
        ]
        if not messages:
            continue

        timestamp = parse_timestamp(remote.timestamp) or parse_timestamp(remote.last_updated) or now
        mode = _parse_mode(remote.chat_mode) or infer_mode(messages)

        conversations.append(
            Conversation(
                id=remote.id,
                title=remote.title or DEFAULT_HISTORY_TITLE,
                mode=mode,
                messages=messages,
                timestamp=timestamp,
            )
        )

    logger.info("Parsed %d conversations from %d records", len(conversations), len(records))
    return conversations


def infer_mode(messages: Iterable[ChatMessage]) -> ChatMode:
    """Guess the mode of a legacy conversation that has none stored.

    Best effort only: looks for payload keys in assistant messages and
    defaults to task mode.
    """
    for message in messages:
        if message.is_user:
            continue
        if isinstance(message.suggestion, HabitSuggestion) or f'"{LEGACY_WRAPPER_KEY}"' in message.raw_text:
            return ChatMode.HABIT
        if isinstance(message.suggestion, TaskSuggestion) or all(
            key in message.raw_text for key in ('"name"', '"description"', '"steps"')
        ):
            return ChatMode.TASK
    return ChatMode.TASK


def rehydrate_messages(
    messages: Iterable[ChatMessage],
    detector: SuggestionDetector,
    context_factory: Callable[[ChatMessage], DetectionContext] | None = None,
) -> list[ChatMessage]:
    """Re-process loaded assistant messages with the conversation's detector.

    Every assistant message gets cleaned text; detection runs once for
    messages that carry no suggestion yet. Returns new message objects.
    """
    result: list[ChatMessage] = []
    for message in messages:
        if message.is_user:
            result.append(message)
            continue

        update: dict[str, Any] = {"cleaned_text": detector.clean_text(message.raw_text)}
        if message.suggestion is None:
            context = context_factory(message) if context_factory else DetectionContext(message_id=message.id)
            update["suggestion"] = detector.detect(message.raw_text, context)
        result.append(message.model_copy(update=update))
    return result
