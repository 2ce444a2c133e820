"""Pytest configuration and shared fixtures."""
import asyncio
from datetime import datetime, timezone
from typing import Any

import pytest

from stoachat.backend import BackendEvent, ChatBackend, ChatRequest, EventType
from stoachat.cache import HistoryCache, InMemoryKeyValueStore
from stoachat.chat import (
    ChatSession,
    ConversationStore,
    EventBus,
    PersistenceGateway,
    StreamingStateMachine,
)
from stoachat.context import StaticUserContextProvider, UserContext

FIXED_NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)

HANG = object()


def event(event_type: str, **data: Any) -> BackendEvent:
    """Build a backend event."""
    return BackendEvent(type=EventType(event_type), data=data)


def reply(text: str, *chunks: str, conversation_id: str | None = None, title: str | None = None) -> list:
    """Script for a well-behaved streamed reply."""
    start = event("start", conversationId=conversation_id) if conversation_id else event("start")
    complete: dict[str, Any] = {"message": text}
    if conversation_id:
        complete["conversationId"] = conversation_id
    if title:
        complete["title"] = title
    return [
        start,
        *(event("chunk", text=chunk) for chunk in (chunks or (text,))),
        event("end", fullText=text),
        event("complete", **complete),
    ]


class FakeBackend(ChatBackend):
    """Backend that plays scripted replies.

    Each script item is a ``BackendEvent``, an exception to raise, or
    ``HANG`` to block until cancelled.
    """

    def __init__(self, scripts: list[list] | None = None, history: list[dict] | None = None):
        self.scripts = list(scripts or [])
        self.history_records = history or []
        self.history_error: Exception | None = None
        self.requests: list[ChatRequest] = []
        self.history_calls = 0
        self.closed = False

    async def stream_message(self, request: ChatRequest):
        self.requests.append(request)
        script = self.scripts.pop(0) if self.scripts else []
        for item in script:
            if item is HANG:
                await asyncio.Event().wait()
            elif isinstance(item, BaseException):
                raise item
            else:
                yield item

    async def fetch_history(self) -> list[dict]:
        self.history_calls += 1
        if self.history_error is not None:
            raise self.history_error
        return self.history_records

    async def close(self) -> None:
        self.closed = True

    @property
    def backend_type(self) -> str:
        return "fake"


class EventRecorder:
    """Collects emitted events."""

    def __init__(self):
        self.events: list = []

    def __call__(self, evt) -> None:
        self.events.append(evt)

    def of_type(self, cls) -> list:
        return [e for e in self.events if isinstance(e, cls)]


@pytest.fixture
def clock():
    """Return a clock frozen at FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def store(clock):
    """Return an empty conversation store sectioned in UTC."""
    return ConversationStore(clock=clock, tz=timezone.utc)


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def recorder(events):
    """Return a recorder subscribed to the event bus."""
    rec = EventRecorder()
    events.subscribe(rec)
    return rec


@pytest.fixture
def registered_user():
    return StaticUserContextProvider(UserContext(user_id="user-1"))


@pytest.fixture
def anonymous_user():
    return StaticUserContextProvider(UserContext(user_id="anon-1", is_anonymous=True))


@pytest.fixture
def machine(store, events, registered_user):
    """Return a state machine without persistence."""
    return StreamingStateMachine(store=store, events=events, user_context=registered_user)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def gateway(backend, kv_store):
    return PersistenceGateway(backend, HistoryCache(kv_store))


@pytest.fixture
def make_session(backend, gateway, store, events, registered_user, clock):
    """Return a factory for sessions wired to the fakes."""
    def _make(**overrides: Any) -> ChatSession:
        options: dict[str, Any] = {
            "backend": backend,
            "gateway": gateway,
            "user_context": registered_user,
            "store": store,
            "events": events,
            "clock": clock,
            "stream_timeout": 1.0,
        }
        options.update(overrides)
        return ChatSession(**options)

    return _make
