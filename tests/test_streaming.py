"""Unit tests for the streaming state machine."""
import asyncio
import json

import pytest
from hypothesis import given
from hypothesis import strategies as st

from stoachat.backend import CompletionPayload
from stoachat.chat import (
    Author,
    ChatMessage,
    ChatMode,
    ChunkApplied,
    ConversationStore,
    EventBus,
    NetworkError,
    RateLimitExceededError,
    ServerError,
    StreamCompleted,
    StreamFailed,
    StreamInProgressError,
    StreamingStateMachine,
    StreamStarted,
    StreamState,
    UIDispatcher,
)
from stoachat.config import MSG_NETWORK_ERROR
from stoachat.suggestions import HabitDetector, HabitSuggestion, TaskDetector


class UnprintableError(Exception):
    """Exception whose message cannot be rendered."""

    def __str__(self):
        raise RuntimeError("boom")


class CountingTaskDetector(TaskDetector):
    """Task detector that counts detect calls."""

    def __init__(self):
        self.detect_calls = 0

    def detect(self, text, context=None):
        self.detect_calls += 1
        return super().detect(text, context)


class TestStart:
    """Tests for opening a stream."""

    def test_start_appends_placeholder(self, machine, store, recorder):
        target = machine.start()

        assert machine.state is StreamState.STREAMING
        assert machine.target_id == target
        assert store.messages[-1].id == target
        assert store.messages[-1].author is Author.ASSISTANT
        assert machine.is_typing
        assert recorder.of_type(StreamStarted)[0].message_id == target

    def test_start_adopts_backend_conversation_id(self, machine, store):
        machine.start("server-conv-1")
        assert store.current_conversation_id == "server-conv-1"

    def test_second_start_is_rejected(self, machine, store):
        """A second start while streaming is rejected."""
        target = machine.start()
        count = len(store.messages)

        with pytest.raises(StreamInProgressError):
            machine.start()

        assert machine.state is StreamState.STREAMING
        assert machine.target_id == target
        assert len(store.messages) == count


class TestChunks:
    """Tests for chunk application."""

    def test_chunks_append_and_clean(self, machine, store, recorder):
        store.set_mode(ChatMode.HABIT)
        target = machine.start()
        machine.receive_chunk("Sure! ")
        machine.receive_chunk('```json\n{"name":"Meditate"}')

        message = store.find_message(target)
        assert message.raw_text == 'Sure! ```json\n{"name":"Meditate"}'
        assert message.cleaned_text == "Sure!"
        assert message.suggestion is None
        assert not machine.is_typing
        assert [e.chunk for e in recorder.of_type(ChunkApplied)] == ["Sure! ", '```json\n{"name":"Meditate"}']

    def test_chunk_without_target_is_dropped(self, machine, store):
        machine.receive_chunk("orphan")
        assert store.messages == []

    def test_chunk_for_stale_target_is_dropped(self, machine, store):
        target = machine.start()
        machine.receive_chunk("late", target_id="some-old-target")
        assert store.find_message(target).raw_text == ""

    @given(st.lists(st.text(max_size=20), max_size=20))
    def test_raw_text_is_concatenation(self, chunks):
        """Property test: raw text equals the chunks joined in arrival order."""
        store = ConversationStore()
        machine = StreamingStateMachine(store=store)
        target = machine.start()
        for chunk in chunks:
            machine.receive_chunk(chunk, target)
        assert store.find_message(target).raw_text == "".join(chunks)

    @pytest.mark.asyncio
    async def test_chunks_from_worker_thread_keep_order(self, store):
        """Test that chunks delivered from another thread are applied in order."""
        dispatcher = UIDispatcher()
        dispatcher.bind()
        machine = StreamingStateMachine(store=store, dispatcher=dispatcher)
        target = machine.start()
        chunks = [f"{i}," for i in range(200)]

        def deliver():
            for chunk in chunks:
                machine.receive_chunk(chunk, target)

        await asyncio.get_running_loop().run_in_executor(None, deliver)
        await asyncio.sleep(0)

        assert store.find_message(target).raw_text == "".join(chunks)


class TestComplete:
    """Tests for completion."""

    def test_plain_text_completion(self, machine, store, recorder):
        """Test a task-mode reply without any payload."""
        target = machine.start()
        machine.receive_chunk("Tracking")
        machine.receive_chunk(" progress daily.")
        message = machine.complete(CompletionPayload(message="Tracking progress daily."))

        assert message.id == target
        assert message.cleaned_text == "Tracking progress daily."
        assert message.suggestion is None
        assert machine.state is StreamState.IDLE
        assert machine.target_id is None
        assert recorder.of_type(StreamCompleted)[0].message_id == target

    def test_habit_completion(self, machine, store):
        """Test a habit payload delivered in a code fence."""
        store.set_mode(ChatMode.HABIT)
        payload = {"name": "Meditate", "description": "Ten calm minutes"}
        full = f"Sure! ```json\n{json.dumps(payload)}```"

        machine.start()
        machine.receive_chunk("Sure! ")
        machine.receive_chunk('```json\n{"name":"Meditate"}')
        message = machine.complete(CompletionPayload(message=full))

        assert message.cleaned_text == "Sure!"
        assert isinstance(message.suggestion, HabitSuggestion)
        assert message.suggestion.name == "Meditate"

    def test_authoritative_text_overwrites_chunks(self, machine):
        machine.start()
        machine.receive_chunk("Helo wrld")
        message = machine.complete(CompletionPayload(message="Hello world"))
        assert message.raw_text == "Hello world"

    def test_sentinel_removed_without_match(self, machine):
        machine.start()
        message = machine.complete(CompletionPayload(message="All set! [TASKGEN=True]"))

        assert message.suggestion is None
        assert message.cleaned_text == "All set!"

    def test_completion_persists_conversation(self, machine, store):
        store.add_user_message("Help me plan my week please now")
        machine.start()
        machine.complete(CompletionPayload(message="Sure", conversationId="conv-9", title="Week plan"))

        assert store.current_conversation_id == "conv-9"
        assert store.history[0].id == "conv-9"
        assert store.history[0].title == "Week plan"
        assert len(store.history[0].messages) == 2
        assert store.sections

    def test_completion_uses_generated_title(self, machine, store):
        store.add_user_message("Help me plan my whole week please")
        machine.start()
        machine.complete(CompletionPayload(message="Sure"))
        assert store.history[0].title == "Help me plan my whole..."

    def test_detection_runs_exactly_once(self, store):
        """Test that detection runs once per completed message, never per chunk."""
        detector = CountingTaskDetector()
        machine = StreamingStateMachine(store=store, detectors={ChatMode.TASK: detector, ChatMode.HABIT: HabitDetector()})
        machine.start()
        for chunk in ("a", "b", "c"):
            machine.receive_chunk(chunk)
        assert detector.detect_calls == 0

        machine.complete(CompletionPayload(message="abc"))
        assert detector.detect_calls == 1

    def test_stale_completion_is_ignored(self, machine, store):
        target = machine.start()
        assert machine.complete(CompletionPayload(message="x"), target_id="old") is None
        assert machine.target_id == target
        assert machine.state is StreamState.STREAMING

    def test_completion_for_removed_target(self, machine, store, recorder):
        target = machine.start()
        store.remove_message(target)

        assert machine.complete(CompletionPayload(message="late")) is None

        assert machine.state is StreamState.IDLE
        assert machine.target_id is None
        assert store.history == []
        failed = recorder.of_type(StreamFailed)
        assert [(e.message_id, e.cancelled) for e in failed] == [(target, True)]
        assert not recorder.of_type(StreamCompleted)


class TestFail:
    """Tests for failure and cancellation."""

    def test_network_failure(self, machine, store, recorder):
        """Test that a network failure restores the message count."""
        store.add_user_message("hi")
        before = len(store.messages)
        target = machine.start()
        machine.receive_chunk("partial")

        classified = machine.fail(NetworkError("connection reset"))

        assert isinstance(classified, NetworkError)
        assert len(store.messages) == before
        assert store.find_message(target) is None
        assert store.error == MSG_NETWORK_ERROR
        assert machine.state is StreamState.IDLE
        assert recorder.of_type(StreamFailed)[0].message_id == target

    def test_rate_limit_message_is_forwarded(self, machine, store):
        machine.start()
        machine.fail(RateLimitExceededError("Daily limit exceeded"))
        assert store.error == "Daily limit exceeded"

    def test_unclassified_error(self, machine, store):
        machine.start()
        classified = machine.fail(ConnectionResetError("reset"))
        assert isinstance(classified, NetworkError)

    def test_unprintable_error_still_clears_target(self, machine, store, recorder):
        target = machine.start()

        classified = machine.fail(UnprintableError())

        assert isinstance(classified, ServerError)
        assert "UnprintableError" in classified.detail
        assert store.find_message(target) is None
        assert machine.state is StreamState.IDLE
        assert machine.target_id is None
        assert recorder.of_type(StreamFailed)[0].message_id == target
        assert machine.start() != target

    def test_late_chunk_after_fail_is_dropped(self, machine, store):
        target = machine.start()
        machine.fail(NetworkError("x"))
        machine.receive_chunk("late", target)
        assert store.messages == []

    def test_cancel_removes_placeholder_without_error(self, machine, store, recorder):
        target = machine.start()
        assert machine.cancel()

        assert store.find_message(target) is None
        assert store.error is None
        assert machine.state is StreamState.IDLE
        assert recorder.of_type(StreamFailed)[0].cancelled

    def test_completion_after_cancel_is_ignored(self, machine, store):
        target = machine.start()
        machine.cancel()
        assert machine.complete(CompletionPayload(message="late"), target) is None
        assert store.history == []

    def test_cancel_when_idle(self, machine):
        assert not machine.cancel()

    @given(st.lists(st.text(max_size=10), max_size=10), st.integers(min_value=0, max_value=5))
    def test_fail_leaves_no_orphan(self, chunks, prior):
        """Property test: no message keeps the failed target id."""
        store = ConversationStore()
        for i in range(prior):
            store.append_message(ChatMessage(author=Author.USER, raw_text=str(i)))
        machine = StreamingStateMachine(store=store)
        target = machine.start()
        for chunk in chunks:
            machine.receive_chunk(chunk)
        machine.fail(NetworkError("down"))

        assert all(m.id != target for m in store.messages)
        assert len(store.messages) == prior


class TestEventSubscribers:
    """Tests for event delivery."""

    def test_failing_subscriber_does_not_break_transition(self, store):
        events = EventBus()

        def broken(_):
            raise RuntimeError("boom")

        events.subscribe(broken)
        machine = StreamingStateMachine(store=store, events=events)
        machine.start()
        machine.complete(CompletionPayload(message="done"))

        assert machine.state is StreamState.IDLE

    def test_unsubscribe(self):
        events = EventBus()
        unsubscribe = events.subscribe(lambda _: None)
        unsubscribe()
        assert events.subscriber_count == 0
