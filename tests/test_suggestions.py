"""Unit tests for the suggestions module."""
import json

import pytest
from hypothesis import given
from hypothesis import strategies as st

from stoachat.suggestions import (
    ChatMode,
    DetectionContext,
    HabitDetector,
    HabitSuggestion,
    SuggestionDetector,
    TaskDetector,
    TaskSuggestion,
    clean_text,
    create_suggestion_detector,
    detect_suggestion,
)
from stoachat.suggestions.text import SENTINEL_PATTERN, find_balanced_object

HABIT_PAYLOAD = {
    "name": "Meditate",
    "goal": "Feel calmer",
    "description": "Ten minutes of breathing every morning",
    "category": "mindfulness",
    "milestones": [
        {"description": "First week", "completionCriteria": "7 sessions", "targetDays": 7},
    ],
    "reminders": [{"time": "07:30", "message": "Time to breathe"}],
}

TASK_PAYLOAD = {
    "name": "Plan trip",
    "description": "Organize the weekend trip",
    "steps": [{"description": "Book hotel"}, {"description": "Pack"}],
}


class TestSuggestionDetector:
    """Tests for the SuggestionDetector interface."""

    def test_detector_is_abstract(self):
        """Test that SuggestionDetector cannot be instantiated directly."""
        with pytest.raises(TypeError):
            SuggestionDetector()  # type: ignore


class TestFactory:
    """Tests for detector creation."""

    def test_create_habit_detector(self):
        assert isinstance(create_suggestion_detector("habit"), HabitDetector)

    def test_create_task_detector_from_enum(self):
        assert isinstance(create_suggestion_detector(ChatMode.TASK), TaskDetector)

    def test_unsupported_mode(self):
        with pytest.raises(ValueError, match="Unsupported chat mode"):
            create_suggestion_detector("calendar")


class TestHabitDetection:
    """Tests for habit payload detection."""

    def test_fenced_json_payload(self):
        """Test detecting a habit in a ```json fence."""
        text = f"Sure! ```json\n{json.dumps(HABIT_PAYLOAD)}\n```"
        suggestion = HabitDetector().detect(text)

        assert isinstance(suggestion, HabitSuggestion)
        assert suggestion.name == "Meditate"
        assert suggestion.milestones[0].target_days == 7
        assert suggestion.reminders[0].time == "07:30"

    def test_bare_fence_payload(self):
        text = f"Here you go\n```\n{json.dumps(HABIT_PAYLOAD)}\n```"
        assert HabitDetector().detect(text).name == "Meditate"

    def test_legacy_wrapper_as_raw_json(self):
        """Test the legacy ai_habit_suggestion wrapper embedded in text."""
        payload = {"ai_habit_suggestion": {"title": "Read daily", "description": "20 pages"}}
        text = f"Try this: {json.dumps(payload)} Good luck!"
        suggestion = HabitDetector().detect(text)

        assert suggestion.name == "Read daily"
        assert suggestion.goal == "20 pages"
        assert suggestion.milestones[0].id == "legacy-milestone-1"
        assert suggestion.milestones[0].target_days == 7

    def test_no_payload(self):
        assert HabitDetector().detect("Keep going, you're doing great.") is None

    def test_invalid_json_returns_none(self):
        assert HabitDetector().detect('```json\n{"name": "Broken",\n```') is None

    def test_missing_name_returns_none(self):
        assert HabitDetector().detect('```json\n{"ai_habit_suggestion": {"goal": "x"}}\n```') is None

    def test_clean_strips_fence_and_sentinel(self):
        text = f"[HABITGEN=True] Sure! ```json\n{json.dumps(HABIT_PAYLOAD)}\n```"
        assert HabitDetector().clean_text(text) == "Sure!"

    def test_clean_strips_raw_legacy_json(self):
        text = 'Try this {"ai_habit_suggestion": {"name": "Walk"}}'
        assert HabitDetector().clean_text(text) == "Try this"


class TestTaskDetection:
    """Tests for task payload detection."""

    def test_fenced_json_payload(self):
        text = f"Here's a plan:\n```json\n{json.dumps(TASK_PAYLOAD)}\n```"
        suggestion = TaskDetector().detect(text, DetectionContext(user_id="user-1"))

        assert isinstance(suggestion, TaskSuggestion)
        assert suggestion.name == "Plan trip"
        assert [step.description for step in suggestion.steps] == ["Book hotel", "Pack"]
        assert suggestion.created_by == "user-1"

    def test_raw_json_payload(self):
        text = f"Plan: {json.dumps(TASK_PAYLOAD)}"
        suggestion = TaskDetector().detect(text)

        assert suggestion.name == "Plan trip"
        assert suggestion.created_by == "unknown"

    def test_object_without_steps_is_ignored(self):
        text = 'Note {"name": "x", "description": "y"}'
        assert TaskDetector().detect(text) is None

    def test_clean_removes_payload_and_collapses_blank_lines(self):
        text = f"Here's a plan:\n\n\n\n```json\n{json.dumps(TASK_PAYLOAD)}\n```\n\n\n\nEnjoy! [TASKGEN=True]"
        assert TaskDetector().clean_text(text) == "Here's a plan:\n\nEnjoy!"

    def test_clean_plain_text_is_unchanged(self):
        assert TaskDetector().clean_text("Tracking progress daily.") == "Tracking progress daily."


class TestOversizedPayloads:
    """Tests for payloads the JSON decoder refuses."""

    HUGE_INTEGER = '{"name": "Big", "description": "x", "steps": [], "count": ' + "9" * 5000 + "}"
    DEEP_NESTING = '{"name": "Deep", "description": "x", "steps": ' + "[" * 100_000 + "]" * 100_000 + "}"

    @pytest.mark.parametrize("detector", [HabitDetector(), TaskDetector()], ids=["habit", "task"])
    @pytest.mark.parametrize("payload", [HUGE_INTEGER, DEEP_NESTING], ids=["huge-integer", "deep-nesting"])
    def test_detect_returns_none(self, detector, payload):
        text = f"Here you go ```json\n{payload}\n```"

        assert detector.detect(text) is None
        assert detector.clean_text(text) == "Here you go"


class TestStreamingClean:
    """Tests for mid-stream payload hiding."""

    def test_cuts_at_code_fence(self):
        text = 'Sure! ```json\n{"name":"Meditate"'
        assert HabitDetector().clean_streaming_text(text) == "Sure!"

    def test_cuts_at_brace_once_key_appears(self):
        text = 'Try this {"ai_habit_suggestion": {"na'
        assert HabitDetector().clean_streaming_text(text) == "Try this"

    def test_keeps_brace_without_key(self):
        text = "Use {curly} braces"
        assert TaskDetector().clean_streaming_text(text) == text

    def test_hides_partial_sentinel(self):
        assert TaskDetector().clean_streaming_text("Done. [TASKGEN=Tr") == "Done. "

    def test_hides_partial_fence(self):
        assert HabitDetector().clean_streaming_text("Sure! ``") == "Sure!"


class TestFacades:
    """Tests for the module-level facades."""

    def test_detect_suggestion_by_mode(self):
        text = f"```json\n{json.dumps(TASK_PAYLOAD)}\n```"
        assert detect_suggestion(text, ChatMode.TASK).name == "Plan trip"

    def test_clean_text_by_mode(self):
        assert clean_text("Hello [HABITGEN=True]", ChatMode.HABIT) == "Hello"


class TestBalancedObject:
    """Tests for the JSON boundary scanner."""

    def test_ignores_braces_in_strings(self):
        text = 'x {"a": "}{", "b": {"c": 1}} y'
        start = text.find("{")
        span = find_balanced_object(text, start)

        assert span is not None
        assert json.loads(text[span[0]:span[1]]) == {"a": "}{", "b": {"c": 1}}

    def test_unclosed_object(self):
        assert find_balanced_object('{"a": 1', 0) is None


payload_texts = st.one_of(
    st.text(),
    st.builds(
        lambda prefix, payload, suffix: f"{prefix}```json\n{payload}\n```{suffix}",
        st.text(max_size=30),
        st.sampled_from([json.dumps(HABIT_PAYLOAD), json.dumps(TASK_PAYLOAD), '{"name": "Par']),
        st.text(max_size=30),
    ),
    st.builds(
        lambda prefix, payload: prefix + payload,
        st.text(max_size=30),
        st.sampled_from([
            json.dumps(TASK_PAYLOAD),
            json.dumps({"ai_habit_suggestion": HABIT_PAYLOAD}),
            '{"name": "half", "steps": [',
            "[HABITGEN=True]",
            "[ TASKGEN = true ]",
        ]),
    ),
)


class TestCleanTextProperties:
    """Property tests for clean_text."""

    @given(payload_texts, st.sampled_from(list(ChatMode)))
    def test_clean_text_is_idempotent(self, text: str, mode: ChatMode):
        """Property test: cleaning twice equals cleaning once."""
        once = clean_text(text, mode)
        assert clean_text(once, mode) == once

    @given(payload_texts, st.sampled_from([HabitDetector(), TaskDetector()]))
    def test_streaming_clean_is_idempotent(self, text: str, detector: SuggestionDetector):
        once = detector.clean_streaming_text(text)
        assert detector.clean_streaming_text(once) == once

    @given(payload_texts, st.sampled_from(list(ChatMode)))
    def test_clean_text_never_shows_sentinels(self, text: str, mode: ChatMode):
        assert SENTINEL_PATTERN.search(clean_text(text, mode)) is None
