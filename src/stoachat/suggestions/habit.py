"""Habit suggestion detector.

Finds habit programs in assistant replies. Handles the current direct payload
(``{"name": ...}``) and the legacy ``{"ai_habit_suggestion": {...}}`` wrapper,
either inside a code fence or as raw JSON in the text.
"""

import re

from .base import SuggestionDetector
from .models import ChatMode, DetectionContext, HabitSuggestion
from .text import (
    CODE_FENCE,
    JSON_FENCE,
    cut_at,
    enclosing_object,
    extract_fenced_block,
    strip_sentinels,
)

LEGACY_WRAPPER_KEY = "ai_habit_suggestion"
NAME_KEY_PATTERN = re.compile(r'"name"\s*:')
HABIT_KEY_PATTERN = re.compile(rf'{LEGACY_WRAPPER_KEY}|"name"\s*:')


class HabitDetector(SuggestionDetector):
    """Detector for habit-mode conversations."""

    @property
    def mode(self) -> ChatMode:
        return ChatMode.HABIT

    @property
    def payload_key_pattern(self) -> re.Pattern[str]:
        return HABIT_KEY_PATTERN

    def extract_payload(self, text: str) -> str | None:
        for opening in (JSON_FENCE, CODE_FENCE):
            body = extract_fenced_block(text, opening)
            if body is not None and HABIT_KEY_PATTERN.search(body):
                return body.strip()

        # Raw JSON: prefer the legacy wrapper, it encloses the name key
        key_index = text.find(LEGACY_WRAPPER_KEY)
        if key_index == -1:
            match = NAME_KEY_PATTERN.search(text)
            if match is None:
                return None
            key_index = match.start()

        span = enclosing_object(text, key_index)
        if span is None:
            return None
        return text[span[0]:span[1]]

    def build(self, data: dict, context: DetectionContext) -> HabitSuggestion:
        return HabitSuggestion.model_validate(data)

    def _clean_once(self, text: str) -> str:
        text = strip_sentinels(text)

        before_fence = cut_at(text, CODE_FENCE)
        if before_fence is not None:
            return before_fence.strip()

        if HABIT_KEY_PATTERN.search(text):
            before_brace = cut_at(text, "{")
            if before_brace is not None:
                return before_brace.strip()

        return text.strip()
