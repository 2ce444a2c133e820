"""Task suggestion detector.

Finds task breakdowns in assistant replies: a ```json fenced block, or a raw
JSON object carrying ``name``, ``description`` and ``steps``.
"""

import re

from .base import SuggestionDetector
from .models import ChatMode, DetectionContext, TaskSuggestion
from .text import collapse_blank_lines, enclosing_object, strip_sentinels

FENCED_JSON_PATTERN = re.compile(r"```json\s*([\s\S]*?)```")
NAME_KEY_PATTERN = re.compile(r'"name"\s*:')
REQUIRED_KEYS = ('"name"', '"description"', '"steps"')


def _find_task_object(text: str) -> tuple[int, int] | None:
    """Locate the first raw JSON object that looks like a task."""
    for match in NAME_KEY_PATTERN.finditer(text):
        span = enclosing_object(text, match.start())
        if span is None:
            continue
        candidate = text[span[0]:span[1]]
        if all(key in candidate for key in REQUIRED_KEYS):
            return span
    return None


class TaskDetector(SuggestionDetector):
    """Detector for task-mode conversations."""

    @property
    def mode(self) -> ChatMode:
        return ChatMode.TASK

    @property
    def payload_key_pattern(self) -> re.Pattern[str]:
        return NAME_KEY_PATTERN

    def extract_payload(self, text: str) -> str | None:
        fenced = FENCED_JSON_PATTERN.search(text)
        if fenced is not None:
            return fenced.group(1).strip()

        span = _find_task_object(text)
        if span is None:
            return None
        return text[span[0]:span[1]]

    def build(self, data: dict, context: DetectionContext) -> TaskSuggestion:
        data = dict(data)
        # Suggestions get a fresh identity and are attributed to the viewer
        data.pop("id", None)
        data.pop("createdBy", None)
        data["created_by"] = context.user_id or "unknown"
        return TaskSuggestion.model_validate(data)

    def _clean_once(self, text: str) -> str:
        text = strip_sentinels(text)
        text = FENCED_JSON_PATTERN.sub("", text)

        span = _find_task_object(text)
        if span is not None:
            text = text[:span[0]] + text[span[1]:]

        return collapse_blank_lines(text.strip())
