"""Suggestion detection for stoachat.

Finds habit and task payloads embedded in assistant replies and strips them
(and the backend's generation flags) from the text shown to the user.
"""

from .base import SuggestionDetector
from .factory import (
    clean_text,
    create_detector_registry,
    create_suggestion_detector,
    detect_suggestion,
)
from .habit import HabitDetector
from .models import (
    ChatMode,
    DetectionContext,
    HabitMilestone,
    HabitReminder,
    HabitSuggestion,
    Suggestion,
    TaskStep,
    TaskSuggestion,
)
from .task import TaskDetector

__all__ = [
    "ChatMode",
    "DetectionContext",
    "HabitDetector",
    "HabitMilestone",
    "HabitReminder",
    "HabitSuggestion",
    "Suggestion",
    "SuggestionDetector",
    "TaskDetector",
    "TaskStep",
    "TaskSuggestion",
    "clean_text",
    "create_detector_registry",
    "create_suggestion_detector",
    "detect_suggestion",
]
