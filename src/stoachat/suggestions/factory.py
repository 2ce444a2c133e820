"""Factory for suggestion detectors."""

from .base import SuggestionDetector
from .habit import HabitDetector
from .models import ChatMode, DetectionContext, Suggestion
from .task import TaskDetector


def create_suggestion_detector(mode: ChatMode | str) -> SuggestionDetector:
    """Create the detector for a chat mode.

    Args:
        mode: Chat mode ("task" or "habit")

    Returns:
        SuggestionDetector instance

    Raises:
        ValueError: If the mode is not supported
    """
    mode_value = mode.value if isinstance(mode, ChatMode) else str(mode).lower()

    if mode_value == ChatMode.HABIT.value:
        return HabitDetector()

    if mode_value == ChatMode.TASK.value:
        return TaskDetector()

    raise ValueError(
        f"Unsupported chat mode: {mode}. "
        f"Supported modes: task, habit"
    )


def create_detector_registry() -> dict[ChatMode, SuggestionDetector]:
    """Create one detector per chat mode."""
    return {mode: create_suggestion_detector(mode) for mode in ChatMode}


_default_detectors = create_detector_registry()


def detect_suggestion(
    text: str,
    mode: ChatMode,
    context: DetectionContext | None = None
) -> Suggestion | None:
    """Detect a suggestion using the default detector for ``mode``."""
    return _default_detectors[ChatMode(mode)].detect(text, context)


def clean_text(text: str, mode: ChatMode) -> str:
    """Strip payloads and generation flags using the default detector for ``mode``."""
    return _default_detectors[ChatMode(mode)].clean_text(text)
