"""Data models for structured suggestions.

These models describe the habit and task payloads the assistant embeds in its
replies, independent of how they are found in the text.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ChatMode(str, Enum):
    """Which suggestion grammar a conversation expects."""

    TASK = "task"    # Task breakdowns with steps
    HABIT = "habit"  # Habit programs with milestones and reminders

    @property
    def display_name(self) -> str:
        return "Task Management" if self is ChatMode.TASK else "Habit Building"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class HabitMilestone(BaseModel):
    """A checkpoint in a habit program."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    description: str
    completion_criteria: str = Field(default="", alias="completionCriteria")
    reward_message: str = Field(default="", alias="rewardMessage")
    target_days: int | None = Field(default=None, alias="targetDays")


class HabitReminder(BaseModel):
    """A reminder attached to a habit."""

    model_config = ConfigDict(populate_by_name=True)

    time: str
    message: str
    frequency: str | None = "daily"
    type: str | None = "execution"


class HabitSuggestion(BaseModel):
    """A habit program suggested by the assistant.

    Accepts the comprehensive payload, a direct legacy payload that uses
    ``title`` instead of ``name``, and the ``{"ai_habit_suggestion": {...}}``
    wrapper older replies used.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    kind: Literal["habit"] = "habit"
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(min_length=1, description="Habit name")
    goal: str = Field(default="", description="What the habit works towards")
    description: str = Field(default="")
    category: str | None = Field(default=None)
    motivation: str = Field(default="Build this habit for personal growth")
    tracking_method: str | None = Field(default=None, alias="trackingMethod")
    start_date: str | None = Field(default=None, alias="startDate")
    created_at: str = Field(default_factory=_now_iso, alias="createdAt")
    milestones: list[HabitMilestone] = Field(default_factory=list)
    reminders: list[HabitReminder] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _unwrap_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if "ai_habit_suggestion" in data and isinstance(data["ai_habit_suggestion"], dict):
            data = data["ai_habit_suggestion"]
        data = dict(data)
        if "name" not in data and "title" in data:
            data["name"] = data["title"]
        if "tracking_method" in data and "trackingMethod" not in data:
            data["trackingMethod"] = data.pop("tracking_method")
        if isinstance(data.get("milestones"), list):
            data["milestones"] = [
                m for m in data["milestones"]
                if isinstance(m, dict) and isinstance(m.get("description"), str)
            ]
        if isinstance(data.get("reminders"), list):
            data["reminders"] = [
                r for r in data["reminders"]
                if isinstance(r, dict) and isinstance(r.get("time"), str) and isinstance(r.get("message"), str)
            ]
        return data

    @model_validator(mode="after")
    def _fill_legacy_defaults(self) -> "HabitSuggestion":
        if not self.goal:
            self.goal = self.description
        if not self.milestones:
            self.milestones = [
                HabitMilestone(
                    id="legacy-milestone-1",
                    description="Establish the habit",
                    completion_criteria="Complete the habit for 7 consecutive days",
                    reward_message="Great start! You're building consistency.",
                    target_days=7,
                )
            ]
        return self


class TaskStep(BaseModel):
    """One actionable step of a task."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid4()))
    description: str
    is_completed: bool = Field(default=False, alias="isCompleted")


class TaskSuggestion(BaseModel):
    """A task breakdown suggested by the assistant."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    kind: Literal["task"] = "task"
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(min_length=1)
    description: str
    steps: list[TaskStep] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    created_by: str = Field(default="unknown", alias="createdBy")

    @model_validator(mode="before")
    @classmethod
    def _drop_malformed_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if isinstance(data.get("steps"), list):
            data["steps"] = [
                step for step in data["steps"]
                if isinstance(step, dict) and isinstance(step.get("description"), str)
            ]
        # Unparseable creation dates fall back to "now"
        created_at = data.get("created_at")
        if created_at is not None and not isinstance(created_at, datetime):
            try:
                datetime.fromisoformat(str(created_at).replace("Z", "+00:00"))
            except ValueError:
                data.pop("created_at")
        return data


Suggestion = Annotated[HabitSuggestion | TaskSuggestion, Field(discriminator="kind")]


class DetectionContext(BaseModel):
    """Identity context handed to detectors.

    Detectors may use it to stamp or de-duplicate suggestions; they never
    write it back anywhere.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str | None = None
    message_id: str | None = None
