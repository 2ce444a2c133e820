"""User/session context.

Hides where the current user's identity comes from. The chat core only reads
it; authentication itself lives elsewhere.
"""

from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field


class UserContext(BaseModel):
    """Snapshot of the signed-in user."""

    model_config = ConfigDict(frozen=True)

    user_id: str | None = Field(default=None, description="Current user id, None when signed out")
    is_anonymous: bool = Field(default=False, description="Signed in with an anonymous account")

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_registered(self) -> bool:
        """Signed in with a real (non-anonymous) account."""
        return self.user_id is not None and not self.is_anonymous


class UserContextProvider(Protocol):
    """Anything that can report the current user."""

    def current(self) -> UserContext:
        ...


class StaticUserContextProvider:
    """Provider holding a user context that callers replace explicitly."""

    def __init__(self, context: UserContext | None = None):
        self._context = context or UserContext()

    def current(self) -> UserContext:
        return self._context

    def update(self, context: UserContext) -> None:
        self._context = context
