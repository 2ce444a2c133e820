"""Error taxonomy for the chat core.

Backend failures are classified once, at the streaming boundary, into the
types below. Each carries the message the user should see and keeps the
original detail for logs.
"""

import asyncio
import json
import logging

import aiohttp
from pydantic import ValidationError

from ..config import MSG_AUTH_REQUIRED, MSG_NETWORK_ERROR, MSG_RATE_LIMITED

logger = logging.getLogger(__name__)


class ChatBackendError(Exception):
    """Base class for classified backend failures."""

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail

    @property
    def user_message(self) -> str:
        return self.detail


class RateLimitExceededError(ChatBackendError):
    """The caller hit a usage limit. The message is shown as-is."""

    def __init__(self, message: str = MSG_RATE_LIMITED):
        super().__init__(message)


class NotAuthenticatedError(ChatBackendError):
    """The backend requires a signed-in user."""

    def __init__(self, detail: str = "User not authenticated"):
        super().__init__(detail)

    @property
    def user_message(self) -> str:
        return MSG_AUTH_REQUIRED


class ServerError(ChatBackendError):
    """The backend reported a failure. The message is shown as-is."""


class NetworkError(ChatBackendError):
    """Transport failure. Detail is kept for logs only."""

    @property
    def user_message(self) -> str:
        return MSG_NETWORK_ERROR


class ParseError(ChatBackendError):
    """Malformed backend response. Detail is kept for logs only."""

    @property
    def user_message(self) -> str:
        return MSG_NETWORK_ERROR


class StreamTimeoutError(NetworkError):
    """The stream produced no events within the idle timeout."""


class StreamInProgressError(RuntimeError):
    """A stream was started while another one is still active."""


def classify_error(error: BaseException) -> ChatBackendError:
    """Convert any failure into the chat error taxonomy.

    Never raises: an error that cannot even be described becomes a generic
    ``ServerError``.

    Args:
        error: Exception raised while talking to the backend

    Returns:
        The classified error (the input itself when already classified)
    """
    try:
        return _classify(error)
    except Exception:
        logger.warning("Failed to classify %s", type(error).__name__, exc_info=True)
        return ServerError(f"Unexpected error: {type(error).__name__}")


def _classify(error: BaseException) -> ChatBackendError:
    if isinstance(error, ChatBackendError):
        return error
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return StreamTimeoutError(str(error) or "Timed out waiting for the backend")
    if isinstance(error, (aiohttp.ClientError, ConnectionError, OSError)):
        return NetworkError(f"{type(error).__name__}: {error}")
    if isinstance(error, (json.JSONDecodeError, ValidationError, UnicodeDecodeError)):
        return ParseError(f"{type(error).__name__}: {error}")
    return ServerError(f"Unexpected error: {error}")
