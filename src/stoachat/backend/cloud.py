"""Cloud-function chat backend over HTTP.

Streams replies from ``processChatMessageV2`` as server-sent events and reads
history from ``getChatHistoryV2``. Uses aiohttp for async HTTP.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import aiohttp
from pydantic import ValidationError

from ..chat.errors import (
    ChatBackendError,
    NotAuthenticatedError,
    ParseError,
    RateLimitExceededError,
    ServerError,
    classify_error,
)
from ..config import CHAT_FUNCTION_NAME, HISTORY_FUNCTION_NAME, MSG_RATE_LIMITED, REQUEST_TIMEOUT_SECONDS
from .base import ChatBackend
from .models import BackendEvent, ChatRequest, ErrorPayload, EventType

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
TokenProvider = Callable[[], Awaitable[str | None]]


def parse_sse_line(line: str) -> BackendEvent | None:
    """Parse one SSE line into an event.

    Returns None for blank lines, comments, non-data fields and malformed
    payloads (which are logged and skipped).
    """
    line = line.strip()
    if not line.startswith(SSE_DATA_PREFIX):
        return None

    body = line[len(SSE_DATA_PREFIX):].strip()
    if not body or body == "[DONE]":
        return None

    try:
        raw = json.loads(body)
    except (ValueError, RecursionError):
        logger.warning("Skipping malformed SSE line: %.200s", body)
        return None

    if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
        logger.warning("Skipping SSE event without a type: %.200s", body)
        return None

    try:
        return BackendEvent.model_validate(raw)
    except ValidationError:
        logger.warning("Unknown streaming event type: %s", raw.get("type"))
        return None


def error_from_event(event: BackendEvent) -> ChatBackendError:
    """Map an ``error`` event to the error taxonomy."""
    message = ErrorPayload.model_validate(event.data).message
    lowered = message.lower()
    if "limit" in lowered or "exceeded" in lowered:
        return RateLimitExceededError(message)
    return ServerError(message)


async def iter_lines(chunks: AsyncIterator[bytes]) -> AsyncIterator[str]:
    """Split a byte stream into decoded lines, tolerating split UTF-8 sequences."""
    buffer = b""
    async for chunk in chunks:
        buffer += chunk
        *lines, buffer = buffer.split(b"\n")
        for line in lines:
            yield line.decode("utf-8", errors="replace").rstrip("\r")
    if buffer:
        yield buffer.decode("utf-8", errors="replace").rstrip("\r")


async def iter_events(lines: AsyncIterator[str]) -> AsyncIterator[BackendEvent]:
    """Turn SSE lines into events, raising on the first ``error`` event."""
    async for line in lines:
        event = parse_sse_line(line)
        if event is None:
            continue
        if event.type is EventType.ERROR:
            raise error_from_event(event)
        yield event


async def _error_message(response: aiohttp.ClientResponse, default: str) -> str:
    try:
        body = await response.json(content_type=None)
    except (json.JSONDecodeError, aiohttp.ClientError, UnicodeDecodeError):
        return default
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, str) and error:
            return error
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
    return default


async def raise_for_status(response: aiohttp.ClientResponse) -> None:
    """Map a non-200 response to the error taxonomy."""
    if response.status == 200:
        return
    if response.status == 429:
        raise RateLimitExceededError(await _error_message(response, MSG_RATE_LIMITED))
    if response.status in (401, 403):
        raise NotAuthenticatedError(f"HTTP {response.status}")
    raise ServerError(await _error_message(response, f"HTTP {response.status}"))


class CloudFunctionBackend(ChatBackend):
    """Chat backend hosted as HTTP cloud functions.

    Args:
        base_url: URL the function names are appended to
        auth_token: Static bearer token
        token_provider: Coroutine returning a fresh token; wins over ``auth_token``
        timeout: Seconds allowed between reads (streaming) or per request (history)
        session: Externally owned aiohttp session
    """

    def __init__(
        self,
        base_url: str,
        auth_token: str | None = None,
        token_provider: TokenProvider | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        session: aiohttp.ClientSession | None = None
    ):
        self.base_url = base_url.rstrip("/")
        self._auth_token = auth_token
        self._token_provider = token_provider
        self._timeout = timeout
        self._session = session
        self._owns_session = session is None

    @property
    def backend_type(self) -> str:
        return "cloud"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def _headers(self) -> dict[str, str]:
        token = await self._token_provider() if self._token_provider else self._auth_token
        if not token:
            raise NotAuthenticatedError("No auth token available")
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _url(self, function_name: str) -> str:
        return f"{self.base_url}/{function_name}"

    async def stream_message(self, request: ChatRequest) -> AsyncIterator[BackendEvent]:
        headers = await self._headers()
        headers["Accept"] = "text/event-stream"
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self._timeout, sock_read=self._timeout)

        logger.debug("Sending %s message (conversation %s)", request.chat_mode, request.conversation_id)
        try:
            async with self._get_session().post(
                self._url(CHAT_FUNCTION_NAME),
                json=request.to_wire(),
                headers=headers,
                timeout=timeout,
            ) as response:
                await raise_for_status(response)
                async for event in iter_events(iter_lines(response.content.iter_any())):
                    yield event
                    if event.type is EventType.COMPLETE:
                        return
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            raise classify_error(e) from e

    async def fetch_history(self) -> list[dict[str, Any]]:
        headers = await self._headers()
        timeout = aiohttp.ClientTimeout(total=self._timeout)

        try:
            async with self._get_session().post(
                self._url(HISTORY_FUNCTION_NAME),
                json={"data": {}},
                headers=headers,
                timeout=timeout,
            ) as response:
                await raise_for_status(response)
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            raise classify_error(e) from e
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ParseError(f"Invalid history response: {e}") from e

        records = body
        if isinstance(body, dict):
            records = body.get("result", body.get("data"))
        if not isinstance(records, list):
            raise ParseError(f"Unexpected history response shape: {type(records).__name__}")

        logger.info("Fetched %d history records", len(records))
        return records

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
