"""Provider factory functions for CLI.

Centralizes creation of the backend, cache and user context from environment
variables. Hides configuration details from command implementations.
"""

import os

import typer
from rich.console import Console

from ..backend import ChatBackend, create_chat_backend
from ..cache import HistoryCache, KeyValueStore, create_key_value_store
from ..config import STREAM_IDLE_TIMEOUT_SECONDS
from ..context import StaticUserContextProvider, UserContext

# Default console for output
_console = Console()

_TRUTHY = {"1", "true", "yes", "on"}


def get_backend(console: Console | None = None) -> ChatBackend:
    """Create the chat backend from environment variables.

    Raises:
        typer.Exit: If STOA_BACKEND_URL is not set

    Environment variables:
        STOA_BACKEND_URL: Base URL of the cloud functions (required)
        STOA_AUTH_TOKEN: Bearer token for the signed-in user
    """
    con = console or _console
    base_url = os.getenv("STOA_BACKEND_URL")
    if not base_url:
        con.print("[red]Error: STOA_BACKEND_URL not set in environment[/red]")
        raise typer.Exit(code=1)

    return create_chat_backend(
        "cloud",
        base_url=base_url,
        auth_token=os.getenv("STOA_AUTH_TOKEN"),
    )


def get_cache_store() -> KeyValueStore:
    """Create the local key-value store.

    Environment variables:
        STOA_CACHE_BACKEND: memory or sqlite (default: sqlite)
        STOA_CACHE_PATH: SQLite file (default: ~/.stoachat/cache.db)
    """
    backend = os.getenv("STOA_CACHE_BACKEND", "sqlite").lower()
    if backend == "sqlite":
        path = os.getenv("STOA_CACHE_PATH", os.path.expanduser("~/.stoachat/cache.db"))
        return create_key_value_store("sqlite", path=path)
    return create_key_value_store(backend)


def get_history_cache(store: KeyValueStore) -> HistoryCache:
    return HistoryCache(store)


def get_user_context() -> StaticUserContextProvider:
    """Create the user context provider.

    Environment variables:
        STOA_USER_ID: Signed-in user id (unset means signed out)
        STOA_ANONYMOUS: Whether the user is an anonymous account (default: false)
    """
    return StaticUserContextProvider(
        UserContext(
            user_id=os.getenv("STOA_USER_ID") or None,
            is_anonymous=os.getenv("STOA_ANONYMOUS", "false").lower() in _TRUTHY,
        )
    )


def get_stream_timeout() -> float | None:
    """Idle stream timeout in seconds; 0 or less disables it.

    Environment variables:
        STOA_STREAM_TIMEOUT: Seconds (default: 60)
    """
    raw = os.getenv("STOA_STREAM_TIMEOUT")
    if raw is None:
        return STREAM_IDLE_TIMEOUT_SECONDS
    try:
        value = float(raw)
    except ValueError:
        _console.print(f"[yellow]Ignoring invalid STOA_STREAM_TIMEOUT: {raw}[/yellow]")
        return STREAM_IDLE_TIMEOUT_SECONDS
    return value if value > 0 else None
