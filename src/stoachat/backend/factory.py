from typing import Any

from .base import ChatBackend
from .cloud import CloudFunctionBackend


def create_chat_backend(backend: str, **config: Any) -> ChatBackend:
    """Create a chat backend instance.

    Args:
        backend: Backend type ('cloud')
        **config: Backend-specific configuration
            For cloud:
                - base_url: str (required)
                - auth_token: str | None
                - token_provider: async callable returning a token
                - timeout: float (default: 120 seconds)

    Returns:
        Chat backend instance

    Raises:
        ValueError: If backend type is not supported
        TypeError: If required configuration is missing
    """
    backend_lower = backend.lower()

    if backend_lower in ("cloud", "cloud_function"):
        if not config.get("base_url"):
            raise TypeError("Cloud backend requires 'base_url' in config")
        return CloudFunctionBackend(**config)

    raise ValueError(
        f"Unsupported backend: {backend}. "
        f"Supported backends: 'cloud'"
    )
