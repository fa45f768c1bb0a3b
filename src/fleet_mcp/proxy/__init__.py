"""Command execution proxy."""

from .runner import (
    PROXY_TAG,
    CommandFailedError,
    CommandNotFoundError,
    CommandProxy,
    CommandResult,
    CommandTimedOutError,
    FakeCommandProxy,
    ProxyConfig,
    ProxyError,
    wrap_error,
)

__all__ = [
    "PROXY_TAG",
    "CommandFailedError",
    "CommandNotFoundError",
    "CommandProxy",
    "CommandResult",
    "CommandTimedOutError",
    "FakeCommandProxy",
    "ProxyConfig",
    "ProxyError",
    "wrap_error",
]
