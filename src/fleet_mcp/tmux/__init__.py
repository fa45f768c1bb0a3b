"""tmux session discovery."""

from .discovery import (
    SessionDiscovery,
    SessionLineError,
    format_session_activity,
    is_known_session,
    match_score,
    parse_session_line,
)
from .models import MultiplexerSession
from .transport import InMemoryTransport, MultiplexerTransport, TmuxTransport

__all__ = [
    "InMemoryTransport",
    "MultiplexerSession",
    "MultiplexerTransport",
    "SessionDiscovery",
    "SessionLineError",
    "TmuxTransport",
    "format_session_activity",
    "is_known_session",
    "match_score",
    "parse_session_line",
]
