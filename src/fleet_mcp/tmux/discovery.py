"""Discover tmux sessions and classify their liveness."""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Protocol

from ..naming import AGENT_WINDOW, DEV_WINDOW, SESSION_PREFIX, extract_agent_name
from ..proxy import ProxyError
from .models import (
    ACTIVITY_ACTIVE,
    ACTIVITY_ATTACHED,
    ACTIVITY_INACTIVE,
    MultiplexerSession,
)
from .transport import MultiplexerTransport

CACHE_TTL_SECONDS = 2.0
ACTIVE_WINDOW_SECONDS = 180
RUNNING_MARKERS = ("esc to interrupt", "Thinking", "Working")

STATUS_ATTACHED = "attached"
STATUS_RUNNING = "running"
STATUS_READY = "ready"
STATUS_NOT_FOUND = "not_found"

_SENTINEL_WINDOWS = frozenset({AGENT_WINDOW, DEV_WINDOW})
_ACTIVITY_GLYPHS = {
    ACTIVITY_ATTACHED: "🔗",
    ACTIVITY_ACTIVE: "●",
    ACTIVITY_INACTIVE: "○",
}

logger = logging.getLogger(__name__)


class SessionLineError(ValueError):
    """Raised when a ``list-sessions`` line does not have five fields."""


class NamedSession(Protocol):
    name: str


def _to_int(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return 0


def _split_lines(output: str) -> list[str]:
    stripped = output.strip()
    if not stripped:
        return []
    return stripped.split("\n")


def parse_session_line(line: str, now: datetime | None = None) -> MultiplexerSession:
    """Parse ``name|windows|attached|created|activity`` into a record."""

    parts = line.split("|")
    if len(parts) != 5:
        raise SessionLineError(f"unexpected tmux output format: {line}")

    name, windows_raw, attached_raw, created_raw, activity_raw = parts
    attached = attached_raw == "1"
    activity_epoch = _to_int(activity_raw)
    current = now or datetime.now(timezone.utc)

    if attached:
        activity = ACTIVITY_ATTACHED
    elif current.timestamp() - activity_epoch <= ACTIVE_WINDOW_SECONDS:
        activity = ACTIVITY_ACTIVE
    else:
        activity = ACTIVITY_INACTIVE

    return MultiplexerSession(
        name=name,
        windows=_to_int(windows_raw),
        attached=attached,
        created=datetime.fromtimestamp(_to_int(created_raw), tz=timezone.utc),
        last_used=datetime.fromtimestamp(activity_epoch, tz=timezone.utc),
        activity=activity,
    )


def is_known_session(name: str, session: MultiplexerSession) -> bool:
    """Return True when a tmux session looks like one of our agent sessions."""

    parts = name.split("-")
    if len(parts) >= 4 and parts[0] == SESSION_PREFIX:
        return True
    return any(window in _SENTINEL_WINDOWS for window in session.window_names)


def match_score(multiplexer_name: str, known_name: str) -> int:
    """Score how well a live session name matches a persisted one (0-100)."""

    if multiplexer_name == known_name:
        return 100

    live_agent = extract_agent_name(multiplexer_name)
    known_agent = extract_agent_name(known_name)
    if live_agent != multiplexer_name and known_agent != known_name and live_agent == known_agent:
        return 80

    if multiplexer_name in known_name or known_name in multiplexer_name:
        return 60
    return 0


def format_session_activity(activity: str) -> str:
    return _ACTIVITY_GLYPHS.get(activity, "?")


def _snapshot(sessions: dict[str, MultiplexerSession]) -> dict[str, MultiplexerSession]:
    return {
        name: replace(session, window_names=list(session.window_names))
        for name, session in sessions.items()
    }


class SessionDiscovery:
    """Cached view of tmux topology.

    One refresh replaces the whole session map, so a reader never sees old
    and new data mixed inside one cache window.
    """

    def __init__(
        self,
        transport: MultiplexerTransport,
        *,
        cache_ttl: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._transport = transport
        self._cache_ttl = cache_ttl
        self._clock = clock or time.monotonic
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._sessions: dict[str, MultiplexerSession] = {}
        self._last_update: float | None = None

    async def get_all_sessions(self) -> dict[str, MultiplexerSession]:
        if self._last_update is not None and self._clock() - self._last_update < self._cache_ttl:
            return _snapshot(self._sessions)

        sessions = await self._discover()
        self._sessions = sessions
        self._last_update = self._clock()
        return _snapshot(sessions)

    async def get_known_sessions(self) -> dict[str, MultiplexerSession]:
        sessions = await self.get_all_sessions()
        return {name: session for name, session in sessions.items() if is_known_session(name, session)}

    async def map_known_sessions(
        self, known: Iterable[NamedSession]
    ) -> dict[str, MultiplexerSession]:
        """Pair persisted sessions with live ones, inserting inactive placeholders."""

        live = await self.get_all_sessions()
        mapping: dict[str, MultiplexerSession] = {}
        for record in known:
            mapping[record.name] = live.get(record.name) or MultiplexerSession(
                name=record.name, attached=False, activity=ACTIVITY_INACTIVE
            )
        return mapping

    async def is_session_attached(self, name: str) -> bool:
        session = (await self.get_all_sessions()).get(name)
        return session is not None and session.attached

    async def get_session_activity(self, name: str) -> str:
        session = (await self.get_all_sessions()).get(name)
        return session.activity if session is not None else ACTIVITY_INACTIVE

    async def get_attached_session_count(self) -> int:
        sessions = await self.get_all_sessions()
        return sum(1 for session in sessions.values() if session.attached)

    async def list_sessions_by_activity(self) -> dict[str, list[MultiplexerSession]]:
        grouped: dict[str, list[MultiplexerSession]] = {
            ACTIVITY_ATTACHED: [],
            ACTIVITY_ACTIVE: [],
            ACTIVITY_INACTIVE: [],
        }
        for session in (await self.get_known_sessions()).values():
            grouped.setdefault(session.activity, []).append(session)
        return grouped

    async def get_session_status(self, name: str) -> str:
        session = (await self.get_all_sessions()).get(name)
        if session is None:
            return STATUS_NOT_FOUND
        if session.attached:
            return STATUS_ATTACHED

        if AGENT_WINDOW in session.window_names:
            try:
                content = await self._transport.capture_pane(name)
            except ProxyError:
                return STATUS_READY
            if any(marker in content for marker in RUNNING_MARKERS):
                return STATUS_RUNNING
        return STATUS_READY

    def refresh_cache(self) -> None:
        self._last_update = None

    async def _discover(self) -> dict[str, MultiplexerSession]:
        try:
            output = await self._transport.list_sessions()
        except ProxyError as exc:
            # No tmux server and no tmux binary both mean "nothing to show".
            logger.debug("tmux listing unavailable", extra={"error": str(exc)})
            return {}

        now = self._now()
        sessions: dict[str, MultiplexerSession] = {}
        for line in _split_lines(output):
            if not line:
                continue
            try:
                session = parse_session_line(line, now)
            except SessionLineError as exc:
                logger.debug("Skipping malformed session line", extra={"line": line, "error": str(exc)})
                continue

            try:
                session.window_names, session.panes = await self._session_windows(session.name)
            except ProxyError as exc:
                logger.debug(
                    "Window enrichment failed",
                    extra={"session": session.name, "error": str(exc)},
                )
                session.window_names, session.panes = [], 0
            sessions[session.name] = session
        return sessions

    async def _session_windows(self, name: str) -> tuple[list[str], int]:
        window_names = _split_lines(await self._transport.list_windows(name))
        pane_count = len(_split_lines(await self._transport.list_panes(name)))
        return window_names, pane_count


__all__ = [
    "ACTIVE_WINDOW_SECONDS",
    "CACHE_TTL_SECONDS",
    "STATUS_NOT_FOUND",
    "SessionDiscovery",
    "SessionLineError",
    "format_session_activity",
    "is_known_session",
    "match_score",
    "parse_session_line",
]
