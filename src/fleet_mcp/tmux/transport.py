"""Transports that answer tmux topology queries."""

from __future__ import annotations

from collections import Counter
from typing import Mapping, Protocol

from ..naming import AGENT_WINDOW
from ..proxy import CommandFailedError, CommandProxy

SESSION_FORMAT = (
    "#{session_name}|#{session_windows}|#{?session_attached,1,0}"
    "|#{session_created}|#{session_activity}"
)


class MultiplexerTransport(Protocol):
    """Minimal tmux query surface used by session discovery."""

    async def list_sessions(self) -> str:
        ...

    async def list_windows(self, session: str) -> str:
        ...

    async def list_panes(self, session: str) -> str:
        ...

    async def capture_pane(self, session: str) -> str:
        ...


class TmuxTransport:
    """Query a real tmux server through the command proxy."""

    def __init__(self, proxy: CommandProxy, *, binary: str = "tmux") -> None:
        self._proxy = proxy
        self._binary = binary

    async def list_sessions(self) -> str:
        return await self._proxy.execute(self._binary, "list-sessions", "-F", SESSION_FORMAT)

    async def list_windows(self, session: str) -> str:
        return await self._proxy.execute(
            self._binary, "list-windows", "-t", session, "-F", "#{window_name}"
        )

    async def list_panes(self, session: str) -> str:
        return await self._proxy.execute(
            self._binary, "list-panes", "-s", "-t", session, "-F", "#{pane_id}"
        )

    async def capture_pane(self, session: str) -> str:
        return await self._proxy.execute(
            self._binary, "capture-pane", "-p", "-t", f"{session}:{AGENT_WINDOW}"
        )


class InMemoryTransport:
    """Test double serving canned tmux output and counting queries.

    A session missing from ``windows``, ``panes`` or ``pane_text`` makes the
    corresponding query fail like tmux would.
    """

    def __init__(
        self,
        sessions: str = "",
        *,
        windows: Mapping[str, str] | None = None,
        panes: Mapping[str, str] | None = None,
        pane_text: Mapping[str, str] | None = None,
        fail_listing: bool = False,
    ) -> None:
        self.sessions = sessions
        self.windows = dict(windows or {})
        self.panes = dict(panes or {})
        self.pane_text = dict(pane_text or {})
        self.fail_listing = fail_listing
        self.calls: Counter[str] = Counter()

    @staticmethod
    def _missing(operation: str, session: str) -> CommandFailedError:
        return CommandFailedError(
            f"tmux {operation} -t {session}",
            f"can't find session: {session}",
            stderr=f"can't find session: {session}",
            attempts=1,
            returncode=1,
        )

    async def list_sessions(self) -> str:
        self.calls["list_sessions"] += 1
        if self.fail_listing:
            raise CommandFailedError(
                "tmux list-sessions",
                "no server running",
                stderr="no server running on /tmp/tmux-1000/default",
                attempts=1,
                returncode=1,
            )
        return self.sessions

    async def list_windows(self, session: str) -> str:
        self.calls["list_windows"] += 1
        if session not in self.windows:
            raise self._missing("list-windows", session)
        return self.windows[session]

    async def list_panes(self, session: str) -> str:
        self.calls["list_panes"] += 1
        if session not in self.panes:
            raise self._missing("list-panes", session)
        return self.panes[session]

    async def capture_pane(self, session: str) -> str:
        self.calls["capture_pane"] += 1
        if session not in self.pane_text:
            raise self._missing("capture-pane", session)
        return self.pane_text[session]


__all__ = ["InMemoryTransport", "MultiplexerTransport", "SESSION_FORMAT", "TmuxTransport"]
