"""Tool registration for the fleet MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from fastmcp import Context, FastMCP

from ..facade import FleetFacade
from ..tmux import format_session_activity

logger = logging.getLogger(__name__)


ToolFn = Callable[..., Awaitable[Any]]


@dataclass(slots=True, frozen=True)
class RegisteredTool:
    name: str
    fn: ToolFn


@dataclass(slots=True)
class ToolHandles:
    list_sessions: RegisteredTool
    session_status: RegisteredTool
    kill_session: RegisteredTool
    broadcast: RegisteredTool
    run_command: RegisteredTool
    spawn_agent: RegisteredTool
    spawn_agents: RegisteredTool
    activity_snapshot: RegisteredTool


def register_tools(server: FastMCP, *, facade: FleetFacade) -> ToolHandles:
    """Register the fleet tools on the server."""

    async def _list_sessions(context: Context | None = None) -> list[dict[str, Any]]:
        """List persisted agent sessions with live status and diff totals."""

        sessions, live = await facade.get_sessions_with_multiplexer_info()
        payload = []
        for record in sessions:
            entry = record.to_dict()
            session = live.get(record.name)
            if session is not None:
                entry["activity"] = session.activity
                entry["activity_indicator"] = format_session_activity(session.activity)
                entry["windows"] = list(session.window_names)
            payload.append(entry)

        _emit_log(context, "debug", "Listed agent sessions", extra={"count": len(payload)})
        return payload

    async def _session_status(session: str, context: Context | None = None) -> dict[str, Any]:
        status = await facade.get_session_status(session)
        return {
            "session": session,
            "status": status,
            "activity": await facade.get_session_activity(session),
            "attached": await facade.is_session_attached(session),
        }

    async def _kill_session(session: str, context: Context | None = None) -> dict[str, Any]:
        """Kill a session and remove its worktree, branch and state entry."""

        await facade.kill_session(session)
        _emit_log(context, "warning", "Killed agent session", extra={"session": session})
        return {"session": session, "killed": True}

    async def _broadcast(message: str, context: Context | None = None) -> dict[str, Any]:
        delivered = await facade.run_broadcast(message)
        _emit_log(context, "info", "Broadcast message", extra={"sessions": delivered})
        return {"delivered": delivered}

    async def _run_command(
        command: str,
        delete_window: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        outputs = await facade.run_command(command, delete_window=delete_window)
        _emit_log(
            context,
            "info",
            "Ran command in agent sessions",
            extra={"command": command, "sessions": sorted(outputs)},
        )
        return {"command": command, "outputs": outputs}

    async def _spawn_agent(
        prompt: str,
        model: str = "claude",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Spawn one agent in its own worktree and tmux session."""

        session = await facade.spawn_agent(prompt, model)
        _emit_log(context, "info", "Spawned agent", extra={"session": session, "model": model})
        return {"session": session}

    async def _spawn_agents(
        agents: str,
        prompt: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        sessions = await facade.spawn_agents(agents, prompt)
        _emit_log(context, "info", "Spawned agents", extra={"agents": agents, "sessions": sessions})
        return {"sessions": sessions}

    async def _activity_snapshot(
        refresh: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        if refresh:
            await facade.refresh_activity()
        snapshot = {name: metrics.to_dict() for name, metrics in facade.activity_snapshot().items()}
        _emit_log(context, "debug", "Activity snapshot", extra={"count": len(snapshot)})
        return snapshot

    return ToolHandles(
        list_sessions=_register(
            server,
            _list_sessions,
            "list_sessions",
            "List agent sessions with status, diff totals, dev port and tmux activity.",
        ),
        session_status=_register(
            server,
            _session_status,
            "session_status",
            "Report attached/running/ready/inactive/not_found for one session.",
        ),
        kill_session=_register(
            server,
            _kill_session,
            "kill_session",
            "Kill an agent's tmux session and clean up its worktree, branch and state.",
        ),
        broadcast=_register(
            server,
            _broadcast,
            "broadcast",
            "Send a message to the agent window of every active session.",
        ),
        run_command=_register(
            server,
            _run_command,
            "run_command",
            "Run a shell command in a new window of every active session and capture output.",
        ),
        spawn_agent=_register(
            server,
            _spawn_agent,
            "spawn_agent",
            "Spawn a single agent (claude, cursor, codex, gemini, random or a raw command).",
        ),
        spawn_agents=_register(
            server,
            _spawn_agents,
            "spawn_agents",
            "Spawn agents from an 'agent:count[,agent:count...]' list with one prompt.",
        ),
        activity_snapshot=_register(
            server,
            _activity_snapshot,
            "activity_snapshot",
            "Return working/idle/stuck git activity metrics for every session.",
        ),
    )


def _register(server: FastMCP, fn: ToolFn, name: str, description: str) -> RegisteredTool:
    # server.tool returns a tool object or the bare function depending on the fastmcp release.
    server.tool(name=name, description=description)(fn)
    return RegisteredTool(name=name, fn=fn)


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["RegisteredTool", "ToolHandles", "register_tools"]
