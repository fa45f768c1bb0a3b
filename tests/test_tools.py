from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from fleet_mcp.activity import ActivityMonitor
from fleet_mcp.facade import FleetFacade
from fleet_mcp.orchestrator import AgentOrchestrator
from fleet_mcp.project import ProjectConfigLoader
from fleet_mcp.proxy import FakeCommandProxy
from fleet_mcp.storage import StateStore
from fleet_mcp.tmux import InMemoryTransport, SessionDiscovery
from fleet_mcp.tools import ToolHandles, register_tools

SESSION = "agent-fleet-abc1234-claude"


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class StubLogger:
    def __init__(self) -> None:
        self.records: list[tuple[str, str, dict[str, Any]]] = []

    def info(self, message, extra=None):
        self.records.append(("info", message, extra or {}))

    def debug(self, message, extra=None):
        self.records.append(("debug", message, extra or {}))

    def warning(self, message, extra=None):
        self.records.append(("warning", message, extra or {}))


class StubContext:
    def __init__(self) -> None:
        self.logger = StubLogger()


class StubVcs:
    async def short_hash(self, cwd=None):
        return "abc1234"

    async def remote_url(self, cwd=None):
        return "git@github.com:org/fleet.git"

    async def default_branch(self, cwd=None):
        return "main"

    async def add_worktree(self, branch, path, cwd=None):
        Path(path).mkdir(parents=True)

    async def remove_worktree(self, path, cwd=None):
        return None

    async def delete_branch(self, branch, cwd=None):
        return None

    async def staged_shortstat(self, worktree):
        return " 1 file changed, 4 insertions(+)"

    async def log_info(self, worktree):
        return 1, None


def _register(tmp_path: Path, *, live: bool = True, server: Any = None) -> tuple[Any, ToolHandles, FakeCommandProxy]:
    proxy = FakeCommandProxy()
    sessions = f"{SESSION}|2|1|1640000000|1640000000" if live else ""
    transport = InMemoryTransport(
        sessions,
        windows={SESSION: "agent\nfleet-dev"},
        panes={SESSION: "%0\n%1"},
    )
    discovery = SessionDiscovery(transport)
    store = StateStore(tmp_path / "state.json")
    vcs = StubVcs()
    orchestrator = AgentOrchestrator(
        proxy,
        vcs,
        store,
        discovery,
        project_loader=ProjectConfigLoader(tmp_path / "fleet.yaml"),
        worktree_root=tmp_path / "worktrees",
        repo_root=tmp_path,
        clock=lambda: 1_700_000_000,
    )
    facade = FleetFacade(
        proxy,
        discovery,
        store,
        vcs,
        orchestrator,
        monitor=ActivityMonitor(store, vcs),
        repo_root=tmp_path,
    )
    server = server if server is not None else StubServer()
    handles = register_tools(server, facade=facade)  # type: ignore[arg-type]
    return server, handles, proxy


def test_registers_all_tools(tmp_path: Path) -> None:
    server, handles, _ = _register(tmp_path)

    assert set(server._tools) == {
        "list_sessions",
        "session_status",
        "kill_session",
        "broadcast",
        "run_command",
        "spawn_agent",
        "spawn_agents",
        "activity_snapshot",
    }
    assert handles.spawn_agent.name == "spawn_agent"


def test_spawn_list_and_snapshot(tmp_path: Path) -> None:
    _, handles, proxy = _register(tmp_path)
    context = StubContext()

    async def scenario():
        spawned = await handles.spawn_agent.fn("write tests", model="codex", context=context)
        listing = await handles.list_sessions.fn(context=context)
        snapshot = await handles.activity_snapshot.fn(context=context)
        return spawned, listing, snapshot

    spawned, listing, snapshot = asyncio.run(scenario())

    assert spawned == {"session": "agent-fleet-abc1234-codex"}
    assert [entry["name"] for entry in listing] == ["agent-fleet-abc1234-codex"]
    assert listing[0]["status"] == "inactive"
    assert snapshot["agent-fleet-abc1234-codex"]["status"] == "working"
    assert snapshot["agent-fleet-abc1234-codex"]["insertions"] == 4
    assert ("info", "Spawned agent", {"session": "agent-fleet-abc1234-codex", "model": "codex"}) in context.logger.records
    assert proxy.calls_to("tmux", "new-session")


def test_spawn_agents_tool(tmp_path: Path) -> None:
    _, handles, _ = _register(tmp_path, live=False)

    result = asyncio.run(handles.spawn_agents.fn("claude:1,gemini:1", "hello"))

    assert result == {"sessions": [SESSION, "agent-fleet-abc1234-gemini"]}


def test_status_broadcast_run_and_kill(tmp_path: Path) -> None:
    _, handles, proxy = _register(tmp_path)
    proxy.add_response(("tmux", "new-window"), "2\n")
    proxy.add_response(("tmux", "capture-pane"), "done\n")
    (tmp_path / "worktrees").mkdir()
    StateStore(tmp_path / "state.json").save_state("p", "b", SESSION, str(tmp_path / "worktrees"), "claude")

    async def scenario():
        status = await handles.session_status.fn(SESSION)
        broadcast = await handles.broadcast.fn("stand up")
        ran = await handles.run_command.fn("ls")
        killed = await handles.kill_session.fn(SESSION)
        return status, broadcast, ran, killed

    status, broadcast, ran, killed = asyncio.run(scenario())

    assert status == {"session": SESSION, "status": "attached", "activity": "attached", "attached": True}
    assert broadcast == {"delivered": [SESSION]}
    assert ran == {"command": "ls", "outputs": {SESSION: "done"}}
    assert killed == {"session": SESSION, "killed": True}
    assert proxy.calls_to("tmux", "kill-window") == []


def test_list_sessions_includes_activity_indicator(tmp_path: Path) -> None:
    _, handles, _ = _register(tmp_path)
    StateStore(tmp_path / "state.json").save_state_with_port("p", "b", SESSION, "", "claude", 3000)

    listing = asyncio.run(handles.list_sessions.fn())

    assert listing[0]["activity"] == "attached"
    assert listing[0]["activity_indicator"] == "🔗"
    assert listing[0]["windows"] == ["agent", "fleet-dev"]
    assert listing[0]["port"] == 3000


class BareFunctionServer:
    """Mimics fastmcp releases whose decorator hands back the function itself."""

    def __init__(self) -> None:
        self.registered: dict[str, Any] = {}

    def tool(self, *args, **kwargs):
        def decorator(fn):
            self.registered[kwargs["name"]] = fn
            return fn

        return decorator


def test_handles_do_not_depend_on_decorator_return(tmp_path: Path) -> None:
    server = BareFunctionServer()

    _, bare_handles, _ = _register(tmp_path, live=False, server=server)

    assert bare_handles.spawn_agent.name == "spawn_agent"
    assert server.registered["spawn_agent"] is bare_handles.spawn_agent.fn
    assert asyncio.run(bare_handles.spawn_agents.fn("claude:1", "hello")) == {"sessions": [SESSION]}
