from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from fleet_mcp.facade import FleetFacade, SessionNotFoundError
from fleet_mcp.orchestrator import AgentOrchestrator
from fleet_mcp.project import ProjectConfigLoader
from fleet_mcp.proxy import PROXY_TAG, CommandFailedError, FakeCommandProxy, ProxyError
from fleet_mcp.storage import StateStore
from fleet_mcp.tmux import InMemoryTransport, SessionDiscovery

REPO = "git@github.com:org/fleet.git"
CLAUDE = "agent-fleet-abc1234-claude"
CODEX = "agent-fleet-abc1234-codex"
GEMINI = "agent-fleet-abc1234-gemini"


class StubVcs:
    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.shortstats: dict[str, str] = {}
        self.fail_remove = False
        self.fail_worktree = False

    async def short_hash(self, cwd=None) -> str:
        return "abc1234"

    async def remote_url(self, cwd=None) -> str:
        return REPO

    async def default_branch(self, cwd=None) -> str:
        return "main"

    async def add_worktree(self, branch, path, cwd=None) -> None:
        if self.fail_worktree:
            raise CommandFailedError("git worktree add", "boom", attempts=1)
        self.calls.append(("add_worktree", branch))

    async def remove_worktree(self, path, cwd=None) -> None:
        self.calls.append(("remove_worktree", str(path)))
        if self.fail_remove:
            raise CommandFailedError("git worktree remove", "locked", attempts=1)

    async def delete_branch(self, branch, cwd=None) -> None:
        self.calls.append(("delete_branch", branch))

    async def staged_shortstat(self, worktree) -> str:
        return self.shortstats.get(str(worktree), "")

    async def log_info(self, worktree):
        return 0, None

    async def current_branch(self, cwd=None) -> str:
        return "main"

    async def branch_exists(self, branch, cwd=None) -> bool:
        return branch != "missing-branch"

    async def commit_all(self, worktree, message) -> bool:
        self.calls.append(("commit_all", str(worktree), message))
        return True

    async def commits_ahead(self, base, branch, cwd=None) -> int:
        return 2

    async def rebase(self, branch, cwd=None) -> None:
        self.calls.append(("rebase", branch))


def _line(name: str, attached: int = 0) -> str:
    return f"{name}|2|{attached}|1640000000|1640000000"


def _build(tmp_path: Path, *, live: list[str], pane_text: dict[str, str] | None = None):
    proxy = FakeCommandProxy()
    transport = InMemoryTransport(
        "\n".join(_line(name) for name in live),
        windows={name: "agent\nfleet-dev" for name in live},
        panes={name: "%0\n%1" for name in live},
        pane_text=pane_text or {},
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
    facade = FleetFacade(proxy, discovery, store, vcs, orchestrator, repo_root=tmp_path)
    return facade, proxy, store, vcs


def _seed(store: StateStore, tmp_path: Path) -> dict[str, str]:
    worktrees = {}
    for name, port in ((CLAUDE, 3001), (CODEX, 3000), (GEMINI, 0)):
        worktree = tmp_path / "worktrees" / name
        worktree.mkdir(parents=True)
        worktrees[name] = str(worktree)
        store.save_state_with_port("p", f"branch-{name}", name, str(worktree), "claude", port, git_repo=REPO)
    return worktrees


def test_get_sessions_joins_state_and_live_topology(tmp_path: Path) -> None:
    facade, _, store, vcs = _build(tmp_path, live=[CLAUDE, GEMINI], pane_text={CLAUDE: "Working..."})
    worktrees = _seed(store, tmp_path)
    vcs.shortstats[worktrees[CLAUDE]] = " 2 files changed, 12 insertions(+), 3 deletions(-)"

    sessions = asyncio.run(facade.get_sessions())

    assert [record.name for record in sessions] == [GEMINI, CODEX, CLAUDE]
    by_name = {record.name: record for record in sessions}
    assert by_name[CLAUDE].status == "running"
    assert (by_name[CLAUDE].insertions, by_name[CLAUDE].deletions) == (12, 3)
    assert by_name[CLAUDE].activity == "working"
    assert by_name[CLAUDE].agent_name == "claude"
    assert by_name[CODEX].status == "inactive"
    assert by_name[GEMINI].status == "ready"


def test_sessions_with_multiplexer_info(tmp_path: Path) -> None:
    facade, _, store, _ = _build(tmp_path, live=[CLAUDE])
    _seed(store, tmp_path)

    sessions, live = asyncio.run(facade.get_sessions_with_multiplexer_info())

    assert len(sessions) == 3
    assert live[CLAUDE].panes == 2
    assert live[CODEX].activity == "inactive"


def test_corrupt_state_is_wrapped(tmp_path: Path) -> None:
    facade, _, store, _ = _build(tmp_path, live=[])
    store.get_state_path().write_text("{oops", encoding="utf-8")

    with pytest.raises(ProxyError) as excinfo:
        asyncio.run(facade.get_sessions())

    assert str(excinfo.value).startswith(f"{PROXY_TAG}: GetSessions:")


def test_session_status_and_state_lookup(tmp_path: Path) -> None:
    facade, _, store, _ = _build(tmp_path, live=[CLAUDE])
    _seed(store, tmp_path)

    async def scenario() -> list[str]:
        return [
            await facade.get_session_status(CLAUDE),
            await facade.get_session_status(CODEX),
            await facade.get_session_status("agent-fleet-abc1234-nobody"),
        ]

    assert asyncio.run(scenario()) == ["ready", "inactive", "not_found"]
    assert facade.get_session_state(CODEX).port == 3000
    with pytest.raises(SessionNotFoundError):
        facade.get_session_state("ghost")
    with pytest.raises(KeyError):
        facade.get_session_state("ghost")


def test_kill_session_cleans_everything(tmp_path: Path) -> None:
    facade, proxy, store, vcs = _build(tmp_path, live=[CLAUDE])
    worktrees = _seed(store, tmp_path)

    asyncio.run(facade.kill_session(CLAUDE))

    assert proxy.calls_to("tmux", "kill-session") == [("tmux", "kill-session", "-t", CLAUDE)]
    assert ("remove_worktree", worktrees[CLAUDE]) in vcs.calls
    assert ("delete_branch", f"branch-{CLAUDE}") in vcs.calls
    assert CLAUDE not in store.load_states()


def test_kill_session_logs_cleanup_errors(tmp_path: Path, caplog) -> None:
    facade, proxy, store, vcs = _build(tmp_path, live=[])
    _seed(store, tmp_path)
    vcs.fail_remove = True

    with caplog.at_level("ERROR"):
        asyncio.run(facade.kill_session(CODEX))

    assert proxy.calls_to("tmux", "kill-session") == []
    assert "Error removing git worktree" in caplog.text
    assert CODEX not in store.load_states()


def test_kill_session_errors_are_tagged(tmp_path: Path) -> None:
    facade, proxy, store, _ = _build(tmp_path, live=[CLAUDE])
    _seed(store, tmp_path)
    proxy.add_response(("tmux", "kill-session"), returncode=1, stderr="permission denied")

    with pytest.raises(ProxyError) as failed:
        asyncio.run(facade.kill_session(CLAUDE))
    assert str(failed.value).startswith(f"{PROXY_TAG}: KillSession:")
    assert failed.value.stderr == "permission denied"

    with pytest.raises(ProxyError, match="session not found"):
        asyncio.run(facade.kill_session("agent-fleet-abc1234-ghost"))


def test_broadcast_targets_live_sessions_only(tmp_path: Path) -> None:
    facade, proxy, store, _ = _build(tmp_path, live=[CLAUDE, GEMINI])
    _seed(store, tmp_path)

    delivered = asyncio.run(facade.run_broadcast("please rebase"))

    assert delivered == [CLAUDE, GEMINI]
    assert proxy.calls_to("tmux", "send-keys") == [
        ("tmux", "send-keys", "-t", f"{CLAUDE}:agent", "please rebase", "Enter"),
        ("tmux", "send-keys", "-t", f"{CLAUDE}:agent", "Enter"),
        ("tmux", "send-keys", "-t", f"{GEMINI}:agent", "please rebase", "Enter"),
        ("tmux", "send-keys", "-t", f"{GEMINI}:agent", "Enter"),
    ]


def test_broadcast_without_active_sessions_fails(tmp_path: Path) -> None:
    facade, _, store, _ = _build(tmp_path, live=[])
    _seed(store, tmp_path)

    with pytest.raises(ProxyError, match="RunBroadcast: no active agent sessions found"):
        asyncio.run(facade.run_broadcast("hello"))


def test_run_command_captures_output_and_deletes_window(tmp_path: Path) -> None:
    facade, proxy, store, _ = _build(tmp_path, live=[CLAUDE])
    _seed(store, tmp_path)
    proxy.add_response(("tmux", "new-window"), "4\n")
    proxy.add_response(("tmux", "capture-pane"), "$ make test\nok\n")

    outputs = asyncio.run(facade.run_command("make test", delete_window=True))

    assert outputs == {CLAUDE: "$ make test\nok"}
    assert ("tmux", "send-keys", "-t", f"{CLAUDE}:4", "make test", "Enter") in proxy.invocations
    assert proxy.calls_to("tmux", "kill-window") == [("tmux", "kill-window", "-t", f"{CLAUDE}:4")]


def test_run_checkpoint_commits_and_rebases(tmp_path: Path) -> None:
    facade, _, store, vcs = _build(tmp_path, live=[CLAUDE])
    worktrees = _seed(store, tmp_path)

    result = asyncio.run(facade.run_checkpoint("claude", "checkpoint: parser"))

    assert result["session"] == CLAUDE
    assert result["commits"] == 2
    assert ("commit_all", worktrees[CLAUDE], "checkpoint: parser") in vcs.calls
    assert ("rebase", f"branch-{CLAUDE}") in vcs.calls


def test_run_checkpoint_unknown_agent(tmp_path: Path) -> None:
    facade, _, store, _ = _build(tmp_path, live=[])
    _seed(store, tmp_path)

    with pytest.raises(ProxyError, match="no active session found for agent: cursor"):
        asyncio.run(facade.run_checkpoint("cursor", "msg"))


def test_spawn_agent_refreshes_cache_and_wraps_errors(tmp_path: Path) -> None:
    facade, proxy, store, vcs = _build(tmp_path, live=[])

    session = asyncio.run(facade.spawn_agent("do it", "claude"))
    assert session == CLAUDE
    assert store.get_session_state(CLAUDE) is not None

    vcs.fail_worktree = True
    with pytest.raises(ProxyError) as excinfo:
        asyncio.run(facade.spawn_agent("do it", "codex"))
    assert str(excinfo.value).startswith(f"{PROXY_TAG}: SpawnAgent: failed to create agent codex")

    with pytest.raises(ProxyError, match="SpawnAgent"):
        asyncio.run(facade.spawn_agents("codex:0", "p"))


def test_discovery_delegates(tmp_path: Path) -> None:
    facade, _, _, _ = _build(tmp_path, live=[CLAUDE])

    async def scenario() -> None:
        assert await facade.get_attached_session_count() == 0
        assert await facade.is_session_attached(CLAUDE) is False
        assert await facade.get_session_activity("ghost") == "inactive"
        grouped = await facade.get_sessions_by_activity()
        assert sum(len(sessions) for sessions in grouped.values()) == 1
        facade.refresh_multiplexer_cache()
        facade.refresh_sessions()

    asyncio.run(scenario())
    assert facade.activity_snapshot() == {}
