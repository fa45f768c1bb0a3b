"""Single entry point composing discovery, state, git and the orchestrator."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from .activity import ActivityMetrics, ActivityMonitor, classify_recency, parse_shortstat
from .config import FleetSettings
from .naming import AGENT_WINDOW, extract_agent_name
from .orchestrator import AgentOrchestrator, SpawnError
from .project import ConfigurationError, ProjectConfigLoader
from .proxy import (
    CommandFailedError,
    CommandNotFoundError,
    CommandProxy,
    ProxyError,
    wrap_error,
)
from .proxy.utils import sanitize_environment
from .storage import PersistedAgentState, SessionRecord, StateStore, StateStoreError
from .tmux import MultiplexerSession, SessionDiscovery, TmuxTransport
from .tmux.discovery import STATUS_NOT_FOUND
from .tmux.models import ACTIVITY_INACTIVE
from .vcs import GitClient, VersionControl

STATUS_INACTIVE = ACTIVITY_INACTIVE

logger = logging.getLogger(__name__)


class SessionNotFoundError(KeyError):
    """Raised when a session is absent from the state file."""

    def __str__(self) -> str:
        return f"session not found: {self.args[0]}" if self.args else "session not found"


class FleetFacade:
    """High level operations over the agent fleet.

    Every collaborator is injected, so tests can swap in
    :class:`~fleet_mcp.proxy.FakeCommandProxy`, an in-memory tmux transport
    and stub git clients. Use :meth:`from_settings` for the real wiring.
    """

    def __init__(
        self,
        proxy: CommandProxy,
        discovery: SessionDiscovery,
        state_store: StateStore,
        vcs: VersionControl,
        orchestrator: AgentOrchestrator,
        *,
        monitor: ActivityMonitor | None = None,
        repo_root: Path | None = None,
        tmux_binary: str = "tmux",
    ) -> None:
        self._proxy = proxy
        self._discovery = discovery
        self._state_store = state_store
        self._vcs = vcs
        self._orchestrator = orchestrator
        self._monitor = monitor
        self._repo_root = repo_root
        self._tmux = tmux_binary

    @classmethod
    def from_settings(cls, settings: FleetSettings) -> "FleetFacade":
        proxy = CommandProxy(settings.proxy_config())
        discovery = SessionDiscovery(TmuxTransport(proxy))
        state_store = StateStore(settings.state_path)
        vcs = GitClient(proxy)
        orchestrator = AgentOrchestrator(
            proxy,
            vcs,
            state_store,
            discovery,
            project_loader=ProjectConfigLoader(settings.project_config),
            worktree_root=settings.worktree_root,
            repo_root=settings.repo_root,
        )
        return cls(
            proxy,
            discovery,
            state_store,
            vcs,
            orchestrator,
            monitor=ActivityMonitor(state_store, vcs),
            repo_root=settings.repo_root,
        )

    @property
    def discovery(self) -> SessionDiscovery:
        return self._discovery

    @property
    def state_store(self) -> StateStore:
        return self._state_store

    def _load_states(self, operation: str) -> dict[str, PersistedAgentState]:
        try:
            return self._state_store.load_states()
        except StateStoreError as exc:
            raise wrap_error(operation, exc) from exc

    async def get_sessions(self) -> list[SessionRecord]:
        """Every session in the state file, joined with live tmux data and sorted by port."""

        states = self._load_states("GetSessions")
        live = await self._discovery.get_all_sessions()

        records: list[SessionRecord] = []
        for name, state in states.items():
            if name in live:
                status = await self._discovery.get_session_status(name)
                insertions, deletions = await self._diff_totals(name, state.worktree_path)
            else:
                status, insertions, deletions = STATUS_INACTIVE, 0, 0

            created_at = state.created_at.isoformat() if state.created_at else ""
            updated_at = state.updated_at.isoformat() if state.updated_at else ""
            records.append(
                SessionRecord(
                    name=name,
                    agent_name=extract_agent_name(name),
                    model=state.model,
                    prompt=state.prompt,
                    status=status,
                    insertions=insertions,
                    deletions=deletions,
                    worktree_path=state.worktree_path,
                    port=state.port,
                    activity=classify_recency(updated_at, created_at, insertions, deletions),
                    created_at=created_at,
                    updated_at=updated_at,
                )
            )

        records.sort(key=lambda record: (record.port, record.name))
        return records

    async def _diff_totals(self, name: str, worktree: str) -> tuple[int, int]:
        if not worktree or not Path(worktree).exists():
            return 0, 0
        try:
            insertions, deletions, _ = parse_shortstat(await self._vcs.staged_shortstat(worktree))
        except ProxyError as exc:
            logger.debug("Diff stats unavailable", extra={"session": name, "error": str(exc)})
            return 0, 0
        return insertions, deletions

    async def get_sessions_with_multiplexer_info(
        self,
    ) -> tuple[list[SessionRecord], dict[str, MultiplexerSession]]:
        sessions = await self.get_sessions()
        return sessions, await self._discovery.map_known_sessions(sessions)

    def get_session_state(self, name: str) -> PersistedAgentState:
        state = self._load_states("GetSessionState").get(name)
        if state is None:
            raise SessionNotFoundError(name)
        return state

    async def get_session_status(self, name: str) -> str:
        status = await self._discovery.get_session_status(name)
        if status != STATUS_NOT_FOUND:
            return status
        if name in self._load_states("GetSessionStatus"):
            return STATUS_INACTIVE
        return STATUS_NOT_FOUND

    async def attach_to_session(self, name: str) -> None:
        """Hand the terminal to ``tmux attach-session``; returns when the client detaches."""

        try:
            process = await asyncio.create_subprocess_exec(
                self._tmux,
                "attach-session",
                "-t",
                name,
                env=sanitize_environment(nested_tmux=True),
            )
        except OSError as exc:
            raise CommandNotFoundError("AttachToSession", str(exc)) from exc

        returncode = await process.wait()
        if returncode != 0:
            raise CommandFailedError(
                "AttachToSession",
                f"tmux attach-session exited with status {returncode}",
                returncode=returncode,
            )

    async def kill_session(self, name: str) -> None:
        states = self._load_states("KillSession")
        state = states.get(name)
        live = await self._discovery.get_all_sessions()
        if state is None and name not in live:
            raise ProxyError("KillSession", f"session not found: {name}")

        if name in live:
            try:
                await self._proxy.execute(self._tmux, "kill-session", "-t", name)
            except ProxyError as exc:
                raise wrap_error("KillSession", exc) from exc
            logger.info("Killed tmux session", extra={"session": name})

        if state is not None:
            if state.worktree_path:
                try:
                    await self._vcs.remove_worktree(state.worktree_path, self._repo_root)
                except ProxyError as exc:
                    logger.error(
                        "Error removing git worktree",
                        extra={"path": state.worktree_path, "error": str(exc)},
                    )
            if state.branch_name:
                try:
                    await self._vcs.delete_branch(state.branch_name, self._repo_root)
                except ProxyError as exc:
                    logger.error(
                        "Error deleting git branch",
                        extra={"branch": state.branch_name, "error": str(exc)},
                    )
            try:
                self._state_store.remove_state(name)
            except (OSError, StateStoreError) as exc:
                raise wrap_error("KillSession", exc) from exc

        self._discovery.refresh_cache()

    def refresh_sessions(self) -> None:
        self._discovery.refresh_cache()

    async def _active_sessions(self, operation: str) -> list[str]:
        """Sessions of this repository that are both persisted and live."""

        try:
            repo = await self._vcs.remote_url(self._repo_root)
        except ProxyError:
            repo = None
        try:
            names = self._state_store.get_active_sessions(repo)
        except StateStoreError as exc:
            raise wrap_error(operation, exc) from exc

        live = await self._discovery.get_all_sessions()
        active = [name for name in names if name in live]
        if not active:
            raise ProxyError(operation, "no active agent sessions found")
        return active

    async def run_broadcast(self, message: str) -> list[str]:
        """Type ``message`` into the agent window of every active session.

        Returns the sessions that received it.
        """

        delivered: list[str] = []
        for session in await self._active_sessions("RunBroadcast"):
            target = f"{session}:{AGENT_WINDOW}"
            try:
                await self._proxy.execute(self._tmux, "send-keys", "-t", target, message, "Enter")
            except ProxyError as exc:
                logger.error("Error sending message", extra={"session": session, "error": str(exc)})
                continue
            try:
                await self._proxy.execute(self._tmux, "send-keys", "-t", target, "Enter")
            except ProxyError as exc:
                logger.warning("Error sending Enter", extra={"session": session, "error": str(exc)})
            delivered.append(session)
        return delivered

    async def run_command(self, command: str, delete_window: bool = False) -> dict[str, str]:
        """Run ``command`` in a fresh window of every active session and capture its pane."""

        if not command.strip():
            raise ProxyError("RunCommand", "no command provided")

        outputs: dict[str, str] = {}
        for session in await self._active_sessions("RunCommand"):
            try:
                window_index = (
                    await self._proxy.execute(
                        self._tmux,
                        "new-window",
                        "-t",
                        session,
                        "-P",
                        "-F",
                        "#{window_index}",
                        "-c",
                        "#{session_path}",
                    )
                ).strip()
            except ProxyError as exc:
                logger.error("Failed to create new window", extra={"session": session, "error": str(exc)})
                continue

            target = f"{session}:{window_index}"
            try:
                await self._proxy.execute(self._tmux, "send-keys", "-t", target, command, "Enter")
            except ProxyError as exc:
                logger.error("Failed to send command", extra={"session": session, "error": str(exc)})
                continue

            try:
                outputs[session] = (
                    await self._proxy.execute(self._tmux, "capture-pane", "-t", target, "-p")
                ).strip()
            except ProxyError as exc:
                logger.error("Failed to capture output", extra={"session": session, "error": str(exc)})
                outputs[session] = ""

            if delete_window:
                try:
                    await self._proxy.execute(self._tmux, "kill-window", "-t", target)
                except ProxyError as exc:
                    logger.error("Failed to kill window", extra={"window": target, "error": str(exc)})
        return outputs

    async def run_checkpoint(self, agent_name: str, message: str) -> dict[str, Any]:
        """Commit the agent's worktree and rebase its branch into the current branch."""

        states = self._load_states("RunCheckpoint")
        session = next((name for name in states if extract_agent_name(name) == agent_name), None)
        if session is None:
            raise ProxyError("RunCheckpoint", f"no active session found for agent: {agent_name}")

        state = states[session]
        if not state.worktree_path or not state.branch_name:
            raise ProxyError("RunCheckpoint", f"invalid state for session: {session}")

        try:
            current = await self._vcs.current_branch(self._repo_root)
            if not await self._vcs.branch_exists(state.branch_name, self._repo_root):
                raise ProxyError("RunCheckpoint", f"agent branch does not exist: {state.branch_name}")

            committed = await self._vcs.commit_all(state.worktree_path, message)
            if not committed:
                logger.warning("No unstaged changes to commit, rebasing", extra={"session": session})
            commits = await self._vcs.commits_ahead(current, state.branch_name, self._repo_root)
            await self._vcs.rebase(state.branch_name, self._repo_root)
        except ProxyError as exc:
            if exc.operation == "RunCheckpoint":
                raise
            raise wrap_error("RunCheckpoint", exc) from exc

        logger.info(
            "Checkpointed agent changes",
            extra={"session": session, "branch": state.branch_name, "onto": current, "commits": commits},
        )
        return {
            "session": session,
            "branch": state.branch_name,
            "onto": current,
            "commits": commits,
            "committed": committed,
        }

    async def spawn_agent(self, prompt: str, model: str) -> str:
        try:
            session = await self._orchestrator.spawn_agent(prompt, model)
        except (SpawnError, ConfigurationError) as exc:
            raise wrap_error("SpawnAgent", exc) from exc
        self._discovery.refresh_cache()
        return session

    async def spawn_agents(self, agents_spec: str, prompt: str) -> list[str]:
        try:
            sessions = await self._orchestrator.spawn_agents(agents_spec, prompt)
        except (SpawnError, ConfigurationError) as exc:
            raise wrap_error("SpawnAgent", exc) from exc
        self._discovery.refresh_cache()
        return sessions

    async def spawn_agent_interactive(self, opts: str) -> asyncio.Task[bool]:
        try:
            task = await self._orchestrator.spawn_agent_interactive(opts)
        except ConfigurationError as exc:
            raise wrap_error("SpawnAgent", exc) from exc
        task.add_done_callback(lambda _task: self._discovery.refresh_cache())
        return task

    async def is_session_attached(self, name: str) -> bool:
        return await self._discovery.is_session_attached(name)

    async def get_session_activity(self, name: str) -> str:
        return await self._discovery.get_session_activity(name)

    async def get_attached_session_count(self) -> int:
        return await self._discovery.get_attached_session_count()

    def refresh_multiplexer_cache(self) -> None:
        self._discovery.refresh_cache()

    async def get_sessions_by_activity(self) -> dict[str, list[MultiplexerSession]]:
        return await self._discovery.list_sessions_by_activity()

    async def refresh_activity(self) -> None:
        """Run one monitor cycle outside the background loop."""

        if self._monitor is None:
            return
        try:
            await self._monitor.refresh()
        except StateStoreError as exc:
            raise wrap_error("RefreshActivity", exc) from exc

    def activity_snapshot(self) -> dict[str, ActivityMetrics]:
        if self._monitor is None:
            return {}
        return self._monitor.update_all()

    async def start_monitor(self) -> None:
        """Start the periodic activity refresh if a monitor is configured."""

        if self._monitor is not None and not self._monitor.running:
            await self._monitor.start()

    async def close(self) -> None:
        if self._monitor is not None:
            await self._monitor.stop()


__all__ = ["FleetFacade", "SessionNotFoundError", "STATUS_INACTIVE"]
