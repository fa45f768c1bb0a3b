"""Provision isolated agent sessions: branch, worktree, tmux session, dev port."""

from __future__ import annotations

import asyncio
import logging
import random
import shlex
import socket
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Collection

from ..naming import (
    AGENT_WINDOW,
    DEV_WINDOW,
    RANDOM_AGENT,
    branch_name,
    get_random_agent_name,
    session_name,
)
from ..project import ConfigurationError, ProjectConfig, ProjectConfigLoader
from ..proxy import CommandProxy, ProxyError
from ..storage import StateStore, StateStoreError
from ..tmux import SessionDiscovery
from ..vcs import VersionControl, repo_name_from_url

MAX_INTERACTIVE_COUNT = 10

AGENT_COMMANDS = {
    "claude": "claude",
    "cursor": "cursor",
    "codex": "codex",
    "gemini": "gemini",
    RANDOM_AGENT: "claude",
}
# Agents that take the prompt through ``-p`` instead of a positional argument.
PROMPT_FLAG_COMMANDS = frozenset({"gemini"})

logger = logging.getLogger(__name__)


class SpawnError(RuntimeError):
    """Raised when a spawn step fails; the message names the step."""


class PortUnavailableError(RuntimeError):
    """Raised when no port in the configured range can be used."""


@dataclass(slots=True)
class AgentConfig:
    agent: str
    command: str
    count: int


def command_for_agent(agent: str) -> str:
    """Map an agent name to its CLI command; unknown names are used verbatim."""

    return AGENT_COMMANDS.get(agent, agent)


def parse_agent_configs(spec: str) -> list[AgentConfig]:
    """Parse ``agent:count[,agent:count...]``.

    Raises :class:`ConfigurationError` for malformed pairs or counts below 1.
    """

    configs: list[AgentConfig] = []
    for pair in spec.split(","):
        parts = pair.strip().split(":")
        if len(parts) != 2:
            raise ConfigurationError(f"invalid agent format: {pair} (expected agent:count)")

        agent, count_raw = parts[0].strip(), parts[1].strip()
        if not agent:
            raise ConfigurationError(f"invalid agent format: {pair} (empty agent name)")
        try:
            count = int(count_raw)
        except ValueError as exc:
            raise ConfigurationError(f"invalid count for agent {agent}: {count_raw}") from exc
        if count < 1:
            raise ConfigurationError(f"count must be at least 1 for agent {agent}")

        configs.append(AgentConfig(agent=agent, command=command_for_agent(agent), count=count))
    return configs


def build_agent_command(command: str, prompt: str) -> str:
    if command in PROMPT_FLAG_COMMANDS:
        return f"{command} -p {shlex.quote(prompt)}"
    return f"{command} {shlex.quote(prompt)}"


def is_port_available(port: int, host: str = "") -> bool:
    """Probe a port by binding a TCP listener and closing it right away."""

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
            sock.listen(1)
        except OSError:
            return False
    return True


def find_available_port(
    start: int,
    end: int,
    assigned: Collection[int],
    probe: Callable[[int], bool] = is_port_available,
) -> int:
    for port in range(start, end + 1):
        if port in assigned:
            continue
        if probe(port):
            return port
    raise PortUnavailableError(f"no available ports in range {start}-{end}")


class AgentOrchestrator:
    """Spawn agents into their own worktree and tmux session.

    Instances in one batch are created one after the other so that each
    sees the ports and names claimed by the previous ones. A failed step is
    not rolled back: the worktree or bare session created before it stays.
    """

    def __init__(
        self,
        proxy: CommandProxy,
        vcs: VersionControl,
        state_store: StateStore,
        discovery: SessionDiscovery,
        *,
        project_loader: ProjectConfigLoader,
        worktree_root: Path,
        repo_root: Path | None = None,
        port_probe: Callable[[int], bool] = is_port_available,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
        tmux_binary: str = "tmux",
    ) -> None:
        self._proxy = proxy
        self._vcs = vcs
        self._state_store = state_store
        self._discovery = discovery
        self._project_loader = project_loader
        self._worktree_root = Path(worktree_root)
        self._repo_root = repo_root
        self._port_probe = port_probe
        self._clock = clock
        self._rng = rng
        self._tmux = tmux_binary
        self._background: set[asyncio.Task[bool]] = set()

    async def spawn_agent(self, prompt: str, model: str) -> str:
        """Spawn a single agent of type ``model`` and return its session name."""

        sessions = await self.spawn_agents(f"{model}:1", prompt)
        return sessions[0]

    async def spawn_agents(self, agents_spec: str, prompt: str) -> list[str]:
        configs = parse_agent_configs(agents_spec)
        project = self._project_loader.load()

        try:
            assigned_ports = self._state_store.assigned_ports()
        except StateStoreError as exc:
            logger.warning(
                "Failed to load existing session ports, proceeding without collision check",
                extra={"error": str(exc)},
            )
            assigned_ports = set()

        taken_names = await self._taken_session_names()
        created: list[str] = []
        for config in configs:
            for _ in range(config.count):
                try:
                    name = await self._create_agent(config, prompt, project, assigned_ports, taken_names)
                except SpawnError as exc:
                    raise SpawnError(f"failed to create agent {config.agent}: {exc}") from exc
                created.append(name)
                taken_names.add(name)

        if not created:
            raise SpawnError("no agent session was created")
        return created

    async def spawn_agent_interactive(self, opts: str) -> asyncio.Task[bool]:
        """Validate ``agentType:count:prompt`` and spawn in the background.

        The returned task resolves to True once every agent is up, or to
        False after logging the failure.
        """

        parts = opts.split(":", 2)
        if len(parts) != 3:
            raise ConfigurationError("invalid options format, expected 'agentType:count:prompt'")

        agent, count_raw, prompt = (part.strip() for part in parts)
        try:
            count = int(count_raw)
        except ValueError:
            count = 0
        if not 1 <= count <= MAX_INTERACTIVE_COUNT:
            raise ConfigurationError(f"invalid count: must be between 1 and {MAX_INTERACTIVE_COUNT}")

        agents_spec = f"{agent}:{count}"
        parse_agent_configs(agents_spec)

        task = asyncio.create_task(self._spawn_in_background(agents_spec, prompt))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _spawn_in_background(self, agents_spec: str, prompt: str) -> bool:
        try:
            sessions = await self.spawn_agents(agents_spec, prompt)
        except (SpawnError, ConfigurationError) as exc:
            logger.error("Interactive spawn failed", extra={"agents": agents_spec, "error": str(exc)})
            return False
        logger.info("Interactive spawn finished", extra={"sessions": sessions})
        return True

    async def _taken_session_names(self) -> set[str]:
        taken = set((await self._discovery.get_all_sessions()).keys())
        try:
            taken.update(self._state_store.load_states().keys())
        except StateStoreError:
            pass
        return taken

    def _display_name(self, agent: str) -> str:
        if agent == RANDOM_AGENT:
            return get_random_agent_name(self._rng)
        return agent

    async def _git_info(self) -> tuple[str, str, str]:
        try:
            git_hash = await self._vcs.short_hash(self._repo_root)
            remote_url = await self._vcs.remote_url(self._repo_root)
        except ProxyError as exc:
            raise SpawnError(f"failed to get git information: {exc}") from exc
        return git_hash, repo_name_from_url(remote_url), remote_url

    async def _create_agent(
        self,
        config: AgentConfig,
        prompt: str,
        project: ProjectConfig,
        assigned_ports: set[int],
        taken_names: set[str],
    ) -> str:
        git_hash, repo, remote_url = await self._git_info()

        agent_name = self._display_name(config.agent)
        candidate, suffix = agent_name, 2
        while session_name(repo, git_hash, candidate) in taken_names:
            candidate = f"{agent_name}-{suffix}"
            suffix += 1
        agent_name = candidate

        timestamp = int(self._clock())
        branch = branch_name(agent_name, repo, git_hash, timestamp)
        session = session_name(repo, git_hash, agent_name)

        worktree = await self._create_worktree(branch)
        await self._create_session(session, worktree)

        port = 0
        if project.dev_enabled:
            port = await self._setup_dev_environment(session, worktree, project, assigned_ports)

        await self._dispatch_agent(session, config.command, prompt, worktree)

        await self._persist(
            prompt=prompt,
            branch=branch,
            session=session,
            worktree=worktree,
            model=config.command,
            port=port,
            git_repo=remote_url,
        )
        logger.info(
            "Spawned agent",
            extra={"session": session, "branch": branch, "worktree": str(worktree), "port": port},
        )
        return session

    async def _create_worktree(self, branch: str) -> Path:
        worktree = self._worktree_root / branch
        try:
            self._worktree_root.mkdir(parents=True, exist_ok=True)
            await self._vcs.add_worktree(branch, worktree, self._repo_root)
        except (OSError, ProxyError) as exc:
            raise SpawnError(f"failed to create worktree: {exc}") from exc
        return worktree

    async def _create_session(self, session: str, worktree: Path) -> None:
        try:
            await self._proxy.execute(self._tmux, "new-session", "-d", "-s", session, "-c", str(worktree))
        except ProxyError as exc:
            raise SpawnError(f"failed to create tmux session: {exc}") from exc
        try:
            await self._proxy.execute(self._tmux, "rename-window", "-t", f"{session}:^", AGENT_WINDOW)
        except ProxyError as exc:
            raise SpawnError(f"failed to rename tmux window: {exc}") from exc

    async def _setup_dev_environment(
        self,
        session: str,
        worktree: Path,
        project: ProjectConfig,
        assigned_ports: set[int],
    ) -> int:
        assert project.port_range is not None
        start, end = project.port_range
        try:
            port = find_available_port(start, end, assigned_ports, self._port_probe)
        except PortUnavailableError as exc:
            raise SpawnError(f"failed to find dev server port: {exc}") from exc

        dev_command = project.render_dev_command(port)
        try:
            await self._proxy.execute(
                self._tmux, "new-window", "-t", session, "-n", DEV_WINDOW, "-c", str(worktree)
            )
            await self._proxy.execute(
                self._tmux, "send-keys", "-t", f"{session}:{DEV_WINDOW}", dev_command, "C-m"
            )
        except ProxyError as exc:
            raise SpawnError(f"failed to start dev server: {exc}") from exc

        assigned_ports.add(port)
        return port

    async def _dispatch_agent(self, session: str, command: str, prompt: str, worktree: Path) -> None:
        target = f"{session}:{AGENT_WINDOW}"
        try:
            await self._proxy.execute(self._tmux, "send-keys", "-t", target, "C-m")
            await self._proxy.execute(
                self._tmux,
                "send-keys",
                "-t",
                target,
                build_agent_command(command, prompt),
                "C-m",
                cwd=worktree,
            )
        except ProxyError as exc:
            raise SpawnError(f"failed to execute agent command: {exc}") from exc

    async def _persist(
        self,
        *,
        prompt: str,
        branch: str,
        session: str,
        worktree: Path,
        model: str,
        port: int,
        git_repo: str,
    ) -> None:
        try:
            branch_from = await self._vcs.default_branch(self._repo_root)
            if port > 0:
                self._state_store.save_state_with_port(
                    prompt, branch, session, str(worktree), model, port,
                    git_repo=git_repo, branch_from=branch_from,
                )
            else:
                self._state_store.save_state(
                    prompt, branch, session, str(worktree), model,
                    git_repo=git_repo, branch_from=branch_from,
                )
        except (OSError, ProxyError, StateStoreError) as exc:
            logger.error("Failed to save agent state", extra={"session": session, "error": str(exc)})


__all__ = [
    "AGENT_COMMANDS",
    "AgentConfig",
    "AgentOrchestrator",
    "PortUnavailableError",
    "SpawnError",
    "build_agent_command",
    "command_for_agent",
    "find_available_port",
    "is_port_available",
    "parse_agent_configs",
]
