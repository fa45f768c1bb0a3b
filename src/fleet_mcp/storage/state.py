"""Flat JSON state file shared by the orchestrator and the session listing."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from .models import PersistedAgentState

logger = logging.getLogger(__name__)


class StateStoreError(RuntimeError):
    """Raised when the state file exists but cannot be read or parsed."""


class StateStore:
    """Read-modify-write access to ``state.json``.

    There is no cross-process locking. Two orchestrators spawning at the
    same time can lose each other's entries; one operator per host is
    assumed.
    """

    def __init__(self, path: Path, *, clock: Callable[[], datetime] | None = None) -> None:
        self._path = Path(path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get_state_path(self) -> Path:
        return self._path

    def load_states(self) -> dict[str, PersistedAgentState]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StateStoreError(f"failed to read state file {self._path}: {exc}") from exc

        if not raw.strip():
            return {}
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StateStoreError(f"failed to parse state file {self._path}: {exc}") from exc
        if not isinstance(document, dict):
            raise StateStoreError(f"state file {self._path} must contain a JSON object")

        states: dict[str, PersistedAgentState] = {}
        for name, entry in document.items():
            try:
                states[name] = PersistedAgentState.model_validate(entry)
            except ValidationError as exc:
                raise StateStoreError(f"invalid state entry for {name}: {exc}") from exc
        return states

    def get_active_sessions(self, repo: str | None = None) -> list[str]:
        """Session names in the state file, optionally limited to one repository."""

        states = self.load_states()
        return [
            name
            for name, state in states.items()
            if repo is None or not state.git_repo or state.git_repo == repo
        ]

    def get_session_state(self, session_name: str) -> PersistedAgentState | None:
        return self.load_states().get(session_name)

    def assigned_ports(self) -> set[int]:
        return {state.port for state in self.load_states().values() if state.port > 0}

    def save_state(
        self,
        prompt: str,
        branch_name: str,
        session_name: str,
        worktree_path: str,
        model: str,
        *,
        git_repo: str = "",
        branch_from: str = "",
    ) -> PersistedAgentState:
        return self.save_state_with_port(
            prompt,
            branch_name,
            session_name,
            worktree_path,
            model,
            0,
            git_repo=git_repo,
            branch_from=branch_from,
        )

    def save_state_with_port(
        self,
        prompt: str,
        branch_name: str,
        session_name: str,
        worktree_path: str,
        model: str,
        port: int,
        *,
        git_repo: str = "",
        branch_from: str = "",
    ) -> PersistedAgentState:
        states = self.load_states()
        now = self._clock()
        existing = states.get(session_name)

        state = PersistedAgentState(
            git_repo=git_repo,
            branch_from=branch_from,
            branch_name=branch_name,
            prompt=prompt,
            worktree_path=worktree_path,
            model=model,
            port=port,
            created_at=existing.created_at if existing and existing.created_at else now,
            updated_at=now,
        )
        states[session_name] = state
        self._write(states)
        logger.debug("Saved agent state", extra={"session": session_name, "port": port})
        return state

    def remove_state(self, session_name: str) -> bool:
        states = self.load_states()
        if session_name not in states:
            return False
        del states[session_name]
        self._write(states)
        return True

    def _write(self, states: dict[str, PersistedAgentState]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            name: state.model_dump(mode="json", exclude_none=True)
            for name, state in states.items()
        }
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp_path, self._path)


__all__ = ["StateStore", "StateStoreError"]
