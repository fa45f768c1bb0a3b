"""Durable and displayable session records."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PersistedAgentState(BaseModel):
    """One entry of the JSON state file, keyed by session name."""

    model_config = ConfigDict(extra="ignore")

    git_repo: str = Field(default="", description="Remote URL of the repository the agent works on.")
    branch_from: str = Field(default="", description="Default branch the worktree was cut from.")
    branch_name: str = Field(default="", description="Branch checked out in the agent worktree.")
    prompt: str = Field(default="", description="Prompt the agent was started with.")
    worktree_path: str = Field(default="", description="Filesystem path of the agent worktree.")
    model: str = Field(default="", description="Agent command used to start the session.")
    port: int = Field(default=0, description="Dev server port, 0 when none was provisioned.")
    status: str = Field(default="")
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("port", mode="before")
    @classmethod
    def _default_port(cls, value):  # type: ignore[override]
        if value is None or value == "":
            return 0
        return value


@dataclass(slots=True)
class SessionRecord:
    """Session summary handed to presentation code."""

    name: str
    agent_name: str
    model: str
    prompt: str
    status: str
    insertions: int = 0
    deletions: int = 0
    worktree_path: str = ""
    port: int = 0
    activity: str = ""
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


__all__ = ["PersistedAgentState", "SessionRecord"]
