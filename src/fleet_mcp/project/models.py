"""Per-repository project configuration (``fleet.yaml``)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AgentEntry(BaseModel):
    """Default agent command and how many instances to start."""

    command: str = Field(..., description="Agent name or shell command.")
    count: int = Field(default=1, description="Instances to start per spawn.")

    @field_validator("command")
    @classmethod
    def _normalize_command(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Agent command must not be empty")
        return normalized

    @field_validator("count")
    @classmethod
    def _validate_count(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Agent count must be at least 1")
        return value


class ProjectConfig(BaseModel):
    """Dev server and default agent settings for one repository."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    dev_command: str | None = Field(
        default=None,
        alias="dev",
        description="Dev server command template; ``$PORT`` is replaced by the chosen port.",
    )
    port_range: tuple[int, int] | None = Field(
        default=None,
        alias="portRange",
        description="Inclusive ``start-end`` range scanned for a free dev server port.",
    )
    start_command: str | None = Field(default=None)
    agents: list[AgentEntry] = Field(
        default_factory=lambda: [AgentEntry(command="claude", count=1)],
    )

    @field_validator("port_range", mode="before")
    @classmethod
    def _parse_port_range(cls, value: Any):  # type: ignore[override]
        if value is None or value == "":
            return None
        if isinstance(value, str):
            bounds = value.split("-")
            if len(bounds) != 2:
                raise ValueError(f"invalid port range format: {value}")
            try:
                start, end = int(bounds[0]), int(bounds[1])
            except ValueError as exc:
                raise ValueError(f"invalid port range: {value}") from exc
        elif isinstance(value, (list, tuple)) and len(value) == 2:
            start, end = int(value[0]), int(value[1])
        else:
            raise ValueError(f"invalid port range: {value!r}")

        if start <= 0 or end <= 0 or end < start or end > 65535:
            raise ValueError(f"invalid port range: {start}-{end}")
        return (start, end)

    @property
    def dev_enabled(self) -> bool:
        return bool(self.dev_command) and self.port_range is not None

    def render_dev_command(self, port: int) -> str:
        if not self.dev_command:
            raise ValueError("no dev command configured")
        return self.dev_command.replace("$PORT", str(port), 1)


__all__ = ["AgentEntry", "ProjectConfig"]
