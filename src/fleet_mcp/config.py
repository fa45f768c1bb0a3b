"""Configuration management for the fleet manager."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .proxy import ProxyConfig

_DATA_DIR = Path("~/.local/share/fleet")
_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
_PROXY_LOG_LEVELS = {"info", "debug"}


class FleetSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = Field(default="INFO", validation_alias="FLEET_LOG_LEVEL")
    state_path: Path = Field(default=_DATA_DIR / "state.json", validation_alias="FLEET_STATE_PATH")
    worktree_root: Path = Field(default=_DATA_DIR / "worktrees", validation_alias="FLEET_WORKTREE_ROOT")
    project_config: Path = Field(default=Path("fleet.yaml"), validation_alias="FLEET_PROJECT_CONFIG")
    repo_root: Path = Field(default=Path("."), validation_alias="FLEET_REPO_ROOT")
    command_timeout: float = Field(default=30.0, validation_alias="FLEET_COMMAND_TIMEOUT")
    command_retries: int = Field(default=2, validation_alias="FLEET_COMMAND_RETRIES")
    proxy_log_level: str = Field(default="info", validation_alias="FLEET_PROXY_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in _LOG_LEVELS:
            raise ValueError("FLEET_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG")
        return normalized

    @field_validator("proxy_log_level")
    @classmethod
    def _normalize_proxy_log_level(cls, value: str) -> str:
        normalized = value.strip().lower() or "info"
        if normalized not in _PROXY_LOG_LEVELS:
            raise ValueError("FLEET_PROXY_LOG_LEVEL must be one of info, debug")
        return normalized

    @field_validator("command_timeout")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("FLEET_COMMAND_TIMEOUT must be > 0")
        return value

    @field_validator("command_retries")
    @classmethod
    def _validate_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("FLEET_COMMAND_RETRIES must be >= 0")
        return value

    def proxy_config(self) -> ProxyConfig:
        return ProxyConfig(
            timeout=self.command_timeout,
            retries=self.command_retries,
            log_level=self.proxy_log_level,
        )


@lru_cache(maxsize=1)
def get_settings() -> FleetSettings:
    """Return cached settings instance."""

    settings = FleetSettings()
    settings.state_path = settings.state_path.expanduser().resolve()
    settings.worktree_root = settings.worktree_root.expanduser().resolve()
    settings.repo_root = settings.repo_root.expanduser().resolve()
    project_config = settings.project_config.expanduser()
    if not project_config.is_absolute():
        project_config = settings.repo_root / project_config
    settings.project_config = project_config
    return settings


__all__ = ["FleetSettings", "get_settings"]
