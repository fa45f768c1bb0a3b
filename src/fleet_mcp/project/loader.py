"""Load ``fleet.yaml`` project configuration."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import ProjectConfig


class ConfigurationError(ValueError):
    """Raised for invalid configuration, before any side effect happens."""


class ProjectConfigLoader:
    """Reads the project configuration file, falling back to defaults."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ProjectConfig:
        """Return the parsed configuration.

        A missing or empty file gives the default configuration.
        """

        if not self._path.exists():
            return ProjectConfig()

        try:
            document = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Failed to parse YAML in {self._path}: {exc}") from exc

        if document is None:
            return ProjectConfig()
        if not isinstance(document, dict):
            raise ConfigurationError(f"{self._path} must contain a mapping")

        try:
            return ProjectConfig.model_validate(document)
        except ValidationError as exc:
            raise ConfigurationError(f"Project config validation error in {self._path}: {exc}") from exc


def load_project_config(path: Path) -> ProjectConfig:
    """Convenience wrapper for loading a project config file."""

    return ProjectConfigLoader(path).load()


__all__ = ["ConfigurationError", "ProjectConfigLoader", "load_project_config"]
