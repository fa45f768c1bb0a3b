"""Project configuration models and loader exports."""

from .loader import ConfigurationError, ProjectConfigLoader, load_project_config
from .models import AgentEntry, ProjectConfig

__all__ = [
    "AgentEntry",
    "ConfigurationError",
    "ProjectConfig",
    "ProjectConfigLoader",
    "load_project_config",
]
