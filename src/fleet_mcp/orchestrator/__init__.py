"""Agent lifecycle orchestration."""

from .spawn import (
    AGENT_COMMANDS,
    AgentConfig,
    AgentOrchestrator,
    PortUnavailableError,
    SpawnError,
    build_agent_command,
    command_for_agent,
    find_available_port,
    is_port_available,
    parse_agent_configs,
)

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
