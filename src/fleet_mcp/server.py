"""FastMCP server bootstrap for the fleet manager."""

import contextlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import FleetSettings, get_settings
from .facade import FleetFacade
from .project import ConfigurationError, ProjectConfigLoader
from .storage import StateStoreError
from .tools import register_tools


def configure_logging(level: str) -> None:
    """Configure root logging for the fleet server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def fleet_lifespan(facade: FleetFacade):
    """Run the activity monitor for as long as the server is up."""

    @contextlib.asynccontextmanager
    async def lifespan(_server: FastMCP) -> AsyncIterator[dict[str, Any]]:
        await facade.start_monitor()
        try:
            yield {}
        finally:
            await facade.close()

    return lifespan


def create_server(
    settings: Optional[FleetSettings] = None,
    facade: FleetFacade | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the fleet tools and status resource."""

    settings = settings or get_settings()
    facade = facade or FleetFacade.from_settings(settings)
    project_loader = ProjectConfigLoader(settings.project_config)

    server = FastMCP(
        name="Fleet MCP",
        version=__version__,
        instructions=(
            "Fleet manages AI coding agents running in isolated git worktrees and "
            "tmux sessions. Use the tools to spawn agents, inspect their status and "
            "activity, broadcast messages and clean sessions up."
        ),
        lifespan=fleet_lifespan(facade),
    )

    handles = register_tools(server, facade=facade)

    @server.resource(
        "resource://fleet/status",
        name="fleet_status",
        title="Fleet MCP Status",
        description="Provides the current runtime status for the fleet MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    async def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        try:
            states = facade.state_store.load_states()
            state_error: str | None = None
        except StateStoreError as exc:
            states = {}
            state_error = str(exc)

        try:
            project = project_loader.load()
            project_summary = {
                "path": str(project_loader.path),
                "dev_enabled": project.dev_enabled,
                "port_range": list(project.port_range) if project.port_range else None,
                "error": None,
            }
        except ConfigurationError as exc:
            project_summary = {"path": str(project_loader.path), "error": str(exc)}

        sessions = await facade.discovery.get_known_sessions()
        activity_counts: dict[str, int] = {}
        for session in sessions.values():
            activity_counts[session.activity] = activity_counts.get(session.activity, 0) + 1

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "state": {
                "path": str(facade.state_store.get_state_path()),
                "count": len(states),
                "ports": sorted(state.port for state in states.values() if state.port > 0),
                "error": state_error,
            },
            "tmux": {
                "known_sessions": len(sessions),
                "by_activity": activity_counts,
                "attached": sum(1 for session in sessions.values() if session.attached),
            },
            "project": project_summary,
            "worktree_root": str(settings.worktree_root),
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "facade", facade)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the fleet MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching fleet MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "state_path": str(settings.state_path),
            "repo_root": str(settings.repo_root),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
