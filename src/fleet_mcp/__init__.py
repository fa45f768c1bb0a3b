"""MCP server and library for managing a fleet of AI coding agents in tmux."""

__version__ = "0.1.0"

__all__ = ["__version__"]
