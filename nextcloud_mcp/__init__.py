"""MCP server exposing Nextcloud tasks and calendar events over CalDAV."""

__version__ = "1.0.0"
