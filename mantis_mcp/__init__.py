"""MCP server exposing the MantisBT bug tracker API."""

__version__ = "0.1.0"
