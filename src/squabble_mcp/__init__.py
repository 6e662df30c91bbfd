"""Squabble MCP: engineer-driven development with a reviewer in the loop."""

__version__ = "0.3.0"

__all__ = ["__version__"]
