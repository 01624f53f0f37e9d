"""Overseer MCP: session and task orchestration for external agent workers."""

__version__ = "0.3.0"

__all__ = ["__version__"]
