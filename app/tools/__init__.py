"""Taiga tools exposed to the conversational agent."""

from app.tools.registry import ToolsRegistry, build_taiga_tools

__all__ = ["ToolsRegistry", "build_taiga_tools"]
