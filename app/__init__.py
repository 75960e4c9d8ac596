"""Conversational assistant for Taiga project workspaces."""

__version__ = "0.1.0"
