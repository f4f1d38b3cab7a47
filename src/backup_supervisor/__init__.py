"""Supervision of agent-executed backup and restore operations."""

__version__ = "0.1.0"
