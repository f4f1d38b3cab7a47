"""Agent client implementations."""

from backup_supervisor.operations.agent.base import Agent
from backup_supervisor.operations.agent.http_agent import FRAMED_STREAM_CONTENT_TYPE, HttpAgent

__all__ = [
    "FRAMED_STREAM_CONTENT_TYPE",
    "Agent",
    "HttpAgent",
]
