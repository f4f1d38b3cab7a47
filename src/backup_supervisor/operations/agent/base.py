"""Agent interface consumed by the orchestrator."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol

from backup_supervisor.operations.models import (
    AgentAbortAck,
    AgentLastOperation,
    CapturedLogs,
    OperationKind,
)


class Agent(Protocol):
    """Remote process executing backup/restore primitives for one deployment.

    Implementations raise ``AgentUnreachable`` for transport failures or a busy agent
    and ``AgentError`` for protocol errors.
    """

    def resolve_address(self, deployment: str) -> str:
        """Return the address used to reach the agent of ``deployment``."""

    def start(self, address: str, kind: OperationKind, params: Mapping[str, Any]) -> object:
        """Start a job and return the agent acknowledgement."""

    def get_last_operation(self, address: str, kind: OperationKind) -> AgentLastOperation:
        """Return the state of the most recent job of ``kind``."""

    def get_logs(self, address: str, kind: OperationKind) -> CapturedLogs:
        """Return the ordered log lines of the most recent job of ``kind``."""

    def abort(self, address: str, kind: OperationKind) -> AgentAbortAck:
        """Ask the agent to abort the running job."""
