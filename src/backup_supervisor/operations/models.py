"""Domain models for supervised backup/restore operations."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from backup_supervisor.storage.common import from_iso, to_iso


class OperationKind(str, Enum):
    """Kind of job an agent executes."""

    BACKUP = "backup"
    RESTORE = "restore"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class OperationState(str, Enum):
    """Operation lifecycle states."""

    TRIGGERING = "triggering"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTING = "aborting"
    ABORTED = "aborted"


TERMINAL_STATES: frozenset[OperationState] = frozenset(
    {OperationState.SUCCEEDED, OperationState.FAILED, OperationState.ABORTED},
)

# Finished jobs outrank abort states so an abort never overwrites a real outcome.
_STATE_PRECEDENCE: dict[OperationState, int] = {
    OperationState.TRIGGERING: 0,
    OperationState.IN_PROGRESS: 1,
    OperationState.ABORTING: 2,
    OperationState.ABORTED: 3,
    OperationState.FAILED: 4,
    OperationState.SUCCEEDED: 4,
}

# Agents report "processing" for jobs that are still running.
_AGENT_STATE_ALIASES: dict[str, OperationState] = {
    "processing": OperationState.IN_PROGRESS,
}


def is_operation_finished(state: OperationState | str) -> bool:
    """Whether ``state`` is terminal."""

    return OperationState(state) in TERMINAL_STATES


def state_precedence(state: OperationState) -> int:
    return _STATE_PRECEDENCE[state]


def can_transition(current: OperationState, target: OperationState) -> bool:
    """Monotonic transition guard shared by every status write."""

    if current in TERMINAL_STATES:
        return False
    return _STATE_PRECEDENCE[target] > _STATE_PRECEDENCE[current]


def parse_agent_state(value: str) -> OperationState:
    """Map an agent-reported state onto ``OperationState``."""

    normalized = value.strip().lower()
    if normalized in _AGENT_STATE_ALIASES:
        return _AGENT_STATE_ALIASES[normalized]
    try:
        return OperationState(normalized)
    except ValueError as error:
        raise ValueError(f"Unknown agent operation state: {value!r}") from error


def operation_key(kind: OperationKind, deployment: str, instance_id: str) -> str:
    """Resource store key of the last operation of ``kind`` for one instance."""

    return f"{kind.value}/{deployment}/{instance_id}"


@dataclass(slots=True)
class CapturedLogs:
    """Agent log lines, already split per channel.

    ``*_total`` count the lines the job produced when the agent already dropped older
    ones; ``None`` means the lists are complete.
    """

    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    stdout_total: int | None = None
    stderr_total: int | None = None


@dataclass(slots=True)
class AgentLastOperation:
    """State of the most recent job as reported by the agent."""

    state: OperationState
    stage: str | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> AgentLastOperation:
        raw_state = payload.get("state")
        if not isinstance(raw_state, str):
            raise ValueError(f"Agent last operation has no state: {dict(payload)!r}")
        updated_at = payload.get("updated_at")
        return cls(
            state=parse_agent_state(raw_state),
            stage=payload.get("stage"),
            updated_at=from_iso(updated_at) if isinstance(updated_at, str) else updated_at,
        )


@dataclass(slots=True)
class AgentAbortAck:
    """Agent response to an abort request; ``state`` is set when it answers synchronously."""

    state: OperationState | None = None


@dataclass(slots=True)
class Operation:
    """One backup or restore job and its supervised lifecycle."""

    id: str
    kind: OperationKind
    deployment: str
    instance_id: str
    service_id: str | None = None
    plan_id: str | None = None
    tenant_id: str | None = None
    agent_address: str | None = None
    state: OperationState = OperationState.TRIGGERING
    stage: str | None = None
    description: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    logs: CapturedLogs = field(default_factory=CapturedLogs)
    stdout_truncated: bool = False
    stderr_truncated: bool = False

    @property
    def key(self) -> str:
        return operation_key(self.kind, self.deployment, self.instance_id)

    @property
    def is_finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, target: OperationState, *, at: datetime) -> bool:
        """Move to ``target`` if the guard allows it; stamps ``finished_at`` once."""

        if not can_transition(self.state, target):
            return False
        self.state = target
        if target in TERMINAL_STATES and self.finished_at is None:
            self.finished_at = at
        return True

    def to_status(self) -> dict[str, Any]:
        """Serialize into the externalized record shape."""

        return {
            "id": self.id,
            "kind": self.kind.value,
            "deployment": self.deployment,
            "instance_id": self.instance_id,
            "service_id": self.service_id,
            "plan_id": self.plan_id,
            "tenant_id": self.tenant_id,
            "agent_address": self.agent_address,
            "state": self.state.value,
            "stage": self.stage,
            "description": self.description,
            "started_at": to_iso(self.started_at),
            "finished_at": to_iso(self.finished_at),
            "logs": {"stdout": list(self.logs.stdout), "stderr": list(self.logs.stderr)},
            "truncated": {"stdout": self.stdout_truncated, "stderr": self.stderr_truncated},
        }

    @classmethod
    def from_status(cls, status: Mapping[str, Any]) -> Operation:
        logs = status.get("logs") or {}
        truncated = status.get("truncated") or {}
        started_at = status.get("started_at")
        finished_at = status.get("finished_at")
        return cls(
            id=status["id"],
            kind=OperationKind(status["kind"]),
            deployment=status["deployment"],
            instance_id=status["instance_id"],
            service_id=status.get("service_id"),
            plan_id=status.get("plan_id"),
            tenant_id=status.get("tenant_id"),
            agent_address=status.get("agent_address"),
            state=OperationState(status["state"]),
            stage=status.get("stage"),
            description=status.get("description"),
            started_at=from_iso(started_at) if started_at else None,
            finished_at=from_iso(finished_at) if finished_at else None,
            logs=CapturedLogs(
                stdout=list(logs.get("stdout", [])),
                stderr=list(logs.get("stderr", [])),
            ),
            stdout_truncated=bool(truncated.get("stdout", False)),
            stderr_truncated=bool(truncated.get("stderr", False)),
        )


@dataclass(slots=True)
class OperationStateResult:
    """Caller-facing view of an operation after a poll or abort."""

    operation_id: str
    state: OperationState
    description: str
    stage: str | None = None
    finished_at: datetime | None = None
    timed_out: bool = False
    stdout_truncated: bool = False
    stderr_truncated: bool = False

    @property
    def is_finished(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass(slots=True)
class StartOptions:
    """Recognized inputs for starting an operation."""

    operation_id: str
    deployment: str
    instance_id: str
    plan_id: str
    kind: OperationKind = OperationKind.BACKUP
    service_id: str | None = None
    tenant_id: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    schedule: bool = False
    repeat_interval: str | None = None

    def __post_init__(self) -> None:
        self.kind = OperationKind(self.kind)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> StartOptions:
        return _options_from_mapping(cls, values)


@dataclass(slots=True)
class PollOptions:
    """Recognized inputs for polling an operation's state."""

    deployment: str
    instance_id: str
    agent_address: str | None = None
    timeout_seconds: float | None = None
    interval_seconds: float | None = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> PollOptions:
        return _options_from_mapping(cls, values)


@dataclass(slots=True)
class AbortOptions:
    """Recognized inputs for aborting the last backup of an instance."""

    deployment: str
    instance_id: str
    service_id: str | None = None
    tenant_id: str | None = None
    agent_address: str | None = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> AbortOptions:
        return _options_from_mapping(cls, values)


_OptionsT = TypeVar("_OptionsT", StartOptions, PollOptions, AbortOptions)


def _options_from_mapping(cls: type[_OptionsT], values: Mapping[str, Any]) -> _OptionsT:
    known = {item.name for item in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} fields: {', '.join(unknown)}")
    try:
        return cls(**values)
    except TypeError as error:
        raise ValueError(f"Invalid {cls.__name__}: {error}") from error
