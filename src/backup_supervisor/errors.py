"""Error taxonomy shared by the orchestrator and its collaborators."""

from __future__ import annotations


class SupervisorError(RuntimeError):
    """Base error carrying the operation context needed for diagnosis."""

    def __init__(
        self,
        message: str,
        *,
        operation_id: str | None = None,
        deployment: str | None = None,
    ) -> None:
        super().__init__(message)
        self.operation_id = operation_id
        self.deployment = deployment

    def __str__(self) -> str:
        message = super().__str__()
        context = []
        if self.operation_id is not None:
            context.append(f"operation_id={self.operation_id}")
        if self.deployment is not None:
            context.append(f"deployment={self.deployment}")
        if not context:
            return message
        return f"{message} ({' '.join(context)})"


class AgentUnreachable(SupervisorError):
    """Transport-level failure reaching the agent, or the agent is busy."""


class AgentError(SupervisorError):
    """Agent answered with a protocol error that retrying will not fix."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        operation_id: str | None = None,
        deployment: str | None = None,
    ) -> None:
        super().__init__(message, operation_id=operation_id, deployment=deployment)
        self.status_code = status_code


class OperationNotFound(SupervisorError):
    """No operation record exists for the requested deployment/instance pair."""


class OperationInProgress(SupervisorError):
    """A non-terminal operation already exists for the requested deployment/instance."""


class ResourceNotFound(KeyError):
    """Resource store has no record for a key."""

    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"Resource not found: {self.key}"


class PlanNotFound(LookupError):
    """Catalog does not know the requested plan id."""


class SchedulerError(RuntimeError):
    """Scheduler failed to register a recurring job."""


class ResourceConflict(RuntimeError):
    """Conditional write found the record in a different state than expected."""

    def __init__(
        self,
        key: str,
        *,
        expected_state: str | None,
        actual_state: str | None,
    ) -> None:
        super().__init__(
            f"Resource {key} is in state {actual_state!r}, expected {expected_state!r}",
        )
        self.key = key
        self.expected_state = expected_state
        self.actual_state = actual_state
