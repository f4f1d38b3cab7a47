"""Backup/restore operation state machine driven against a remote agent."""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any

from backup_supervisor.config import Settings
from backup_supervisor.demux import tail_lines
from backup_supervisor.deployments import validate_deployment_name
from backup_supervisor.errors import (
    AgentUnreachable,
    OperationInProgress,
    OperationNotFound,
    ResourceConflict,
    ResourceNotFound,
    SchedulerError,
)
from backup_supervisor.features import FeatureName, JobType, is_feature_enabled
from backup_supervisor.masking import mask_sensitive_info
from backup_supervisor.operations.agent.base import Agent
from backup_supervisor.operations.catalog import Catalog, Plan
from backup_supervisor.operations.models import (
    TERMINAL_STATES,
    AbortOptions,
    AgentLastOperation,
    Operation,
    OperationKind,
    OperationState,
    OperationStateResult,
    PollOptions,
    StartOptions,
    operation_key,
)
from backup_supervisor.operations.scheduler import JobSpec, Scheduler
from backup_supervisor.operations.store import ResourceStore
from backup_supervisor.retry import (
    AttemptResult,
    BackoffPolicy,
    RetryExhausted,
    full_jitter,
    run_with_retry,
)
from backup_supervisor.storage.common import to_iso, utc_now

logger = logging.getLogger(__name__)

_TERMINAL_FIELDS = ("state", "stage", "description", "finished_at", "logs", "truncated")
_ABORT_FIELDS = ("state", "description", "finished_at")
_GUARDED_WRITE_ATTEMPTS = 5


class OperationOrchestrator:
    """Starts, polls and aborts agent-executed operations, mirroring them in the store."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        agent: Agent,
        store: ResourceStore,
        catalog: Catalog,
        settings: Settings,
        scheduler: Scheduler | None = None,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.agent = agent
        self.store = store
        self.catalog = catalog
        self.settings = settings
        self.scheduler = scheduler
        self.cancel_event = cancel_event
        self._sleep = sleep
        self._clock = clock
        self._now = now
        self._random = random.Random()  # noqa: S311
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def start(self, options: StartOptions) -> Operation:
        """Trigger a job on the agent and persist its ``in_progress`` record."""

        validate_deployment_name(options.deployment, self.settings.deployments)
        if options.schedule and options.kind != OperationKind.BACKUP:
            raise ValueError(f"Only backups can be scheduled, got {options.kind.value}.")
        plan = self.catalog.get_plan(options.plan_id)
        if options.kind == OperationKind.BACKUP and not plan.supports_backup:
            raise ValueError(f"Plan {plan.name} does not support backups.")

        key = operation_key(options.kind, options.deployment, options.instance_id)
        self._ensure_no_active_operation(key, options)

        operation = Operation(
            id=options.operation_id,
            kind=options.kind,
            deployment=options.deployment,
            instance_id=options.instance_id,
            service_id=options.service_id,
            plan_id=options.plan_id,
            tenant_id=options.tenant_id,
            started_at=self._now(),
        )
        agent_params = {"operation_id": operation.id, **options.params}
        logger.info(
            "Starting %s %s for deployment %s with params %s",
            operation.kind.value,
            operation.id,
            operation.deployment,
            mask_sensitive_info(agent_params),
        )

        try:
            operation.agent_address = run_with_retry(
                lambda: AttemptResult.succeed(self._trigger(operation, agent_params)),
                self._start_policy(),
                operation=f"start {operation.kind.value} {operation.id}",
                retry_on=(AgentUnreachable,),
                cancel_event=self.cancel_event,
                sleep=self._sleep,
                clock=self._clock,
            )
        except RetryExhausted as error:
            raise AgentUnreachable(
                f"Could not start {operation.kind.value} on agent: {error}",
                operation_id=operation.id,
                deployment=operation.deployment,
            ) from error

        operation.transition(OperationState.IN_PROGRESS, at=self._now())
        operation.description = (
            f"{operation.kind.label} deployment {operation.deployment} "
            f"triggered at {to_iso(operation.started_at)}"
        )
        self.store.patch(key, operation.to_status())
        logger.info("%s %s is in progress", operation.kind.label, operation.id)

        if options.schedule:
            self._schedule_recurring(operation, options=options, plan=plan)
        return operation

    def get_operation_state(
        self,
        kind: OperationKind,
        options: PollOptions,
    ) -> OperationStateResult:
        """Poll the agent until the operation finishes or the poll timeout elapses."""

        key = operation_key(kind, options.deployment, options.instance_id)
        stored = self._load(key)
        if stored is None:
            raise OperationNotFound(
                f"No {kind.value} operation found for instance {options.instance_id}",
                deployment=options.deployment,
            )
        if stored.is_finished:
            return _to_result(stored)

        address = options.agent_address or stored.agent_address
        if address is None:
            address = self.agent.resolve_address(stored.deployment)

        timeout = (
            options.timeout_seconds
            if options.timeout_seconds is not None
            else self.settings.poll.timeout_seconds
        )
        interval = (
            options.interval_seconds
            if options.interval_seconds is not None
            else self.settings.poll.interval_seconds
        )
        latest: list[AgentLastOperation] = []

        def poll() -> AttemptResult[AgentLastOperation]:
            last = self.agent.get_last_operation(address, kind)
            latest[:] = [last]
            if last.state in TERMINAL_STATES:
                return AttemptResult.succeed(last)
            return AttemptResult.retry(f"agent reports {last.state.value} ({last.stage})")

        try:
            last = run_with_retry(
                poll,
                BackoffPolicy.constant(interval, max_duration_seconds=timeout),
                operation=f"poll {kind.value} {stored.id}",
                retry_on=(AgentUnreachable,),
                cancel_event=self.cancel_event,
                sleep=self._sleep,
                clock=self._clock,
            )
        except RetryExhausted:
            if not latest:
                raise
            return self._still_running(stored, latest[0])

        return self._finalize(key, stored, address=address, last=last)

    def abort_last_backup(
        self,
        options: AbortOptions,
        immediate: bool = False,
    ) -> OperationStateResult:
        """Abort the running backup unless it already finished."""

        key = operation_key(OperationKind.BACKUP, options.deployment, options.instance_id)
        stored = self._load(key)
        if stored is None or not _matches_owner(stored, options):
            raise OperationNotFound(
                f"No backup found for instance {options.instance_id}",
                deployment=options.deployment,
            )
        if stored.is_finished:
            logger.info(
                "Backup %s already %s; abort is a no-op",
                stored.id,
                stored.state.value,
            )
            return _to_result(stored)
        if stored.state == OperationState.ABORTING and not immediate:
            return _to_result(stored)

        address = options.agent_address or stored.agent_address
        if address is None:
            address = self.agent.resolve_address(stored.deployment)
        ack = self.agent.abort(address, OperationKind.BACKUP)
        target = (
            OperationState.ABORTED
            if immediate and ack.state == OperationState.ABORTED
            else OperationState.ABORTING
        )
        at = self._now()

        def describe(operation: Operation) -> None:
            if target == OperationState.ABORTED:
                operation.description = (
                    f"Backup deployment {operation.deployment} aborted at {to_iso(at)}"
                )
            else:
                operation.description = f"Backup deployment {operation.deployment} is aborting"

        operation = self._guarded_write(
            key,
            stored.id,
            target=target,
            at=at,
            update=describe,
            fields=_ABORT_FIELDS,
        )
        return _to_result(operation)

    def poll_many(
        self,
        kind: OperationKind,
        options: Iterable[PollOptions],
    ) -> list[OperationStateResult | Exception]:
        """Poll several operations concurrently, one poll cycle per operation.

        Outcomes keep the input order. A poll that raised is reported by its exception in
        its own slot, so one failing operation does not hide the results of the others.
        """

        pending = list(options)
        if not pending:
            return []
        workers = min(self.settings.poll.max_workers, len(pending))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="poll") as executor:
            futures = [executor.submit(self.get_operation_state, kind, item) for item in pending]

        outcomes: list[OperationStateResult | Exception] = []
        for item, future in zip(pending, futures, strict=True):
            error = future.exception()
            if error is None:
                outcomes.append(future.result())
                continue
            if not isinstance(error, Exception):
                raise error
            logger.warning(
                "Polling %s %s on %s failed: %s",
                kind.label,
                item.instance_id,
                item.deployment,
                error,
            )
            outcomes.append(error)
        return outcomes

    def _trigger(self, operation: Operation, params: dict[str, Any]) -> str:
        address = self.agent.resolve_address(operation.deployment)
        self.agent.start(address, operation.kind, params)
        return address

    def _start_policy(self) -> BackoffPolicy:
        retry = self.settings.retry
        return BackoffPolicy.exponential(
            retry.base_seconds,
            max_seconds=retry.max_seconds,
            max_attempts=retry.max_attempts,
            jitter=full_jitter(self._random) if retry.jitter else None,
        )

    def _ensure_no_active_operation(self, key: str, options: StartOptions) -> None:
        existing = self._load(key)
        if existing is None:
            return
        if existing.id == options.operation_id:
            raise ValueError(f"Operation id {options.operation_id} was already used.")
        if not existing.is_finished:
            raise OperationInProgress(
                f"{existing.kind.label} {existing.id} is still {existing.state.value}",
                operation_id=existing.id,
                deployment=existing.deployment,
            )

    def _schedule_recurring(
        self,
        operation: Operation,
        *,
        options: StartOptions,
        plan: Plan,
    ) -> None:
        if not is_feature_enabled(FeatureName.SCHEDULED_BACKUP, self.settings.scheduler):
            logger.info("Scheduled backups are disabled; not scheduling %s", operation.instance_id)
            return
        if self.scheduler is None:
            logger.warning("No scheduler configured; not scheduling %s", operation.instance_id)
            return

        job = JobSpec(
            name=f"{operation.instance_id}_{JobType.SCHEDULED_BACKUP.value}",
            job_type=JobType.SCHEDULED_BACKUP.value,
            interval=(
                options.repeat_interval
                or plan.backup_interval
                or self.settings.scheduler.default_backup_interval
            ),
            data={
                "deployment": operation.deployment,
                "instance_id": operation.instance_id,
                "service_id": operation.service_id,
                "plan_id": operation.plan_id,
                "tenant_id": operation.tenant_id,
            },
        )
        try:
            self.scheduler.schedule(job)
        except SchedulerError as error:
            logger.warning("Failed to schedule recurring backup %s: %s", job.name, error)
            return
        logger.info("Scheduled %s every %s", job.name, job.interval)

    def _finalize(
        self,
        key: str,
        stored: Operation,
        *,
        address: str,
        last: AgentLastOperation,
    ) -> OperationStateResult:
        logs = self.agent.get_logs(address, stored.kind)
        tail = self.settings.logs.tail_lines
        stdout, stdout_truncated = _retain(logs.stdout, logs.stdout_total, tail)
        stderr, stderr_truncated = _retain(logs.stderr, logs.stderr_total, tail)
        finished_at = last.updated_at or self._now()

        def apply(operation: Operation) -> None:
            operation.stage = last.stage
            operation.logs.stdout = stdout
            operation.logs.stderr = stderr
            operation.stdout_truncated = stdout_truncated
            operation.stderr_truncated = stderr_truncated
            operation.description = (
                f"{operation.kind.label} deployment {operation.deployment} "
                f"{last.state.value} at {to_iso(finished_at)}"
            )

        operation = self._guarded_write(
            key,
            stored.id,
            target=last.state,
            at=finished_at,
            update=apply,
            fields=_TERMINAL_FIELDS,
        )
        return _to_result(operation)

    def _guarded_write(  # noqa: PLR0913
        self,
        key: str,
        operation_id: str,
        *,
        target: OperationState,
        at: datetime,
        update: Callable[[Operation], None],
        fields: Sequence[str],
    ) -> Operation:
        conflict: ResourceConflict | None = None
        with self._lock_for(key):
            for _ in range(_GUARDED_WRITE_ATTEMPTS):
                current = self._load(key)
                if current is None or current.id != operation_id:
                    raise OperationNotFound(
                        f"Operation record {key} was replaced or removed",
                        operation_id=operation_id,
                    )
                previous = current.state
                if not current.transition(target, at=at):
                    logger.info(
                        "Ignoring %s -> %s for %s: stored state takes precedence",
                        previous.value,
                        target.value,
                        operation_id,
                    )
                    return current

                update(current)
                status = current.to_status()
                try:
                    self.store.patch(
                        key,
                        {name: status[name] for name in fields},
                        if_state=previous.value,
                    )
                except ResourceConflict as error:
                    conflict = error
                    logger.info("Record %s changed while writing %s: %s", key, target.value, error)
                    continue
                logger.info(
                    "%s %s: %s -> %s",
                    current.kind.label,
                    operation_id,
                    previous.value,
                    target.value,
                )
                return current
        logger.warning("Giving up writing %s to %s after repeated conflicts", target.value, key)
        raise conflict or ResourceConflict(key, expected_state=None, actual_state=None)

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    def _still_running(self, stored: Operation, last: AgentLastOperation) -> OperationStateResult:
        state = (
            OperationState.ABORTING
            if stored.state == OperationState.ABORTING
            else OperationState.IN_PROGRESS
        )
        description = f"{stored.kind.label} deployment {stored.deployment} is still in progress"
        if last.stage:
            description = f"{description} (stage: {last.stage})"
        return OperationStateResult(
            operation_id=stored.id,
            state=state,
            description=description,
            stage=last.stage,
            timed_out=True,
        )

    def _load(self, key: str) -> Operation | None:
        try:
            status = self.store.get(key)
        except ResourceNotFound:
            return None
        return Operation.from_status(status)


def _retain(lines: list[str], total: int | None, tail: int | None) -> tuple[list[str], bool]:
    kept, dropped = tail_lines(lines, tail)
    produced = total if total is not None else len(lines)
    return kept, dropped or produced > len(kept)


def _matches_owner(operation: Operation, options: AbortOptions) -> bool:
    if options.service_id is not None and operation.service_id not in {None, options.service_id}:
        return False
    return options.tenant_id is None or operation.tenant_id in {None, options.tenant_id}


def _to_result(operation: Operation) -> OperationStateResult:
    return OperationStateResult(
        operation_id=operation.id,
        state=operation.state,
        description=operation.description or "",
        stage=operation.stage,
        finished_at=operation.finished_at,
        stdout_truncated=operation.stdout_truncated,
        stderr_truncated=operation.stderr_truncated,
    )
