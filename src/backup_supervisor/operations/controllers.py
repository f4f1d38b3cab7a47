"""Controllers for operation CLI commands."""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from backup_supervisor.config import Settings
from backup_supervisor.demux import Channel, demux
from backup_supervisor.deployments import parse_deployment_name
from backup_supervisor.operations.agent import HttpAgent
from backup_supervisor.operations.catalog import StaticCatalog
from backup_supervisor.operations.models import (
    AbortOptions,
    OperationKind,
    OperationStateResult,
    PollOptions,
    StartOptions,
)
from backup_supervisor.operations.orchestrator import OperationOrchestrator
from backup_supervisor.operations.scheduler import SqlScheduler
from backup_supervisor.operations.store import SqlResourceStore
from backup_supervisor.storage.common import to_iso


@dataclass(slots=True)
class StartOperationCommand:
    """CLI input for starting a backup or restore."""

    db_path: Path | None
    kind: OperationKind
    deployment: str
    instance_id: str
    plan_id: str
    operation_id: str | None = None
    service_id: str | None = None
    tenant_id: str | None = None
    params: tuple[str, ...] = ()
    schedule: bool = False
    repeat_interval: str | None = None


@dataclass(slots=True)
class OperationStatusCommand:
    """CLI input for polling an operation."""

    db_path: Path | None
    kind: OperationKind
    deployment: str
    instance_id: str
    agent_address: str | None = None
    timeout_seconds: float | None = None
    interval_seconds: float | None = None


@dataclass(slots=True)
class AbortBackupCommand:
    """CLI input for aborting the last backup."""

    db_path: Path | None
    deployment: str
    instance_id: str
    service_id: str | None = None
    tenant_id: str | None = None
    immediate: bool = False


@dataclass(slots=True)
class DemuxLogsCommand:
    """CLI input for demultiplexing a captured framed log file."""

    path: Path
    tail: int | None
    channel: str | None = None


@dataclass(slots=True)
class DeploymentCheckCommand:
    """CLI input for deployment name validation."""

    names: tuple[str, ...]


class OperationsCliController:
    """Coordinates start, status and abort CLI operations."""

    def start(self, command: StartOperationCommand) -> list[str]:
        settings = _settings(command.db_path)
        options = StartOptions(
            operation_id=command.operation_id or str(uuid.uuid4()),
            kind=command.kind,
            deployment=command.deployment,
            instance_id=command.instance_id,
            plan_id=command.plan_id,
            service_id=command.service_id,
            tenant_id=command.tenant_id,
            params=parse_params(command.params),
            schedule=command.schedule,
            repeat_interval=command.repeat_interval,
        )
        with _orchestrator(settings) as orchestrator:
            operation = orchestrator.start(options)

        return [
            f"{operation.kind.label} started: "
            f"operation_id={operation.id} deployment={operation.deployment} "
            f"state={operation.state.value}",
            f"Agent: {operation.agent_address or '-'}",
        ]

    def status(self, command: OperationStatusCommand) -> list[str]:
        settings = _settings(command.db_path)
        options = PollOptions(
            deployment=command.deployment,
            instance_id=command.instance_id,
            agent_address=command.agent_address,
            timeout_seconds=command.timeout_seconds,
            interval_seconds=command.interval_seconds,
        )
        with _orchestrator(settings) as orchestrator:
            result = orchestrator.get_operation_state(command.kind, options)
        return render_result_lines(result)

    def abort(self, command: AbortBackupCommand) -> list[str]:
        settings = _settings(command.db_path)
        options = AbortOptions(
            deployment=command.deployment,
            instance_id=command.instance_id,
            service_id=command.service_id,
            tenant_id=command.tenant_id,
        )
        with _orchestrator(settings) as orchestrator:
            result = orchestrator.abort_last_backup(options, immediate=command.immediate)
        return render_result_lines(result)

    def demux_logs(self, command: DemuxLogsCommand) -> list[str]:
        """Split a framed log capture into stdout/stderr text."""

        with command.path.open("rb") as stream:
            result = demux(stream, tail=command.tail)
        stdout, stderr = result.render()
        lines: list[str] = [
            f"Frames: stdout={result.stdout_total} stderr={result.stderr_total}",
        ]
        if command.channel in {None, Channel.STDOUT.value}:
            lines.extend(["--- stdout ---", *stdout.splitlines()])
        if command.channel in {None, Channel.STDERR.value}:
            lines.extend(["--- stderr ---", *stderr.splitlines()])
        return lines

    def check_deployments(self, command: DeploymentCheckCommand) -> list[str]:
        settings = Settings.from_env()
        settings.validate()
        lines: list[str] = []
        for name in command.names:
            parsed = parse_deployment_name(name, settings.deployments)
            if parsed is None:
                lines.append(f"{name}: invalid")
                continue
            lines.append(
                f"{name}: ok subnet={parsed.subnet or '-'} "
                f"network_segment={parsed.network_segment} guid={parsed.guid}",
            )
        return lines


def parse_params(values: tuple[str, ...]) -> dict[str, Any]:
    """Parse repeated ``key=value`` pairs; values are JSON when they parse as JSON."""

    params: dict[str, Any] = {}
    for raw in values:
        key, separator, value = raw.partition("=")
        key = key.strip()
        if not separator or not key:
            raise ValueError(f"Invalid param {raw!r}. Expected key=value.")
        try:
            params[key] = json.loads(value)
        except json.JSONDecodeError:
            params[key] = value
    return params


def render_result_lines(result: OperationStateResult) -> list[str]:
    lines = [
        f"Operation: {result.operation_id}",
        f"State: {result.state.value}",
        f"Description: {result.description}",
        f"Stage: {result.stage or '-'}",
        f"Finished at: {to_iso(result.finished_at) or '-'}",
    ]
    if result.timed_out:
        lines.append("Poll timed out before the operation finished.")
    if result.stdout_truncated or result.stderr_truncated:
        lines.append(
            f"Logs truncated: stdout={result.stdout_truncated} stderr={result.stderr_truncated}",
        )
    return lines


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def _orchestrator(settings: Settings) -> Iterator[OperationOrchestrator]:
    store = SqlResourceStore(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    store.init_schema()
    catalog = (
        StaticCatalog.from_json(settings.catalog_path)
        if settings.catalog_path is not None
        else StaticCatalog(())
    )
    agent = HttpAgent(settings=settings.agent, log_tail=settings.logs.tail_lines)
    try:
        yield OperationOrchestrator(
            agent=agent,
            store=store,
            catalog=catalog,
            settings=settings,
            scheduler=SqlScheduler(store.engine),
        )
    finally:
        agent.close()
        store.close()
