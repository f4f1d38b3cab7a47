"""CLI entrypoint for backup-supervisor."""

from collections.abc import Callable
from pathlib import Path

import rich_click as click

from backup_supervisor import __version__
from backup_supervisor.errors import SupervisorError
from backup_supervisor.operations.controllers import (
    AbortBackupCommand,
    DemuxLogsCommand,
    DeploymentCheckCommand,
    OperationsCliController,
    OperationStatusCommand,
    StartOperationCommand,
)
from backup_supervisor.operations.models import OperationKind
from backup_supervisor.retry import RetryExhausted

click.rich_click.USE_MARKDOWN = True
OPERATIONS_CONTROLLER = OperationsCliController()

_db_path_option = click.option(
    "--db-path",
    type=click.Path(path_type=Path),
    default=None,
    help="SQLite DB path.",
)


@click.group()
@click.version_option(version=__version__, prog_name="backup-supervisor")
def backup_supervisor() -> None:
    """Service backup/restore supervisor CLI."""


@backup_supervisor.group()
def backup() -> None:
    """Backup commands."""


@backup_supervisor.group()
def restore() -> None:
    """Restore commands."""


@backup_supervisor.group()
def logs() -> None:
    """Agent log commands."""


@backup_supervisor.group()
def deployments() -> None:
    """Deployment name commands."""


def _start_options(command: Callable) -> Callable:
    options = [
        _db_path_option,
        click.option("--deployment", required=True, help="Deployment name."),
        click.option("--instance-id", required=True, help="Service instance id."),
        click.option("--plan-id", required=True, help="Service plan id."),
        click.option("--operation-id", default=None, help="Operation id (generated if omitted)."),
        click.option("--service-id", default=None, help="Service id."),
        click.option("--tenant-id", default=None, help="Tenant (space) id."),
        click.option(
            "--param",
            "params",
            multiple=True,
            help="Agent parameter as key=value. Can be repeated.",
        ),
    ]
    for option in reversed(options):
        command = option(command)
    return command


def _status_options(command: Callable) -> Callable:
    options = [
        _db_path_option,
        click.option("--deployment", required=True, help="Deployment name."),
        click.option("--instance-id", required=True, help="Service instance id."),
        click.option("--agent-address", default=None, help="Override the cached agent address."),
        click.option(
            "--timeout",
            "timeout_seconds",
            type=click.FloatRange(min=0),
            default=None,
            help="Stop polling after this many seconds. 0 polls once.",
        ),
        click.option(
            "--interval",
            "interval_seconds",
            type=click.FloatRange(min=0),
            default=None,
            help="Seconds between polls.",
        ),
    ]
    for option in reversed(options):
        command = option(command)
    return command


@backup.command("start")
@_start_options
@click.option("--schedule", is_flag=True, help="Also register a recurring backup.")
@click.option("--repeat-interval", default=None, help="Interval of the recurring backup.")
def backup_start(  # noqa: PLR0913
    db_path: Path | None,
    deployment: str,
    instance_id: str,
    plan_id: str,
    operation_id: str | None,
    service_id: str | None,
    tenant_id: str | None,
    params: tuple[str, ...],
    schedule: bool,
    repeat_interval: str | None,
) -> None:
    """Start a backup on the deployment's agent."""

    _run(
        lambda: OPERATIONS_CONTROLLER.start(
            StartOperationCommand(
                db_path=db_path,
                kind=OperationKind.BACKUP,
                deployment=deployment,
                instance_id=instance_id,
                plan_id=plan_id,
                operation_id=operation_id,
                service_id=service_id,
                tenant_id=tenant_id,
                params=params,
                schedule=schedule,
                repeat_interval=repeat_interval,
            ),
        ),
    )


@backup.command("status")
@_status_options
def backup_status(
    db_path: Path | None,
    deployment: str,
    instance_id: str,
    agent_address: str | None,
    timeout_seconds: float | None,
    interval_seconds: float | None,
) -> None:
    """Poll the last backup until it finishes or the timeout elapses."""

    _run(
        lambda: OPERATIONS_CONTROLLER.status(
            OperationStatusCommand(
                db_path=db_path,
                kind=OperationKind.BACKUP,
                deployment=deployment,
                instance_id=instance_id,
                agent_address=agent_address,
                timeout_seconds=timeout_seconds,
                interval_seconds=interval_seconds,
            ),
        ),
    )


@backup.command("abort")
@_db_path_option
@click.option("--deployment", required=True, help="Deployment name.")
@click.option("--instance-id", required=True, help="Service instance id.")
@click.option("--service-id", default=None, help="Only abort when the backup belongs to it.")
@click.option("--tenant-id", default=None, help="Only abort when the backup belongs to it.")
@click.option("--immediate", is_flag=True, help="Mark aborted when the agent confirms it.")
def backup_abort(  # noqa: PLR0913
    db_path: Path | None,
    deployment: str,
    instance_id: str,
    service_id: str | None,
    tenant_id: str | None,
    immediate: bool,
) -> None:
    """Abort the last backup unless it already finished."""

    _run(
        lambda: OPERATIONS_CONTROLLER.abort(
            AbortBackupCommand(
                db_path=db_path,
                deployment=deployment,
                instance_id=instance_id,
                service_id=service_id,
                tenant_id=tenant_id,
                immediate=immediate,
            ),
        ),
    )


@restore.command("start")
@_start_options
def restore_start(  # noqa: PLR0913
    db_path: Path | None,
    deployment: str,
    instance_id: str,
    plan_id: str,
    operation_id: str | None,
    service_id: str | None,
    tenant_id: str | None,
    params: tuple[str, ...],
) -> None:
    """Start a restore on the deployment's agent."""

    _run(
        lambda: OPERATIONS_CONTROLLER.start(
            StartOperationCommand(
                db_path=db_path,
                kind=OperationKind.RESTORE,
                deployment=deployment,
                instance_id=instance_id,
                plan_id=plan_id,
                operation_id=operation_id,
                service_id=service_id,
                tenant_id=tenant_id,
                params=params,
            ),
        ),
    )


@restore.command("status")
@_status_options
def restore_status(
    db_path: Path | None,
    deployment: str,
    instance_id: str,
    agent_address: str | None,
    timeout_seconds: float | None,
    interval_seconds: float | None,
) -> None:
    """Poll the last restore until it finishes or the timeout elapses."""

    _run(
        lambda: OPERATIONS_CONTROLLER.status(
            OperationStatusCommand(
                db_path=db_path,
                kind=OperationKind.RESTORE,
                deployment=deployment,
                instance_id=instance_id,
                agent_address=agent_address,
                timeout_seconds=timeout_seconds,
                interval_seconds=interval_seconds,
            ),
        ),
    )


@logs.command("demux")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--tail",
    type=click.IntRange(min=0),
    default=None,
    help="Keep only the newest N entries per channel.",
)
@click.option(
    "--channel",
    type=click.Choice(["stdout", "stderr"]),
    default=None,
    help="Print only one channel.",
)
def logs_demux(path: Path, tail: int | None, channel: str | None) -> None:
    """Split a framed agent log capture into stdout and stderr."""

    _run(
        lambda: OPERATIONS_CONTROLLER.demux_logs(
            DemuxLogsCommand(path=path, tail=tail, channel=channel),
        ),
    )


@deployments.command("check")
@click.argument("names", nargs=-1, required=True)
def deployments_check(names: tuple[str, ...]) -> None:
    """Validate deployment names against the naming grammar."""

    _run(
        lambda: OPERATIONS_CONTROLLER.check_deployments(DeploymentCheckCommand(names=names)),
    )


def _run(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except (SupervisorError, RetryExhausted, LookupError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    backup_supervisor()
