from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

from backup_supervisor.demux import Channel, encode_frame
from backup_supervisor.errors import AgentUnreachable
from backup_supervisor.main import backup_supervisor
from backup_supervisor.operations.agent import HttpAgent
from backup_supervisor.operations.models import (
    AgentAbortAck,
    AgentLastOperation,
    CapturedLogs,
    OperationState,
)

pytestmark = [
    allure.epic("Operation Supervision"),
    allure.feature("CLI"),
]

DEPLOYMENT = "service-fabrik-0021-b4719e7c-e8d3-4f7f-c515-769ad1c3ebfa"
INSTANCE_ID = "b4719e7c-e8d3-4f7f-c515-769ad1c3ebfa"


@pytest.fixture()
def cli_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    catalog_path = tmp_path / "catalog.json"
    catalog_path.write_text(
        json.dumps({"plans": [{"id": "plan-1", "name": "v1.0-xsmall"}]}),
        encoding="utf-8",
    )
    monkeypatch.setenv("BACKUP_SUPERVISOR_CATALOG_PATH", str(catalog_path))
    monkeypatch.setenv("BACKUP_SUPERVISOR_RETRY_JITTER", "false")
    monkeypatch.setenv("BACKUP_SUPERVISOR_RETRY_MAX_ATTEMPTS", "1")
    monkeypatch.setattr(HttpAgent, "start", lambda self, address, kind, params: {})
    monkeypatch.setattr(
        HttpAgent,
        "get_last_operation",
        lambda self, address, kind: AgentLastOperation(
            state=OperationState.SUCCEEDED,
            stage="Done",
            updated_at=datetime(2026, 10, 18, 12, 0, tzinfo=UTC),
        ),
    )
    monkeypatch.setattr(
        HttpAgent,
        "get_logs",
        lambda self, address, kind: CapturedLogs(stdout=["ok"]),
    )
    monkeypatch.setattr(HttpAgent, "abort", lambda self, address, kind: AgentAbortAck())
    return tmp_path / "cli.db"


def _start(runner: CliRunner, db_path: Path, *extra: str):
    return runner.invoke(
        backup_supervisor,
        [
            "backup",
            "start",
            "--db-path",
            str(db_path),
            "--deployment",
            DEPLOYMENT,
            "--instance-id",
            INSTANCE_ID,
            "--plan-id",
            "plan-1",
            "--operation-id",
            "op-1",
            "--param",
            "password=secret",
            *extra,
        ],
    )


def test_backup_start_status_and_abort(cli_env: Path) -> None:
    runner = CliRunner()

    started = _start(runner, cli_env)
    assert started.exit_code == 0, started.output
    assert (
        f"Backup started: operation_id=op-1 deployment={DEPLOYMENT} state=in_progress"
        in started.output
    )

    status = runner.invoke(
        backup_supervisor,
        [
            "backup",
            "status",
            "--db-path",
            str(cli_env),
            "--deployment",
            DEPLOYMENT,
            "--instance-id",
            INSTANCE_ID,
        ],
    )
    assert status.exit_code == 0, status.output
    assert "State: succeeded" in status.output
    assert f"Backup deployment {DEPLOYMENT} succeeded at 2026-10-18T12:00:00+00:00" in (
        status.output
    )

    aborted = runner.invoke(
        backup_supervisor,
        [
            "backup",
            "abort",
            "--db-path",
            str(cli_env),
            "--deployment",
            DEPLOYMENT,
            "--instance-id",
            INSTANCE_ID,
            "--immediate",
        ],
    )
    assert aborted.exit_code == 0, aborted.output
    assert "State: succeeded" in aborted.output


def test_backup_start_reports_unreachable_agent(
    cli_env: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def unreachable(self, address, kind, params):
        raise AgentUnreachable("connection refused")

    monkeypatch.setattr(HttpAgent, "start", unreachable)

    result = _start(CliRunner(), cli_env)

    assert result.exit_code != 0
    assert "Could not start backup on agent" in result.output


def test_backup_start_rejects_malformed_param(cli_env: Path) -> None:
    result = _start(CliRunner(), cli_env, "--param", "novalue")

    assert result.exit_code != 0
    assert "Expected key=value" in result.output


def test_logs_demux_prints_channels(tmp_path: Path) -> None:
    capture = tmp_path / "capture.bin"
    capture.write_bytes(
        encode_frame(Channel.STDOUT, b"first\n")
        + encode_frame(Channel.STDOUT, b"second\n")
        + encode_frame(Channel.STDERR, b"warning\n"),
    )

    result = CliRunner().invoke(backup_supervisor, ["logs", "demux", str(capture), "--tail", "1"])

    assert result.exit_code == 0, result.output
    assert "Frames: stdout=2 stderr=1" in result.output
    assert 'The "stdout" log is truncated.' in result.output
    assert "second" in result.output
    assert "warning" in result.output


def test_deployments_check() -> None:
    result = CliRunner().invoke(
        backup_supervisor,
        ["deployments", "check", DEPLOYMENT, "service-fabrik-abcd-x"],
    )

    assert result.exit_code == 0, result.output
    assert f"{DEPLOYMENT}: ok subnet=- network_segment=21 guid={INSTANCE_ID}" in result.output
    assert "service-fabrik-abcd-x: invalid" in result.output
