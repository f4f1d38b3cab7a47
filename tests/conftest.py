"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from backup_supervisor.config import PollSettings, RetrySettings, SchedulerSettings, Settings
from backup_supervisor.operations.catalog import Plan, StaticCatalog
from backup_supervisor.operations.models import (
    AgentAbortAck,
    AgentLastOperation,
    CapturedLogs,
    OperationKind,
)
from backup_supervisor.operations.orchestrator import OperationOrchestrator
from backup_supervisor.operations.scheduler import JobSpec
from backup_supervisor.operations.store import SqlResourceStore


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeAgent:
    """Scripted agent; ``states`` are served in order, the last one repeats."""

    def __init__(self) -> None:
        self.states: list[AgentLastOperation | Exception] = []
        self.start_errors: list[Exception] = []
        self.logs = CapturedLogs()
        self.abort_ack = AgentAbortAck()
        self.calls: list[tuple[str, str, str]] = []
        self.started_params: list[dict[str, Any]] = []

    def resolve_address(self, deployment: str) -> str:
        return f"agent.{deployment}"

    def start(self, address: str, kind: OperationKind, params: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("start", address, kind.value))
        self.started_params.append(dict(params))
        if self.start_errors:
            raise self.start_errors.pop(0)
        return {}

    def get_last_operation(self, address: str, kind: OperationKind) -> AgentLastOperation:
        self.calls.append(("get_last_operation", address, kind.value))
        item = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        if isinstance(item, Exception):
            raise item
        return item

    def get_logs(self, address: str, kind: OperationKind) -> CapturedLogs:
        self.calls.append(("get_logs", address, kind.value))
        return self.logs

    def abort(self, address: str, kind: OperationKind) -> AgentAbortAck:
        self.calls.append(("abort", address, kind.value))
        return self.abort_ack

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


class FakeScheduler:
    def __init__(self, error: Exception | None = None) -> None:
        self.jobs: list[JobSpec] = []
        self.error = error

    def schedule(self, job: JobSpec) -> None:
        if self.error is not None:
            raise self.error
        self.jobs.append(job)


class CountingStore:
    """Wraps a store and records every patch.

    ``after_get`` runs once after the next read, letting a test interleave a write.
    """

    def __init__(self, inner: SqlResourceStore) -> None:
        self.inner = inner
        self.patches: list[tuple[str, dict[str, Any]]] = []
        self.after_get: Callable[[], None] | None = None

    def get(self, key: str) -> dict[str, Any]:
        status = self.inner.get(key)
        hook, self.after_get = self.after_get, None
        if hook is not None:
            hook()
        return status

    def patch(
        self,
        key: str,
        status: dict[str, Any],
        *,
        if_state: str | None = None,
    ) -> dict[str, Any]:
        self.patches.append((key, dict(status)))
        return self.inner.patch(key, status, if_state=if_state)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def agent() -> FakeAgent:
    return FakeAgent()


@pytest.fixture()
def resource_store(tmp_path: Path):
    store = SqlResourceStore(tmp_path / "supervisor.db")
    store.init_schema()
    yield store
    store.close()


@pytest.fixture()
def store(resource_store: SqlResourceStore) -> CountingStore:
    return CountingStore(resource_store)


@pytest.fixture()
def catalog() -> StaticCatalog:
    return StaticCatalog(
        [
            Plan(id="plan-1", name="v1.0-xsmall", backup_interval="every 12 hours"),
            Plan(id="plan-no-backup", name="v1.0-nobackup", supports_backup=False),
        ],
    )


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        retry=RetrySettings(max_attempts=3, base_seconds=1.0, max_seconds=10.0, jitter=False),
        poll=PollSettings(interval_seconds=2.0, timeout_seconds=10.0, max_workers=2),
        scheduler=SchedulerSettings(
            job_types=("ScheduledBackup",),
            mongodb_url="mongodb://localhost:27017/backups",
        ),
    )


@pytest.fixture()
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture()
def orchestrator(agent, store, catalog, settings, scheduler, clock) -> OperationOrchestrator:
    return OperationOrchestrator(
        agent=agent,
        store=store,
        catalog=catalog,
        settings=settings,
        scheduler=scheduler,
        sleep=clock.sleep,
        clock=clock,
    )
