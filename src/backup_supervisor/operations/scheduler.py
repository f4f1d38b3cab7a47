"""Recurring job registration."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from backup_supervisor.errors import SchedulerError
from backup_supervisor.storage.common import utc_now
from backup_supervisor.storage.sqlmodel_models import ScheduledJob


@dataclass(slots=True)
class JobSpec:
    """Recurring job to register; ``name`` identifies it across re-registrations."""

    name: str
    job_type: str
    interval: str
    data: dict[str, Any] = field(default_factory=dict)


class Scheduler(Protocol):
    """Fire-and-forget registration of recurring jobs."""

    def schedule(self, job: JobSpec) -> None:
        """Register or replace ``job``; raise ``SchedulerError`` on failure."""


class SqlScheduler:
    """Scheduler that records job specs in the supervisor database."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def schedule(self, job: JobSpec) -> None:
        now = utc_now()
        try:
            with Session(self.engine) as session:
                row = session.get(ScheduledJob, job.name)
                if row is None:
                    row = ScheduledJob(
                        job_name=job.name,
                        job_type=job.job_type,
                        interval=job.interval,
                        data_json="{}",
                        created_at=now,
                        updated_at=now,
                    )
                row.job_type = job.job_type
                row.interval = job.interval
                row.data_json = json.dumps(job.data, ensure_ascii=False, sort_keys=True)
                row.updated_at = now
                session.add(row)
                session.commit()
        except SQLAlchemyError as error:
            raise SchedulerError(f"Failed to schedule job {job.name}: {error}") from error

    def get_job(self, name: str) -> JobSpec | None:
        """Return the registered job named ``name``."""

        with Session(self.engine) as session:
            row = session.get(ScheduledJob, name)
            if row is None:
                return None
            return JobSpec(
                name=row.job_name,
                job_type=row.job_type,
                interval=row.interval,
                data=json.loads(row.data_json),
            )
