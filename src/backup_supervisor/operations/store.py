"""Resource store holding the externally visible status record of each operation."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from backup_supervisor.errors import ResourceConflict, ResourceNotFound
from backup_supervisor.storage.alembic_runner import upgrade_head
from backup_supervisor.storage.common import build_sqlite_engine, utc_now
from backup_supervisor.storage.sqlmodel_models import OperationResource, OperationResourceEvent


class ResourceStore(Protocol):
    """Key-value store with single-key last-write-wins semantics."""

    def get(self, key: str) -> dict[str, Any]:
        """Return the status stored under ``key`` or raise ``ResourceNotFound``."""

    def patch(
        self,
        key: str,
        status: Mapping[str, Any],
        *,
        if_state: str | None = None,
    ) -> dict[str, Any]:
        """Merge top-level ``status`` fields into the record and return the result."""


@dataclass(slots=True)
class ResourceEventView:
    """One recorded state change of a resource."""

    event_id: int
    resource_key: str
    operation_id: str | None
    state_from: str | None
    state_to: str | None
    created_at: datetime


class SqlResourceStore:
    """Resource store persisted in SQLite through SQLModel."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def get(self, key: str) -> dict[str, Any]:
        with Session(self.engine) as session:
            row = session.get(OperationResource, key)
            if row is None:
                raise ResourceNotFound(key)
            return _load_status(row.status_json)

    def patch(
        self,
        key: str,
        status: Mapping[str, Any],
        *,
        if_state: str | None = None,
    ) -> dict[str, Any]:
        """Merge ``status`` into the record under ``key``.

        With ``if_state`` the write only lands while the stored record is still in that
        state and unchanged since it was read; otherwise ``ResourceConflict`` is raised
        and nothing is written.
        """

        now = utc_now()
        with Session(self.engine) as session:
            row = session.get(OperationResource, key)
            previous_state = row.state if row is not None else None
            if if_state is not None and (row is None or previous_state != if_state):
                raise ResourceConflict(key, expected_state=if_state, actual_state=previous_state)

            if row is None:
                merged = dict(status)
                payload = json.dumps(merged, ensure_ascii=False, sort_keys=True)
                session.add(
                    OperationResource(
                        resource_key=key,
                        operation_id=merged.get("id"),
                        state=merged.get("state"),
                        status_json=payload,
                        created_at=now,
                        updated_at=now,
                    ),
                )
            else:
                read_json = row.status_json
                merged = {**_load_status(read_json), **status}
                payload = json.dumps(merged, ensure_ascii=False, sort_keys=True)
                statement = sa_update(OperationResource).where(
                    col(OperationResource.resource_key) == key,
                )
                if if_state is not None:
                    statement = statement.where(col(OperationResource.status_json) == read_json)
                result = session.exec(
                    statement.values(
                        status_json=payload,
                        operation_id=merged.get("id"),
                        state=merged.get("state"),
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    raise ResourceConflict(key, expected_state=if_state, actual_state=None)

            state = merged.get("state")
            if state != previous_state or "id" in status:
                session.add(
                    OperationResourceEvent(
                        resource_key=key,
                        operation_id=merged.get("id"),
                        state_from=previous_state,
                        state_to=state,
                        created_at=now,
                    ),
                )
            session.commit()
            return merged

    def list_events(self, key: str) -> list[ResourceEventView]:
        """Return recorded state changes of ``key`` in write order."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(OperationResourceEvent)
                .where(OperationResourceEvent.resource_key == key)
                .order_by(col(OperationResourceEvent.id).asc()),
            ).all()
        return [
            ResourceEventView(
                event_id=row.id or 0,
                resource_key=row.resource_key,
                operation_id=row.operation_id,
                state_from=row.state_from,
                state_to=row.state_to,
                created_at=row.created_at,
            )
            for row in rows
        ]


def _load_status(raw: str) -> dict[str, Any]:
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError(f"Stored resource status is not an object: {raw[:80]!r}")
    return parsed
