"""SQLModel ORM tables for operation supervision storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class OperationResource(SQLModel, table=True):
    __tablename__ = "operation_resources"  # type: ignore[bad-override]

    resource_key: str = Field(primary_key=True)
    operation_id: str | None = Field(default=None, index=True)
    state: str | None = Field(default=None, index=True)
    status_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class OperationResourceEvent(SQLModel, table=True):
    __tablename__ = "operation_resource_events"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_operation_resource_events_key_time", "resource_key", "created_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    resource_key: str = Field(index=True)
    operation_id: str | None = Field(default=None)
    state_from: str | None = None
    state_to: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ScheduledJob(SQLModel, table=True):
    __tablename__ = "scheduled_jobs"  # type: ignore[bad-override]

    job_name: str = Field(primary_key=True)
    job_type: str = Field(index=True)
    interval: str
    data_json: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
