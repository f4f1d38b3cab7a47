"""Operation resources, resource events and scheduled jobs."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "operation_resources",
        sa.Column("resource_key", sa.String(), primary_key=True),
        sa.Column("operation_id", sa.String(), nullable=True),
        sa.Column("state", sa.String(), nullable=True),
        sa.Column("status_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_operation_resources_operation_id",
        "operation_resources",
        ["operation_id"],
    )
    op.create_index("ix_operation_resources_state", "operation_resources", ["state"])

    op.create_table(
        "operation_resource_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("resource_key", sa.String(), nullable=False),
        sa.Column("operation_id", sa.String(), nullable=True),
        sa.Column("state_from", sa.String(), nullable=True),
        sa.Column("state_to", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_operation_resource_events_resource_key",
        "operation_resource_events",
        ["resource_key"],
    )
    op.create_index(
        "idx_operation_resource_events_key_time",
        "operation_resource_events",
        ["resource_key", "created_at"],
    )

    op.create_table(
        "scheduled_jobs",
        sa.Column("job_name", sa.String(), primary_key=True),
        sa.Column("job_type", sa.String(), nullable=False),
        sa.Column("interval", sa.String(), nullable=False),
        sa.Column("data_json", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_scheduled_jobs_job_type", "scheduled_jobs", ["job_type"])


def downgrade() -> None:
    op.drop_index("ix_scheduled_jobs_job_type", table_name="scheduled_jobs")
    op.drop_table("scheduled_jobs")
    op.drop_index(
        "idx_operation_resource_events_key_time",
        table_name="operation_resource_events",
    )
    op.drop_index(
        "ix_operation_resource_events_resource_key",
        table_name="operation_resource_events",
    )
    op.drop_table("operation_resource_events")
    op.drop_index("ix_operation_resources_state", table_name="operation_resources")
    op.drop_index("ix_operation_resources_operation_id", table_name="operation_resources")
    op.drop_table("operation_resources")
