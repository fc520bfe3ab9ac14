"""create audit tables

Revision ID: 202610190004
Revises: 202610190003
Create Date: 2026-10-19 09:30:00
"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "202610190004"
down_revision: str | None = "202610190003"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _enum(name: str) -> sa.types.TypeEngine:
    return sa.Text().with_variant(postgresql.ENUM(name=name, create_type=False), "postgresql")


def _audited_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_by", sa.Uuid(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by", sa.Uuid(), nullable=True),
    ]


def _audited_constraints() -> list[sa.SchemaItem]:
    return [
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("version > 0", name="valid_version"),
        sa.CheckConstraint(
            "(deleted_at IS NULL AND deleted_by IS NULL) OR (deleted_at IS NOT NULL AND deleted_by IS NOT NULL)",
            name="valid_deletion",
        ),
        sa.CheckConstraint("updated_at >= created_at", name="valid_update"),
    ]


def upgrade() -> None:
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("table_name", sa.Text(), nullable=False),
        sa.Column("record_id", sa.Uuid(), nullable=False),
        sa.Column("action", _enum("audit_action"), nullable=False),
        sa.Column("category", _enum("audit_category"), nullable=False),
        sa.Column("status", _enum("audit_status"), nullable=False),
        sa.Column("old_data", sa.JSON(), nullable=True),
        sa.Column("new_data", sa.JSON(), nullable=True),
        sa.Column("changed_fields", sa.JSON(), nullable=False),
        sa.Column("data_sensitivity", _enum("data_sensitivity"), nullable=False),
        sa.Column("performed_by", sa.Uuid(), nullable=False),
        sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("session_id", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("correlation_id", sa.String(64), nullable=True),
        sa.Column("compliance_status", _enum("compliance_status"), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "performed_at <= created_at AND (expires_at IS NULL OR expires_at > created_at)",
            name="valid_audit_dates",
        ),
        sa.CheckConstraint(
            "(action = 'create' AND old_data IS NULL AND new_data IS NOT NULL) OR "
            "(action = 'update' AND old_data IS NOT NULL AND new_data IS NOT NULL) OR "
            "(action = 'delete' AND old_data IS NOT NULL AND new_data IS NULL) OR "
            "(action NOT IN ('create', 'update', 'delete'))",
            name="valid_data_changes",
        ),
    )
    op.create_index("idx_audit_logs_table_record", "audit_logs", ["table_name", "record_id"])
    op.create_index("idx_audit_logs_performed_by", "audit_logs", ["performed_by"])
    op.create_index("idx_audit_logs_performed_at", "audit_logs", ["performed_at"])
    op.create_index("idx_audit_logs_correlation", "audit_logs", ["correlation_id"])
    op.create_index("idx_audit_logs_expires", "audit_logs", ["expires_at"])

    op.create_table(
        "user_activities",
        *_audited_columns(),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("activity_type", _enum("activity_type"), nullable=False),
        sa.Column("status", _enum("audit_status"), nullable=False),
        sa.Column("entity_type", sa.Text(), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", _enum("audit_category"), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("session_id", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        *_audited_constraints(),
        sa.CheckConstraint(
            "(entity_id IS NULL AND entity_type = 'system') OR (entity_id IS NOT NULL)",
            name="valid_activity_entity",
        ),
        sa.CheckConstraint("duration_ms IS NULL OR duration_ms >= 0", name="valid_duration"),
    )
    op.create_index("idx_user_activities_user", "user_activities", ["user_id"])
    op.create_index("idx_user_activities_entity", "user_activities", ["entity_type", "entity_id"])
    op.create_index("idx_user_activities_created", "user_activities", ["created_at"])

    op.create_table(
        "security_events",
        *_audited_columns(),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("severity", _enum("security_severity"), nullable=False),
        sa.Column("status", _enum("audit_status"), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("source", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("evidence", sa.JSON(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.Uuid(), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        *_audited_constraints(),
        sa.CheckConstraint(
            "(resolved_at IS NULL AND resolved_by IS NULL) OR (resolved_at IS NOT NULL AND resolved_by IS NOT NULL)",
            name="valid_resolution",
        ),
    )
    op.create_index("idx_security_events_type", "security_events", ["event_type"])
    op.create_index("idx_security_events_user", "security_events", ["user_id"])
    op.create_index("idx_security_events_resolved", "security_events", ["resolved_at"])

    op.create_table(
        "compliance_logs",
        *_audited_columns(),
        sa.Column("requirement_id", sa.Text(), nullable=False),
        sa.Column("status", _enum("compliance_status"), nullable=False),
        sa.Column("framework", sa.Text(), nullable=False),
        sa.Column("assessed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("assessed_by", sa.Uuid(), nullable=False),
        sa.Column("evidence", sa.JSON(), nullable=False),
        sa.Column("findings", sa.JSON(), nullable=False),
        sa.Column("risk_level", sa.Text(), nullable=True),
        sa.Column("impact_level", sa.Text(), nullable=True),
        sa.Column("remediation_plan", sa.Text(), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_by", sa.Uuid(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        *_audited_constraints(),
        sa.CheckConstraint(
            "(completed_at IS NULL AND completed_by IS NULL) OR (completed_at IS NOT NULL AND completed_by IS NOT NULL)",
            name="valid_completion",
        ),
        sa.CheckConstraint(
            "(due_date IS NULL OR due_date > assessed_at) AND (completed_at IS NULL OR completed_at > assessed_at)",
            name="valid_assessment_dates",
        ),
    )
    op.create_index("idx_compliance_logs_requirement", "compliance_logs", ["requirement_id"])
    op.create_index("idx_compliance_logs_framework", "compliance_logs", ["framework"])
    op.create_index("idx_compliance_logs_due", "compliance_logs", ["due_date"])


def downgrade() -> None:
    for table in ("compliance_logs", "security_events", "user_activities", "audit_logs"):
        op.drop_table(table)
