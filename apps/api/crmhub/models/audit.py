from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from crmhub.core.database import Base
from crmhub.enums import (
    ActivityType,
    AuditAction,
    AuditCategory,
    AuditStatus,
    ComplianceStatus,
    DataSensitivity,
    SecuritySeverity,
    db_enum,
)
from crmhub.platform.persistence import AuditedMixin, audited_table_args, utcnow


class AuditLog(Base):
    """Append-only change history; one row per insert, update, soft delete or restore."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    table_name: Mapped[str] = mapped_column(Text, nullable=False)
    record_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    action: Mapped[AuditAction] = mapped_column(db_enum(AuditAction), nullable=False)
    category: Mapped[AuditCategory] = mapped_column(db_enum(AuditCategory), nullable=False)
    status: Mapped[AuditStatus] = mapped_column(db_enum(AuditStatus), nullable=False, default=AuditStatus.COMPLETED)
    old_data: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    new_data: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    changed_fields: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    data_sensitivity: Mapped[DataSensitivity] = mapped_column(
        db_enum(DataSensitivity),
        nullable=False,
        default=DataSensitivity.INTERNAL,
    )
    performed_by: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    session_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    compliance_status: Mapped[ComplianceStatus | None] = mapped_column(db_enum(ComplianceStatus), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        CheckConstraint(
            "performed_at <= created_at AND (expires_at IS NULL OR expires_at > created_at)",
            name="valid_audit_dates",
        ),
        CheckConstraint(
            "(action = 'create' AND old_data IS NULL AND new_data IS NOT NULL) OR "
            "(action = 'update' AND old_data IS NOT NULL AND new_data IS NOT NULL) OR "
            "(action = 'delete' AND old_data IS NOT NULL AND new_data IS NULL) OR "
            "(action NOT IN ('create', 'update', 'delete'))",
            name="valid_data_changes",
        ),
        Index("idx_audit_logs_table_record", "table_name", "record_id"),
        Index("idx_audit_logs_performed_by", "performed_by"),
        Index("idx_audit_logs_performed_at", "performed_at"),
        Index("idx_audit_logs_correlation", "correlation_id"),
        Index("idx_audit_logs_expires", "expires_at"),
    )


class UserActivity(AuditedMixin, Base):
    __tablename__ = "user_activities"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    activity_type: Mapped[ActivityType] = mapped_column(db_enum(ActivityType), nullable=False)
    status: Mapped[AuditStatus] = mapped_column(db_enum(AuditStatus), nullable=False, default=AuditStatus.COMPLETED)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[AuditCategory] = mapped_column(db_enum(AuditCategory), nullable=False, default=AuditCategory.USER)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    session_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    activity_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    __table_args__ = audited_table_args(
        CheckConstraint(
            "(entity_id IS NULL AND entity_type = 'system') OR (entity_id IS NOT NULL)",
            name="valid_activity_entity",
        ),
        CheckConstraint("duration_ms IS NULL OR duration_ms >= 0", name="valid_duration"),
        Index("idx_user_activities_user", "user_id"),
        Index("idx_user_activities_entity", "entity_type", "entity_id"),
        Index("idx_user_activities_created", "created_at"),
    )


class SecurityEvent(AuditedMixin, Base):
    __tablename__ = "security_events"
    __audit_sensitivity__ = "confidential"

    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    severity: Mapped[SecuritySeverity] = mapped_column(db_enum(SecuritySeverity), nullable=False)
    status: Mapped[AuditStatus] = mapped_column(db_enum(AuditStatus), nullable=False, default=AuditStatus.PENDING)
    user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    source: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)
    evidence: Mapped[dict | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = audited_table_args(
        CheckConstraint(
            "(resolved_at IS NULL AND resolved_by IS NULL) OR (resolved_at IS NOT NULL AND resolved_by IS NOT NULL)",
            name="valid_resolution",
        ),
        Index("idx_security_events_type", "event_type"),
        Index("idx_security_events_user", "user_id"),
        Index("idx_security_events_resolved", "resolved_at"),
    )


class ComplianceLog(AuditedMixin, Base):
    __tablename__ = "compliance_logs"

    requirement_id: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[ComplianceStatus] = mapped_column(db_enum(ComplianceStatus), nullable=False)
    framework: Mapped[str] = mapped_column(Text, nullable=False)
    assessed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    assessed_by: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    evidence: Mapped[dict] = mapped_column(JSON, nullable=False)
    findings: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    risk_level: Mapped[str | None] = mapped_column(Text, nullable=True)
    impact_level: Mapped[str | None] = mapped_column(Text, nullable=True)
    remediation_plan: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    compliance_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint(
            "(completed_at IS NULL AND completed_by IS NULL) OR (completed_at IS NOT NULL AND completed_by IS NOT NULL)",
            name="valid_completion",
        ),
        CheckConstraint(
            "(due_date IS NULL OR due_date > assessed_at) AND (completed_at IS NULL OR completed_at > assessed_at)",
            name="valid_assessment_dates",
        ),
        Index("idx_compliance_logs_requirement", "requirement_id"),
        Index("idx_compliance_logs_framework", "framework"),
        Index("idx_compliance_logs_due", "due_date"),
    )
