from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from crmhub.enums import (
    ActivityType,
    AuditAction,
    AuditCategory,
    AuditStatus,
    ComplianceStatus,
    DataSensitivity,
    SecuritySeverity,
)


class AuditLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    table_name: str
    record_id: UUID
    action: AuditAction
    category: AuditCategory
    status: AuditStatus
    old_data: dict[str, Any] | None
    new_data: dict[str, Any] | None
    changed_fields: list[str]
    data_sensitivity: DataSensitivity
    performed_by: UUID
    performed_at: datetime
    correlation_id: str | None
    expires_at: datetime | None


class ActivityCreate(BaseModel):
    activity_type: ActivityType
    entity_type: str = Field(min_length=1)
    entity_id: UUID | None = None
    description: str = Field(min_length=1)
    category: AuditCategory = AuditCategory.USER
    status: AuditStatus = AuditStatus.COMPLETED
    ip_address: str | None = Field(default=None, max_length=45)
    user_agent: str | None = None
    session_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    duration_ms: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _entity_required(self) -> "ActivityCreate":
        if self.entity_id is None and self.entity_type != "system":
            raise ValueError("entity_id is required unless entity_type is 'system'")
        return self


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    activity_type: ActivityType
    status: AuditStatus
    entity_type: str
    entity_id: UUID | None
    description: str
    category: AuditCategory
    ip_address: str | None
    request_id: str | None
    tags: list[str]
    duration_ms: int | None
    created_at: datetime


class SecurityEventCreate(BaseModel):
    event_type: str = Field(min_length=1)
    severity: SecuritySeverity
    user_id: UUID | None = None
    source: str = Field(min_length=1)
    description: str = Field(min_length=1)
    ip_address: str | None = Field(default=None, max_length=45)
    user_agent: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    evidence: dict[str, Any] | None = None


class SecurityEventResolve(BaseModel):
    resolution_notes: str = Field(min_length=1)
    status: AuditStatus = AuditStatus.COMPLETED
    version: int


class SecurityEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_type: str
    severity: SecuritySeverity
    status: AuditStatus
    user_id: UUID | None
    source: str
    description: str
    ip_address: str | None
    request_id: str | None
    resolved_at: datetime | None
    resolved_by: UUID | None
    resolution_notes: str | None
    version: int
    created_at: datetime


class ComplianceAssessmentCreate(BaseModel):
    requirement_id: str = Field(min_length=1)
    framework: str = Field(min_length=1)
    status: ComplianceStatus
    evidence: dict[str, Any]
    findings: list[str] = Field(default_factory=list)
    risk_level: str | None = None
    impact_level: str | None = None
    remediation_plan: str | None = None
    assessed_at: datetime | None = None
    due_date: datetime | None = None


class ComplianceCompleteRequest(BaseModel):
    status: ComplianceStatus = ComplianceStatus.COMPLIANT
    findings: list[str] | None = None
    version: int


class ComplianceLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    requirement_id: str
    status: ComplianceStatus
    framework: str
    assessed_at: datetime
    assessed_by: UUID
    findings: list[str]
    risk_level: str | None
    impact_level: str | None
    remediation_plan: str | None
    due_date: datetime | None
    completed_at: datetime | None
    completed_by: UUID | None
    version: int


class PurgeResultRead(BaseModel):
    purged: int
    cutoff: datetime
