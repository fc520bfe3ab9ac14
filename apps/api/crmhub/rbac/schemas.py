from __future__ import annotations

from datetime import datetime, timedelta
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from crmhub.documents import AutoRevokeConditions, PasswordPolicy, TimeRestriction
from crmhub.enums import (
    AssignmentType,
    ComplianceStatus,
    ConditionType,
    DelegationStatus,
    DelegationType,
    GrantType,
    RoleType,
    StatusType,
)


class RoleCreate(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    description: str | None = Field(default=None, max_length=500)
    role_type: RoleType = RoleType.CUSTOM
    is_active: bool = True
    is_default: bool = False
    priority: int = Field(default=0, ge=0)
    parent_role_id: UUID | None = None
    inheritance_enabled: bool = True
    max_users: int | None = Field(default=None, gt=0)
    concurrent_session_limit: int = Field(default=5, gt=0)
    max_session_duration: timedelta = timedelta(hours=24)
    allowed_resources: list[str] = Field(default_factory=list)
    denied_resources: list[str] = Field(default_factory=list)
    ip_whitelist: list[str] = Field(default_factory=list)
    requires_mfa: bool = False
    password_policy: PasswordPolicy = Field(default_factory=PasswordPolicy)


class RoleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=50)
    description: str | None = Field(default=None, max_length=500)
    is_active: bool | None = None
    is_default: bool | None = None
    priority: int | None = Field(default=None, ge=0)
    parent_role_id: UUID | None = None
    inheritance_enabled: bool | None = None
    max_users: int | None = Field(default=None, gt=0)
    concurrent_session_limit: int | None = Field(default=None, gt=0)
    requires_mfa: bool | None = None
    password_policy: PasswordPolicy | None = None
    version: int


class RoleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str
    description: str | None
    role_type: RoleType
    is_system: bool
    is_active: bool
    is_default: bool
    priority: int
    parent_role_id: UUID | None
    inheritance_enabled: bool
    max_users: int | None
    concurrent_session_limit: int
    requires_mfa: bool
    password_policy: PasswordPolicy
    version: int
    created_at: datetime
    updated_at: datetime


class RoleHierarchyRead(BaseModel):
    role_id: UUID
    level: int
    ancestors: list[UUID]


class PermissionCreate(BaseModel):
    name: str = Field(min_length=3, max_length=100, pattern=r"^[a-z_]+(\.[a-z_:*]+)+$")
    description: str | None = None
    category: str | None = Field(default=None, min_length=2, max_length=50)
    subcategory: str | None = None
    is_active: bool = True
    is_sensitive: bool = False
    priority: int = Field(default=0, ge=0)
    requires_mfa: bool = False
    requires_approval: bool = False
    rate_limit: int | None = Field(default=None, gt=0)
    time_restrictions: TimeRestriction | None = None
    conditions: dict = Field(default_factory=dict)
    dependent_permissions: list[str] = Field(default_factory=list)
    conflicting_permissions: list[str] = Field(default_factory=list)


class PermissionUpdate(BaseModel):
    description: str | None = None
    is_active: bool | None = None
    is_sensitive: bool | None = None
    priority: int | None = Field(default=None, ge=0)
    requires_mfa: bool | None = None
    requires_approval: bool | None = None
    rate_limit: int | None = Field(default=None, gt=0)
    time_restrictions: TimeRestriction | None = None
    conditions: dict | None = None
    dependent_permissions: list[str] | None = None
    conflicting_permissions: list[str] | None = None
    version: int


class PermissionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    slug: str
    description: str | None
    category: str
    resource_type: str
    action_type: str
    is_system: bool
    is_active: bool
    is_sensitive: bool
    requires_mfa: bool
    requires_approval: bool
    rate_limit: int | None
    time_restrictions: TimeRestriction
    dependent_permissions: list[str]
    conflicting_permissions: list[str]
    version: int
    created_at: datetime


class GrantPermissionRequest(BaseModel):
    permission_id: UUID
    grant_type: GrantType = GrantType.EXPLICIT
    condition_type: ConditionType = ConditionType.UNRESTRICTED
    valid_until: datetime | None = None
    max_usage_count: int | None = Field(default=None, gt=0)
    time_restriction: TimeRestriction | None = None


class RolePermissionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    role_id: UUID
    permission_id: UUID
    permission_name: str
    grant_type: GrantType
    condition_type: ConditionType
    status: StatusType
    valid_from: datetime
    valid_until: datetime | None
    max_usage_count: int | None
    current_usage_count: int
    created_at: datetime


class AssignRoleRequest(BaseModel):
    role_id: UUID
    is_primary: bool = False
    assignment_type: AssignmentType = AssignmentType.MANUAL
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    requires_approval: bool = False
    time_restriction: TimeRestriction | None = None


class TemporaryRoleRequest(BaseModel):
    role_id: UUID
    valid_until: datetime
    valid_from: datetime | None = None
    requires_approval: bool = False
    reason: str | None = None


class RevokeRoleRequest(BaseModel):
    reason: str | None = None


class UserRoleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    role_id: UUID
    role_name: str
    role_type: RoleType
    status: StatusType
    is_primary: bool
    assignment_type: AssignmentType
    valid_from: datetime
    valid_until: datetime | None
    requires_approval: bool
    approved_at: datetime | None
    approved_by: UUID | None
    compliance_status: ComplianceStatus
    is_effective: bool
    version: int
    created_at: datetime


class RoleCheckRead(BaseModel):
    user_id: UUID
    role: str
    has_role: bool


class RoleConflictRead(BaseModel):
    permission: str
    conflicts_with: str
    sources: list[str]


class RoleConflictReport(BaseModel):
    user_id: UUID
    role_id: UUID
    has_conflicts: bool
    overlapping_role_ids: list[UUID]
    permission_conflicts: list[RoleConflictRead]


class RoleAssignmentHistoryRead(BaseModel):
    audit_id: UUID
    record_id: UUID
    action: str
    role_id: UUID | None
    status: str | None
    changed_fields: list[str]
    performed_by: UUID
    performed_at: datetime


class DelegateRoleRequest(BaseModel):
    delegate_id: UUID
    role_id: UUID
    delegation_type: DelegationType = DelegationType.TEMPORARY
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    requires_approval: bool = True
    delegated_permissions: list[str] = Field(default_factory=list)
    excluded_permissions: list[str] = Field(default_factory=list)
    max_usage_count: int | None = Field(default=None, gt=0)
    auto_revoke_conditions: AutoRevokeConditions = Field(default_factory=AutoRevokeConditions)
    time_restriction: TimeRestriction | None = None


class RevokeDelegationRequest(BaseModel):
    reason: str = Field(min_length=1)


class DelegationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    delegator_id: UUID
    delegate_id: UUID
    role_id: UUID
    status: DelegationStatus
    delegation_type: DelegationType
    is_active: bool
    starts_at: datetime
    ends_at: datetime | None
    requires_approval: bool
    approved_at: datetime | None
    approved_by: UUID | None
    delegated_permissions: list[str]
    excluded_permissions: list[str]
    revoked_at: datetime | None
    revocation_reason: str | None
    auto_revoke_conditions: AutoRevokeConditions
    version: int
    created_at: datetime


class EffectivePermissionsRead(BaseModel):
    user_id: UUID
    at: datetime
    permissions: list[str]
    role_types: list[str]
    sources: dict[str, list[str]]


class ExpirySweepRead(BaseModel):
    user_roles_expired: int
    delegations_expired: int


class SeedResultRead(BaseModel):
    roles: int
    permissions: int
    role_permissions: int
