from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, Interval, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from crmhub.core.database import Base
from crmhub.documents import AutoRevokeConditions, PasswordPolicy, TimeRestriction
from crmhub.enums import (
    AssignmentRole,
    AssignmentType,
    ComplianceStatus,
    ConditionType,
    DelegationStatus,
    DelegationType,
    GrantType,
    RoleType,
    StatusType,
    db_enum,
)
from crmhub.platform.persistence import (
    AuditedMixin,
    JSONDocument,
    PydanticJSON,
    as_utc,
    audited_table_args,
    live_index,
    live_unique_index,
    pg_check,
    utcnow,
)


_WHITESPACE_RE = re.compile(r"\s+")


def slugify_role_name(name: str) -> str:
    return _WHITESPACE_RE.sub("_", name.strip()).lower()


_APPROVAL_RULE = (
    "(NOT requires_approval AND approved_at IS NULL AND approved_by IS NULL) OR "
    "(requires_approval AND ("
    "(status != 'active' AND approved_at IS NULL AND approved_by IS NULL) OR "
    "(status = 'active' AND approved_at IS NOT NULL AND approved_by IS NOT NULL)))"
)


class Role(AuditedMixin, Base):
    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(50), nullable=False)
    slug: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    role_type: Mapped[RoleType] = mapped_column("type", db_enum(RoleType), nullable=False, default=RoleType.STANDARD)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    permissions: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    allowed_resources: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    denied_resources: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    max_session_duration: Mapped[timedelta] = mapped_column(Interval, nullable=False, default=timedelta(hours=24))
    parent_role_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("roles.id"), nullable=True)
    inheritance_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    max_users: Mapped[int | None] = mapped_column(Integer, nullable=True)
    concurrent_session_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    ip_whitelist: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    requires_mfa: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    password_policy: Mapped[PasswordPolicy] = mapped_column(
        PydanticJSON(PasswordPolicy),
        nullable=False,
        default=lambda: PasswordPolicy(),
    )
    role_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    parent: Mapped[Role | None] = relationship("Role", remote_side="Role.id", viewonly=True)

    __table_args__ = audited_table_args(
        CheckConstraint("length(name) BETWEEN 2 AND 50", name="valid_name"),
        CheckConstraint("description IS NULL OR length(description) <= 500", name="valid_description"),
        CheckConstraint("priority >= 0", name="valid_priority"),
        CheckConstraint("max_users IS NULL OR max_users > 0", name="valid_max_users"),
        CheckConstraint("concurrent_session_limit > 0", name="valid_concurrent_sessions"),
        CheckConstraint("NOT is_default OR (is_active AND NOT is_system)", name="valid_default_role"),
        CheckConstraint("parent_role_id IS NULL OR parent_role_id != id", name="valid_parent_role"),
        live_unique_index("idx_roles_name", "name"),
        live_unique_index("idx_roles_slug", "slug"),
        live_index("idx_roles_type", "type"),
        live_index("idx_roles_parent", "parent_role_id"),
        live_index("idx_roles_active", "is_active"),
    )

    @validates("name")
    def _sync_slug(self, _key: str, value: str) -> str:
        self.slug = slugify_role_name(value)
        return value


class Permission(AuditedMixin, Base):
    """A named ``resource.action`` capability granted to roles."""

    __tablename__ = "permissions"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    subcategory: Mapped[str | None] = mapped_column(String(50), nullable=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_sensitive: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    required_roles: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    excluded_roles: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    requires_mfa: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rate_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cooldown_period: Mapped[timedelta | None] = mapped_column(Interval, nullable=True)
    time_restrictions: Mapped[TimeRestriction] = mapped_column(
        PydanticJSON(TimeRestriction),
        nullable=False,
        default=TimeRestriction.unrestricted,
    )
    conditions: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    validation_rules: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    dependent_permissions: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    conflicting_permissions: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    permission_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint("length(name) BETWEEN 3 AND 100", name="valid_name"),
        CheckConstraint("length(category) BETWEEN 2 AND 50", name="valid_category"),
        CheckConstraint("length(resource_type) BETWEEN 2 AND 50", name="valid_resource_type"),
        CheckConstraint("length(action_type) BETWEEN 2 AND 50", name="valid_action_type"),
        CheckConstraint("priority >= 0", name="valid_priority"),
        CheckConstraint("rate_limit IS NULL OR rate_limit > 0", name="valid_rate_limit"),
        pg_check(r"name ~ '^[a-z_]+(\.[a-z_:*]+)+$'", name="valid_name_format"),
        live_unique_index("idx_permissions_name", "name"),
        live_unique_index("idx_permissions_slug", "slug"),
        live_index("idx_permissions_category", "category"),
        live_index("idx_permissions_resource_action", "resource_type", "action_type"),
    )

    @validates("name")
    def _sync_slug(self, _key: str, value: str) -> str:
        self.slug = slugify_role_name(value)
        return value


class GrantWindowMixin(AuditedMixin):
    """Validity window, approval trio and usage tracking shared by role grants."""

    status: Mapped[StatusType] = mapped_column(db_enum(StatusType), nullable=False, default=StatusType.ACTIVE)
    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    requires_mfa: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ip_restriction: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    time_restriction: Mapped[TimeRestriction] = mapped_column(
        PydanticJSON(TimeRestriction),
        nullable=False,
        default=TimeRestriction.unrestricted,
    )
    compliance_status: Mapped[ComplianceStatus] = mapped_column(
        db_enum(ComplianceStatus),
        nullable=False,
        default=ComplianceStatus.COMPLIANT,
    )
    last_review_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_review_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    grant_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    def is_effective(self, at: datetime) -> bool:
        """Live, active, approved when required, inside its window and its weekday/hour restriction."""

        if self.deleted_at is not None or self.status != StatusType.ACTIVE:
            return False
        if self.requires_approval and self.approved_at is None:
            return False
        valid_from = as_utc(self.valid_from)
        valid_until = as_utc(self.valid_until)
        if valid_from is not None and valid_from > at:
            return False
        if valid_until is not None and valid_until <= at:
            return False
        return self.time_restriction is None or self.time_restriction.allows(at)

    @staticmethod
    def grant_constraints() -> tuple[CheckConstraint, ...]:
        return (
            CheckConstraint("valid_until IS NULL OR valid_until > valid_from", name="valid_validity_period"),
            CheckConstraint(
                "next_review_date IS NULL OR last_review_date IS NULL OR next_review_date > last_review_date",
                name="valid_review_dates",
            ),
            CheckConstraint(_APPROVAL_RULE, name="valid_approval"),
            CheckConstraint("usage_count >= 0", name="valid_usage"),
        )


class UserRole(GrantWindowMixin, Base):
    __tablename__ = "user_roles"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    role_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("roles.id"), nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_system_assigned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    assignment_type: Mapped[AssignmentType] = mapped_column(
        db_enum(AssignmentType),
        nullable=False,
        default=AssignmentType.MANUAL,
    )

    role: Mapped[Role] = relationship("Role", lazy="joined", viewonly=True)

    __table_args__ = audited_table_args(
        *GrantWindowMixin.grant_constraints(),
        live_unique_index("idx_user_roles_user_role", "user_id", "role_id"),
        live_unique_index("idx_user_roles_primary", "user_id", where="is_primary"),
        live_index("idx_user_roles_user", "user_id"),
        live_index("idx_user_roles_role", "role_id"),
        live_index("idx_user_roles_validity", "valid_from", "valid_until"),
    )


class RolePermission(GrantWindowMixin, Base):
    __tablename__ = "role_permissions"

    role_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("roles.id"), nullable=False)
    permission_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("permissions.id"), nullable=False)
    grant_type: Mapped[GrantType] = mapped_column(db_enum(GrantType), nullable=False, default=GrantType.EXPLICIT)
    condition_type: Mapped[ConditionType] = mapped_column(
        db_enum(ConditionType),
        nullable=False,
        default=ConditionType.UNRESTRICTED,
    )
    condition_expression: Mapped[str | None] = mapped_column(Text, nullable=True)
    condition_parameters: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    max_usage_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cooldown_period: Mapped[timedelta | None] = mapped_column(Interval, nullable=True)
    last_reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resource_restriction: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    permission: Mapped[Permission] = relationship("Permission", lazy="joined", viewonly=True)

    __table_args__ = audited_table_args(
        *GrantWindowMixin.grant_constraints(),
        CheckConstraint(
            "max_usage_count IS NULL OR (current_usage_count >= 0 AND current_usage_count <= max_usage_count)",
            name="valid_usage_count",
        ),
        live_unique_index("idx_role_permissions_role_permission", "role_id", "permission_id"),
        live_index("idx_role_permissions_role", "role_id"),
        live_index("idx_role_permissions_permission", "permission_id"),
    )

    def is_effective(self, at: datetime) -> bool:
        if not super().is_effective(at):
            return False
        return self.max_usage_count is None or self.current_usage_count < self.max_usage_count


class RoleDelegation(AuditedMixin, Base):
    __tablename__ = "role_delegations"

    delegator_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    delegate_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    role_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("roles.id"), nullable=False)
    status: Mapped[DelegationStatus] = mapped_column(
        db_enum(DelegationStatus),
        nullable=False,
        default=DelegationStatus.PENDING,
    )
    delegation_type: Mapped[DelegationType] = mapped_column(
        db_enum(DelegationType),
        nullable=False,
        default=DelegationType.TEMPORARY,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    delegated_permissions: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    excluded_permissions: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    resource_restrictions: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    revocation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    auto_revoke_conditions: Mapped[AutoRevokeConditions] = mapped_column(
        PydanticJSON(AutoRevokeConditions),
        nullable=False,
        default=lambda: AutoRevokeConditions(),
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_usage_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    ip_restriction: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    time_restriction: Mapped[TimeRestriction] = mapped_column(
        PydanticJSON(TimeRestriction),
        nullable=False,
        default=TimeRestriction.unrestricted,
    )
    compliance_status: Mapped[ComplianceStatus] = mapped_column(
        db_enum(ComplianceStatus),
        nullable=False,
        default=ComplianceStatus.COMPLIANT,
    )
    last_review_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_review_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    delegation_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    role: Mapped[Role] = relationship("Role", lazy="joined", viewonly=True)

    __table_args__ = audited_table_args(
        CheckConstraint("delegator_id != delegate_id", name="no_self_delegation"),
        CheckConstraint("ends_at IS NULL OR ends_at > starts_at", name="valid_delegation_period"),
        CheckConstraint(
            "next_review_date IS NULL OR last_review_date IS NULL OR next_review_date > last_review_date",
            name="valid_review_dates",
        ),
        CheckConstraint(_APPROVAL_RULE, name="valid_approval"),
        CheckConstraint(
            "(revoked_at IS NULL AND revoked_by IS NULL AND revocation_reason IS NULL) OR "
            "(revoked_at IS NOT NULL AND revoked_by IS NOT NULL AND revocation_reason IS NOT NULL)",
            name="valid_revocation",
        ),
        CheckConstraint(
            "max_usage_count IS NULL OR (usage_count >= 0 AND usage_count <= max_usage_count)",
            name="valid_usage_count",
        ),
        live_unique_index("idx_role_delegations_unique", "delegator_id", "delegate_id", "role_id"),
        live_index("idx_role_delegations_delegator", "delegator_id"),
        live_index("idx_role_delegations_delegate", "delegate_id"),
        live_index("idx_role_delegations_role", "role_id"),
        live_index("idx_role_delegations_status", "status"),
        live_index("idx_role_delegations_validity", "starts_at", "ends_at"),
    )

    def is_effective(self, at: datetime) -> bool:
        if self.deleted_at is not None or not self.is_active:
            return False
        if self.status != DelegationStatus.ACTIVE or self.revoked_at is not None:
            return False
        if self.requires_approval and self.approved_at is None:
            return False
        starts_at = as_utc(self.starts_at)
        ends_at = as_utc(self.ends_at)
        if starts_at is not None and starts_at > at:
            return False
        if ends_at is not None and ends_at <= at:
            return False
        if self.max_usage_count is not None and self.usage_count >= self.max_usage_count:
            return False
        return self.time_restriction is None or self.time_restriction.allows(at)

    def covers(self, permission_name: str) -> bool:
        if permission_name in self.excluded_permissions:
            return False
        return not self.delegated_permissions or permission_name in self.delegated_permissions


class TeamAssignment(AuditedMixin, Base):
    """Membership of a user on the team working a CRM record."""

    __tablename__ = "team_assignments"

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("profiles.id"), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    team_role: Mapped[AssignmentRole] = mapped_column(
        db_enum(AssignmentRole),
        nullable=False,
        default=AssignmentRole.CONTRIBUTOR,
    )
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = audited_table_args(
        CheckConstraint("ends_at IS NULL OR ends_at > assigned_at", name="valid_assignment_period"),
        live_unique_index("idx_team_assignments_unique", "user_id", "entity_id", "entity_type", "team_role"),
        live_index("idx_team_assignments_entity", "entity_type", "entity_id"),
        live_index("idx_team_assignments_user", "user_id"),
    )
