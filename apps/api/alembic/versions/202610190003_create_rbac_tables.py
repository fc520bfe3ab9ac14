"""create rbac tables

Revision ID: 202610190003
Revises: 202610190002
Create Date: 2026-10-19 09:20:00
"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "202610190003"
down_revision: str | None = "202610190002"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

LIVE = "deleted_at IS NULL"
JSONB = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
APPROVAL_RULE = (
    "(NOT requires_approval AND approved_at IS NULL AND approved_by IS NULL) OR "
    "(requires_approval AND ("
    "(status != 'active' AND approved_at IS NULL AND approved_by IS NULL) OR "
    "(status = 'active' AND approved_at IS NOT NULL AND approved_by IS NOT NULL)))"
)


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


def _live_index(name: str, table: str, columns: list[str], *, unique: bool = False, where: str | None = None) -> None:
    predicate = LIVE if where is None else f"{where} AND {LIVE}"
    op.create_index(
        name,
        table,
        columns,
        unique=unique,
        postgresql_where=sa.text(predicate),
        sqlite_where=sa.text(predicate),
    )


def _grant_window_columns() -> list[sa.Column]:
    return [
        sa.Column("status", _enum("status_type"), nullable=False),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("requires_mfa", sa.Boolean(), nullable=False),
        sa.Column("requires_approval", sa.Boolean(), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.Uuid(), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False),
        sa.Column("ip_restriction", JSONB, nullable=False),
        sa.Column("time_restriction", JSONB, nullable=False),
        sa.Column("compliance_status", _enum("compliance_status"), nullable=False),
        sa.Column("last_review_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_review_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
    ]


def _grant_window_constraints() -> list[sa.SchemaItem]:
    return [
        sa.CheckConstraint("valid_until IS NULL OR valid_until > valid_from", name="valid_validity_period"),
        sa.CheckConstraint(
            "next_review_date IS NULL OR last_review_date IS NULL OR next_review_date > last_review_date",
            name="valid_review_dates",
        ),
        sa.CheckConstraint(APPROVAL_RULE, name="valid_approval"),
        sa.CheckConstraint("usage_count >= 0", name="valid_usage"),
    ]


def upgrade() -> None:
    op.create_table(
        "roles",
        *_audited_columns(),
        sa.Column("name", sa.String(50), nullable=False),
        sa.Column("slug", sa.String(64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", _enum("role_type"), nullable=False),
        sa.Column("is_system", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("permissions", JSONB, nullable=False),
        sa.Column("allowed_resources", JSONB, nullable=False),
        sa.Column("denied_resources", JSONB, nullable=False),
        sa.Column("max_session_duration", sa.Interval(), nullable=False),
        sa.Column("parent_role_id", sa.Uuid(), nullable=True),
        sa.Column("inheritance_enabled", sa.Boolean(), nullable=False),
        sa.Column("max_users", sa.Integer(), nullable=True),
        sa.Column("concurrent_session_limit", sa.Integer(), nullable=False),
        sa.Column("ip_whitelist", JSONB, nullable=False),
        sa.Column("requires_mfa", sa.Boolean(), nullable=False),
        sa.Column("password_policy", JSONB, nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["parent_role_id"], ["roles.id"]),
        sa.CheckConstraint("length(name) BETWEEN 2 AND 50", name="valid_name"),
        sa.CheckConstraint("description IS NULL OR length(description) <= 500", name="valid_description"),
        sa.CheckConstraint("priority >= 0", name="valid_priority"),
        sa.CheckConstraint("max_users IS NULL OR max_users > 0", name="valid_max_users"),
        sa.CheckConstraint("concurrent_session_limit > 0", name="valid_concurrent_sessions"),
        sa.CheckConstraint("NOT is_default OR (is_active AND NOT is_system)", name="valid_default_role"),
        sa.CheckConstraint("parent_role_id IS NULL OR parent_role_id != id", name="valid_parent_role"),
    )
    _live_index("idx_roles_name", "roles", ["name"], unique=True)
    _live_index("idx_roles_slug", "roles", ["slug"], unique=True)
    _live_index("idx_roles_type", "roles", ["type"])
    _live_index("idx_roles_parent", "roles", ["parent_role_id"])
    _live_index("idx_roles_active", "roles", ["is_active"])

    op.create_table(
        "permissions",
        *_audited_columns(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("subcategory", sa.String(50), nullable=True),
        sa.Column("resource_type", sa.String(50), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("is_system", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_sensitive", sa.Boolean(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("required_roles", JSONB, nullable=False),
        sa.Column("excluded_roles", JSONB, nullable=False),
        sa.Column("requires_mfa", sa.Boolean(), nullable=False),
        sa.Column("requires_approval", sa.Boolean(), nullable=False),
        sa.Column("rate_limit", sa.Integer(), nullable=True),
        sa.Column("cooldown_period", sa.Interval(), nullable=True),
        sa.Column("time_restrictions", JSONB, nullable=False),
        sa.Column("conditions", JSONB, nullable=False),
        sa.Column("validation_rules", JSONB, nullable=False),
        sa.Column("dependent_permissions", JSONB, nullable=False),
        sa.Column("conflicting_permissions", JSONB, nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.CheckConstraint("length(name) BETWEEN 3 AND 100", name="valid_name"),
        sa.CheckConstraint("length(category) BETWEEN 2 AND 50", name="valid_category"),
        sa.CheckConstraint("length(resource_type) BETWEEN 2 AND 50", name="valid_resource_type"),
        sa.CheckConstraint("length(action_type) BETWEEN 2 AND 50", name="valid_action_type"),
        sa.CheckConstraint("priority >= 0", name="valid_priority"),
        sa.CheckConstraint("rate_limit IS NULL OR rate_limit > 0", name="valid_rate_limit"),
        sa.CheckConstraint(r"name ~ '^[a-z_]+(\.[a-z_:*]+)+$'", name="valid_name_format").ddl_if(dialect="postgresql"),
    )
    _live_index("idx_permissions_name", "permissions", ["name"], unique=True)
    _live_index("idx_permissions_slug", "permissions", ["slug"], unique=True)
    _live_index("idx_permissions_category", "permissions", ["category"])
    _live_index("idx_permissions_resource_action", "permissions", ["resource_type", "action_type"])

    op.create_table(
        "role_permissions",
        *_audited_columns(),
        *_grant_window_columns(),
        sa.Column("role_id", sa.Uuid(), nullable=False),
        sa.Column("permission_id", sa.Uuid(), nullable=False),
        sa.Column("grant_type", _enum("grant_type"), nullable=False),
        sa.Column("condition_type", _enum("condition_type"), nullable=False),
        sa.Column("condition_expression", sa.Text(), nullable=True),
        sa.Column("condition_parameters", JSONB, nullable=False),
        sa.Column("max_usage_count", sa.Integer(), nullable=True),
        sa.Column("current_usage_count", sa.Integer(), nullable=False),
        sa.Column("cooldown_period", sa.Interval(), nullable=True),
        sa.Column("last_reset_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resource_restriction", JSONB, nullable=False),
        sa.Column("review_notes", sa.Text(), nullable=True),
        *_audited_constraints(),
        *_grant_window_constraints(),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.ForeignKeyConstraint(["permission_id"], ["permissions.id"]),
        sa.CheckConstraint(
            "max_usage_count IS NULL OR (current_usage_count >= 0 AND current_usage_count <= max_usage_count)",
            name="valid_usage_count",
        ),
    )
    _live_index(
        "idx_role_permissions_role_permission",
        "role_permissions",
        ["role_id", "permission_id"],
        unique=True,
    )
    _live_index("idx_role_permissions_role", "role_permissions", ["role_id"])
    _live_index("idx_role_permissions_permission", "role_permissions", ["permission_id"])

    op.create_table(
        "user_roles",
        *_audited_columns(),
        *_grant_window_columns(),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("role_id", sa.Uuid(), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False),
        sa.Column("is_system_assigned", sa.Boolean(), nullable=False),
        sa.Column("assignment_type", _enum("assignment_type"), nullable=False),
        *_audited_constraints(),
        *_grant_window_constraints(),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
    )
    _live_index("idx_user_roles_user_role", "user_roles", ["user_id", "role_id"], unique=True)
    _live_index("idx_user_roles_primary", "user_roles", ["user_id"], unique=True, where="is_primary")
    _live_index("idx_user_roles_user", "user_roles", ["user_id"])
    _live_index("idx_user_roles_role", "user_roles", ["role_id"])
    _live_index("idx_user_roles_validity", "user_roles", ["valid_from", "valid_until"])

    op.create_table(
        "role_delegations",
        *_audited_columns(),
        sa.Column("delegator_id", sa.Uuid(), nullable=False),
        sa.Column("delegate_id", sa.Uuid(), nullable=False),
        sa.Column("role_id", sa.Uuid(), nullable=False),
        sa.Column("status", _enum("delegation_status"), nullable=False),
        sa.Column("delegation_type", _enum("delegation_type"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("requires_approval", sa.Boolean(), nullable=False),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.Uuid(), nullable=True),
        sa.Column("delegated_permissions", JSONB, nullable=False),
        sa.Column("excluded_permissions", JSONB, nullable=False),
        sa.Column("resource_restrictions", JSONB, nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by", sa.Uuid(), nullable=True),
        sa.Column("revocation_reason", sa.Text(), nullable=True),
        sa.Column("auto_revoke_conditions", JSONB, nullable=False),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("usage_count", sa.Integer(), nullable=False),
        sa.Column("max_usage_count", sa.Integer(), nullable=True),
        sa.Column("ip_restriction", JSONB, nullable=False),
        sa.Column("time_restriction", JSONB, nullable=False),
        sa.Column("compliance_status", _enum("compliance_status"), nullable=False),
        sa.Column("last_review_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_review_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["delegator_id"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["delegate_id"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.CheckConstraint("delegator_id != delegate_id", name="no_self_delegation"),
        sa.CheckConstraint("ends_at IS NULL OR ends_at > starts_at", name="valid_delegation_period"),
        sa.CheckConstraint(
            "next_review_date IS NULL OR last_review_date IS NULL OR next_review_date > last_review_date",
            name="valid_review_dates",
        ),
        sa.CheckConstraint(APPROVAL_RULE, name="valid_approval"),
        sa.CheckConstraint(
            "(revoked_at IS NULL AND revoked_by IS NULL AND revocation_reason IS NULL) OR "
            "(revoked_at IS NOT NULL AND revoked_by IS NOT NULL AND revocation_reason IS NOT NULL)",
            name="valid_revocation",
        ),
        sa.CheckConstraint(
            "max_usage_count IS NULL OR (usage_count >= 0 AND usage_count <= max_usage_count)",
            name="valid_usage_count",
        ),
    )
    _live_index(
        "idx_role_delegations_unique",
        "role_delegations",
        ["delegator_id", "delegate_id", "role_id"],
        unique=True,
    )
    _live_index("idx_role_delegations_delegator", "role_delegations", ["delegator_id"])
    _live_index("idx_role_delegations_delegate", "role_delegations", ["delegate_id"])
    _live_index("idx_role_delegations_role", "role_delegations", ["role_id"])
    _live_index("idx_role_delegations_status", "role_delegations", ["status"])
    _live_index("idx_role_delegations_validity", "role_delegations", ["starts_at", "ends_at"])

    op.create_table(
        "team_assignments",
        *_audited_columns(),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("team_role", _enum("assignment_role"), nullable=False),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
        sa.CheckConstraint("ends_at IS NULL OR ends_at > assigned_at", name="valid_assignment_period"),
    )
    _live_index(
        "idx_team_assignments_unique",
        "team_assignments",
        ["user_id", "entity_id", "entity_type", "team_role"],
        unique=True,
    )
    _live_index("idx_team_assignments_entity", "team_assignments", ["entity_type", "entity_id"])
    _live_index("idx_team_assignments_user", "team_assignments", ["user_id"])


def downgrade() -> None:
    for table in (
        "team_assignments",
        "role_delegations",
        "user_roles",
        "role_permissions",
        "permissions",
        "roles",
    ):
        op.drop_table(table)
