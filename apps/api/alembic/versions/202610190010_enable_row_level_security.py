"""enable row level security policies on every audited table

The policies read the acting user from the transaction-local settings the
application publishes on every transaction (``crmhub.actor_id``,
``crmhub.is_admin``, ``crmhub.roles``). Table owners bypass RLS, so the rules
bind the application role and any reporting role granted direct access.

Revision ID: 202610190010
Revises: 202610190009
Create Date: 2026-10-19 10:30:00
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import NamedTuple

from alembic import op


revision: str = "202610190010"
down_revision: str | None = "202610190009"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

SALES_LEADERSHIP = ("sales_director", "sales_manager")
MARKETING_LEADERSHIP = ("marketing_director", "marketing_manager")
ACCOUNT_ROLES = (*SALES_LEADERSHIP, "account_manager")

OWN_PROFILES = "(SELECT p.id FROM profiles p WHERE p.user_id = crmhub_actor_id())"
ACTOR_OR_OWN_PROFILE = "{column} = crmhub_actor_id() OR {column} IN " + OWN_PROFILES
VISIBLE_TASKS = "(SELECT t.id FROM tasks t)"

# contact points follow the entity they hang off; the subqueries run under the caller's own policies
CONTACT_POINT_OWNER = " OR ".join(
    (
        f"(entity_type = 'user_profile' AND entity_id IN {OWN_PROFILES})",
        "(entity_type = 'crm_contact' AND entity_id IN (SELECT c.id FROM crm_contacts c))",
        "(entity_type = 'crm_lead' AND entity_id IN (SELECT l.id FROM crm_leads l))",
        "(entity_type = 'crm_opportunity' AND entity_id IN (SELECT o.id FROM crm_opportunities o))",
        "(entity_type = 'crm_referral' AND entity_id IN (SELECT r.id FROM crm_referrals r))",
    )
)


class TablePolicy(NamedTuple):
    owner_columns: tuple[str, ...] = ()
    roles: tuple[str, ...] = ()
    public_predicate: str | None = None
    shared_column: str | None = None
    team_entity_type: str | None = None
    # grants both read and write when it holds
    reach_predicate: str | None = None
    # replaces the owner/role write rule
    write_predicate: str | None = None


def _own_profile_rows(column: str) -> TablePolicy:
    return TablePolicy(reach_predicate=f"{column} IN {OWN_PROFILES}")


def _shared_rows() -> TablePolicy:
    return TablePolicy(public_predicate="true", write_predicate="true")


def _within_task(column: str = "task_id") -> TablePolicy:
    return TablePolicy(("created_by",), reach_predicate=f"{column} IN {VISIBLE_TASKS}")


POLICIES: dict[str, TablePolicy] = {
    "profiles": TablePolicy(("user_id", "id"), public_predicate="is_verified AND status = 'active'"),
    "user_preferences": _own_profile_rows("user_id"),
    "user_security_settings": _own_profile_rows("user_id"),
    "user_onboarding": _own_profile_rows("user_id"),
    "entity_emails": TablePolicy(("created_by",), public_predicate="is_public", reach_predicate=CONTACT_POINT_OWNER),
    "entity_phones": TablePolicy(("created_by",), public_predicate="is_public", reach_predicate=CONTACT_POINT_OWNER),
    "entity_addresses": TablePolicy(
        ("created_by",), public_predicate="is_public", reach_predicate=CONTACT_POINT_OWNER
    ),
    "roles": TablePolicy(public_predicate="true", write_predicate="false"),
    "permissions": TablePolicy(public_predicate="true", write_predicate="false"),
    "role_permissions": TablePolicy(public_predicate="true", write_predicate="false"),
    "user_roles": TablePolicy(
        public_predicate=ACTOR_OR_OWN_PROFILE.format(column="user_id"),
        write_predicate=f"is_system_assigned AND user_id IN {OWN_PROFILES}",
    ),
    "role_delegations": TablePolicy(
        reach_predicate=" OR ".join(
            (ACTOR_OR_OWN_PROFILE.format(column="delegator_id"), ACTOR_OR_OWN_PROFILE.format(column="delegate_id"))
        ),
    ),
    "team_assignments": TablePolicy(
        ("created_by",),
        (*SALES_LEADERSHIP, "support_specialist"),
        public_predicate=ACTOR_OR_OWN_PROFILE.format(column="user_id"),
    ),
    "user_activities": TablePolicy(public_predicate=f"user_id IN {OWN_PROFILES}", write_predicate="true"),
    "security_events": TablePolicy(
        public_predicate=ACTOR_OR_OWN_PROFILE.format(column="user_id"), write_predicate="true"
    ),
    "compliance_logs": TablePolicy(("created_by", "assessed_by"), write_predicate="true"),
    "crm_contacts": TablePolicy(("assigned_to", "account_manager", "created_by"), ACCOUNT_ROLES),
    "crm_leads": TablePolicy(("assigned_to", "created_by"), (*SALES_LEADERSHIP, *MARKETING_LEADERSHIP)),
    "crm_opportunities": TablePolicy(
        ("assigned_to", "created_by"), SALES_LEADERSHIP, team_entity_type="crm_opportunity"
    ),
    "crm_quotes": TablePolicy(("assigned_to", "created_by"), SALES_LEADERSHIP),
    "crm_jobs": TablePolicy(("assigned_to", "created_by"), ("support_specialist",), team_entity_type="crm_job"),
    "crm_referrals": TablePolicy(("created_by",), (*MARKETING_LEADERSHIP, *SALES_LEADERSHIP)),
    "crm_products": TablePolicy(("created_by",), SALES_LEADERSHIP, public_predicate="status = 'active'"),
    "crm_pipelines": TablePolicy(("owner_id", "created_by"), SALES_LEADERSHIP, public_predicate="status = 'active'"),
    "crm_communications": TablePolicy(("assigned_to", "created_by"), (*SALES_LEADERSHIP, "support_specialist")),
    "crm_documents": TablePolicy(
        ("owner_id", "created_by"), public_predicate="access_level = 'public'", shared_column="shared_with"
    ),
    "crm_relationships": TablePolicy(("assigned_to", "created_by"), ACCOUNT_ROLES),
    "crm_notes": TablePolicy(
        ("created_by",),
        public_predicate="access_level = 'public' AND NOT is_private",
        shared_column="shared_with",
    ),
    "task_boards": TablePolicy(
        ("owner_id",), public_predicate="is_public OR access_level = 'public'", shared_column="shared_with"
    ),
    "task_lists": TablePolicy(("created_by",), reach_predicate="board_id IN (SELECT b.id FROM task_boards b)"),
    # assignments must not read tasks back, tasks already read them
    "tasks": TablePolicy(
        ("created_by",),
        reach_predicate=(
            "list_id IN (SELECT l.id FROM task_lists l) OR id IN (SELECT a.task_id FROM task_assignments a "
            f"WHERE a.deleted_at IS NULL AND ({ACTOR_OR_OWN_PROFILE.format(column='a.assignee_id')}))"
        ),
    ),
    "task_assignments": TablePolicy(("created_by",), reach_predicate=ACTOR_OR_OWN_PROFILE.format(column="assignee_id")),
    "task_dependencies": _within_task("predecessor_id"),
    "task_comments": _within_task(),
    "task_time_entries": TablePolicy(("user_id", "created_by"), reach_predicate=f"task_id IN {VISIBLE_TASKS}"),
    "inventory_locations": _shared_rows(),
    "inventory_items": _shared_rows(),
    "inventory_transactions": _shared_rows(),
    "purchase_orders": _shared_rows(),
    "purchase_order_items": _shared_rows(),
    "chart_of_accounts": _shared_rows(),
    "journal_entries": _shared_rows(),
    "journal_entry_lines": _shared_rows(),
    "payment_transactions": _shared_rows(),
    "account_mappings": _shared_rows(),
    "sync_logs": _shared_rows(),
}

HELPERS = (
    """
    CREATE OR REPLACE FUNCTION crmhub_actor_id() RETURNS uuid
    LANGUAGE sql STABLE
    AS $$ SELECT NULLIF(current_setting('crmhub.actor_id', true), '')::uuid $$
    """,
    """
    CREATE OR REPLACE FUNCTION crmhub_is_admin() RETURNS boolean
    LANGUAGE sql STABLE
    AS $$ SELECT COALESCE(current_setting('crmhub.is_admin', true), 'off') = 'on' $$
    """,
    """
    CREATE OR REPLACE FUNCTION crmhub_has_role(candidates text[]) RETURNS boolean
    LANGUAGE sql STABLE
    AS $$
        SELECT string_to_array(NULLIF(current_setting('crmhub.roles', true), ''), ',') && candidates
    $$
    """,
)


def _role_rule(roles: tuple[str, ...]) -> str:
    listed = ", ".join(f"'{role}'" for role in roles)
    return f"COALESCE(crmhub_has_role(ARRAY[{listed}]), false)"


def _visibility(table: str, policy: TablePolicy) -> str:
    rules = ["crmhub_is_admin()"]
    if policy.roles:
        rules.append(_role_rule(policy.roles))
    rules.extend(f"{column} = crmhub_actor_id()" for column in policy.owner_columns)
    if policy.public_predicate:
        rules.append(f"({policy.public_predicate})")
    if policy.shared_column:
        rules.append(f"{policy.shared_column} ? crmhub_actor_id()::text")
    if policy.team_entity_type:
        rules.append(
            "EXISTS (SELECT 1 FROM team_assignments ta "
            f"WHERE ta.entity_type = '{policy.team_entity_type}' AND ta.entity_id = {table}.id "
            "AND ta.deleted_at IS NULL "
            f"AND ({ACTOR_OR_OWN_PROFILE.format(column='ta.user_id')}))"
        )
    if policy.reach_predicate:
        rules.append(f"({policy.reach_predicate})")
    return " OR ".join(rules)


def _write_check(policy: TablePolicy) -> str:
    rules = ["crmhub_is_admin()"]
    if policy.write_predicate is not None:
        rules.append(f"({policy.write_predicate})")
        return " OR ".join(rules)
    rules.extend(f"{column} = crmhub_actor_id()" for column in policy.owner_columns)
    if policy.roles:
        rules.append(_role_rule(policy.roles))
    if policy.reach_predicate:
        rules.append(f"({policy.reach_predicate})")
    return " OR ".join(rules)


def upgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return

    for statement in HELPERS:
        op.execute(statement)

    for table, policy in POLICIES.items():
        visible = _visibility(table, policy)
        op.execute(f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY")
        op.execute(f"CREATE POLICY {table}_select ON {table} FOR SELECT USING ({visible})")
        op.execute(f"CREATE POLICY {table}_insert ON {table} FOR INSERT WITH CHECK ({_write_check(policy)})")
        op.execute(
            f"CREATE POLICY {table}_update ON {table} FOR UPDATE "
            f"USING ({visible}) WITH CHECK ({_write_check(policy)})"
        )
        op.execute(f"CREATE POLICY {table}_no_hard_delete ON {table} FOR DELETE USING (false)")

    op.execute("ALTER TABLE audit_logs ENABLE ROW LEVEL SECURITY")
    op.execute("CREATE POLICY audit_logs_select ON audit_logs FOR SELECT USING (crmhub_is_admin())")
    op.execute("CREATE POLICY audit_logs_insert ON audit_logs FOR INSERT WITH CHECK (true)")
    op.execute(
        "CREATE POLICY audit_logs_purge ON audit_logs FOR DELETE "
        "USING (current_setting('crmhub.audit_purge', true) = 'on')"
    )


def downgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute("DROP POLICY IF EXISTS audit_logs_purge ON audit_logs")
    op.execute("DROP POLICY IF EXISTS audit_logs_insert ON audit_logs")
    op.execute("DROP POLICY IF EXISTS audit_logs_select ON audit_logs")
    op.execute("ALTER TABLE audit_logs DISABLE ROW LEVEL SECURITY")
    for table in POLICIES:
        for suffix in ("no_hard_delete", "update", "insert", "select"):
            op.execute(f"DROP POLICY IF EXISTS {table}_{suffix} ON {table}")
        op.execute(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY")
    for name in ("crmhub_has_role(text[])", "crmhub_is_admin()", "crmhub_actor_id()"):
        op.execute(f"DROP FUNCTION IF EXISTS {name}")
