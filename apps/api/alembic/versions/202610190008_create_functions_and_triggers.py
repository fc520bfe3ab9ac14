"""create row functions and triggers

Revision ID: 202610190008
Revises: 202610190007
Create Date: 2026-10-19 10:10:00
"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op


revision: str = "202610190008"
down_revision: str | None = "202610190007"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

AUDITED_TABLES = (
    "profiles",
    "user_preferences",
    "user_security_settings",
    "user_onboarding",
    "entity_emails",
    "entity_phones",
    "entity_addresses",
    "roles",
    "permissions",
    "role_permissions",
    "user_roles",
    "role_delegations",
    "team_assignments",
    "user_activities",
    "security_events",
    "compliance_logs",
    "crm_contacts",
    "crm_leads",
    "crm_pipelines",
    "crm_opportunities",
    "crm_quotes",
    "crm_jobs",
    "crm_referrals",
    "crm_products",
    "crm_communications",
    "crm_documents",
    "crm_relationships",
    "crm_notes",
    "task_boards",
    "task_lists",
    "tasks",
    "task_assignments",
    "task_dependencies",
    "task_comments",
    "task_time_entries",
    "inventory_locations",
    "inventory_items",
    "inventory_transactions",
    "purchase_orders",
    "purchase_order_items",
    "chart_of_accounts",
    "journal_entries",
    "journal_entry_lines",
    "payment_transactions",
    "account_mappings",
    "sync_logs",
)

# table -> (start columns, end columns); the first non-null column on each side wins
DURATION_TABLES = {
    "crm_jobs": (("actual_start", "scheduled_start"), ("actual_end", "scheduled_end")),
    "task_time_entries": (("start_time",), ("end_time",)),
}

FUNCTIONS = (
    """
    CREATE OR REPLACE FUNCTION update_timestamp()
    RETURNS TRIGGER
    LANGUAGE plpgsql
    AS $$
    BEGIN
        NEW.updated_at := GREATEST(clock_timestamp(), NEW.created_at);
        RETURN NEW;
    END;
    $$
    """,
    """
    CREATE OR REPLACE FUNCTION enforce_row_version()
    RETURNS TRIGGER
    LANGUAGE plpgsql
    AS $$
    BEGIN
        IF NEW.id IS DISTINCT FROM OLD.id THEN
            RAISE EXCEPTION 'modifying % id is not allowed', TG_TABLE_NAME;
        END IF;
        IF NEW.version = OLD.version THEN
            NEW.version := OLD.version + 1;
        ELSIF NEW.version IS DISTINCT FROM OLD.version + 1 THEN
            RAISE EXCEPTION 'version conflict on %.% (stored %, written %)',
                TG_TABLE_NAME, OLD.id, OLD.version, NEW.version
                USING ERRCODE = '40001';
        END IF;
        RETURN NEW;
    END;
    $$
    """,
    """
    CREATE OR REPLACE FUNCTION handle_soft_delete()
    RETURNS TRIGGER
    LANGUAGE plpgsql
    AS $$
    DECLARE
        actor uuid := COALESCE(
            NULLIF(current_setting('crmhub.actor_id', true), '')::uuid,
            '00000000-0000-0000-0000-000000000000'::uuid
        );
    BEGIN
        IF current_setting('crmhub.hard_delete', true) = 'on' THEN
            RETURN OLD;
        END IF;
        IF OLD.deleted_at IS NULL THEN
            EXECUTE format(
                'UPDATE %I.%I SET deleted_at = clock_timestamp(), deleted_by = $1, version = version + 1 WHERE id = $2',
                TG_TABLE_SCHEMA,
                TG_TABLE_NAME
            ) USING actor, OLD.id;
        END IF;
        RETURN NULL;
    END;
    $$
    """,
    """
    CREATE OR REPLACE FUNCTION stamp_deletion()
    RETURNS TRIGGER
    LANGUAGE plpgsql
    AS $$
    BEGIN
        IF NEW.deleted_at IS NULL THEN
            NEW.deleted_by := NULL;
        ELSIF OLD.deleted_at IS NULL THEN
            NEW.deleted_by := COALESCE(
                NEW.deleted_by,
                NULLIF(current_setting('crmhub.actor_id', true), '')::uuid,
                '00000000-0000-0000-0000-000000000000'::uuid
            );
        END IF;
        RETURN NEW;
    END;
    $$
    """,
    """
    CREATE OR REPLACE FUNCTION prevent_audit_log_change()
    RETURNS TRIGGER
    LANGUAGE plpgsql
    AS $$
    BEGIN
        IF TG_OP = 'DELETE' AND current_setting('crmhub.audit_purge', true) = 'on' THEN
            RETURN OLD;
        END IF;
        RAISE EXCEPTION 'audit_logs rows are append-only (% refused on %)', TG_OP, OLD.id;
    END;
    $$
    """,
)


def _duration_function(table: str, start_columns: tuple[str, ...], end_columns: tuple[str, ...]) -> str:
    started = "COALESCE(" + ", ".join(f"NEW.{column}" for column in start_columns) + ")"
    ended = "COALESCE(" + ", ".join(f"NEW.{column}" for column in end_columns) + ")"
    return f"""
    CREATE OR REPLACE FUNCTION {table}_duration()
    RETURNS TRIGGER
    LANGUAGE plpgsql
    AS $$
    BEGIN
        IF {started} IS NULL OR {ended} IS NULL THEN
            NEW.duration_minutes := NULL;
        ELSE
            NEW.duration_minutes := FLOOR(EXTRACT(EPOCH FROM ({ended} - {started})) / 60)::integer;
        END IF;
        RETURN NEW;
    END;
    $$
    """


def upgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return

    for statement in FUNCTIONS:
        op.execute(statement)

    for table in AUDITED_TABLES:
        op.execute(
            f"CREATE TRIGGER set_timestamp BEFORE UPDATE ON {table} "
            "FOR EACH ROW EXECUTE FUNCTION update_timestamp()"
        )
        op.execute(
            f"CREATE TRIGGER enforce_row_version BEFORE UPDATE ON {table} "
            "FOR EACH ROW EXECUTE FUNCTION enforce_row_version()"
        )
        op.execute(
            f"CREATE TRIGGER soft_delete BEFORE DELETE ON {table} "
            "FOR EACH ROW EXECUTE FUNCTION handle_soft_delete()"
        )
        op.execute(
            f"CREATE TRIGGER stamp_deletion BEFORE UPDATE ON {table} "
            "FOR EACH ROW WHEN (NEW.deleted_at IS DISTINCT FROM OLD.deleted_at) "
            "EXECUTE FUNCTION stamp_deletion()"
        )

    for table, (start_columns, end_columns) in DURATION_TABLES.items():
        op.execute(_duration_function(table, start_columns, end_columns))
        op.execute(
            f"CREATE TRIGGER derive_duration BEFORE INSERT OR UPDATE ON {table} "
            f"FOR EACH ROW EXECUTE FUNCTION {table}_duration()"
        )

    op.execute(
        "CREATE TRIGGER audit_logs_append_only BEFORE UPDATE OR DELETE ON audit_logs "
        "FOR EACH ROW EXECUTE FUNCTION prevent_audit_log_change()"
    )


def downgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute("DROP TRIGGER IF EXISTS audit_logs_append_only ON audit_logs")
    for table in DURATION_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS derive_duration ON {table}")
        op.execute(f"DROP FUNCTION IF EXISTS {table}_duration()")
    for table in AUDITED_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS stamp_deletion ON {table}")
        op.execute(f"DROP TRIGGER IF EXISTS soft_delete ON {table}")
        op.execute(f"DROP TRIGGER IF EXISTS enforce_row_version ON {table}")
        op.execute(f"DROP TRIGGER IF EXISTS set_timestamp ON {table}")
    for name in (
        "prevent_audit_log_change",
        "stamp_deletion",
        "handle_soft_delete",
        "enforce_row_version",
        "update_timestamp",
    ):
        op.execute(f"DROP FUNCTION IF EXISTS {name}()")
