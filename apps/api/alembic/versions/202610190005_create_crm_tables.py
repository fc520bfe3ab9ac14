"""create crm tables

Revision ID: 202610190005
Revises: 202610190004
Create Date: 2026-10-19 09:40:00
"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "202610190005"
down_revision: str | None = "202610190004"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

LIVE = "deleted_at IS NULL"
JSONB = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
MONEY = sa.Numeric(15, 2)
NOTE_ENTITY_TYPES = ("contact", "company", "opportunity", "lead", "product", "quote", "job")


def _enum(name: str) -> sa.types.TypeEngine:
    return sa.Text().with_variant(postgresql.ENUM(name=name, create_type=False), "postgresql")


def _pg_check(sqltext: str, name: str) -> sa.CheckConstraint:
    return sa.CheckConstraint(sqltext, name=name).ddl_if(dialect="postgresql")


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


def upgrade() -> None:
    op.create_table(
        "crm_contacts",
        *_audited_columns(),
        sa.Column("first_name", sa.String(100), nullable=True),
        sa.Column("last_name", sa.String(100), nullable=True),
        sa.Column(
            "full_name",
            sa.String(255),
            sa.Computed(
                "CASE WHEN first_name IS NULL AND last_name IS NULL THEN NULL "
                "WHEN first_name IS NULL THEN last_name "
                "WHEN last_name IS NULL THEN first_name "
                "ELSE first_name || ' ' || last_name END",
                persisted=True,
            ),
            nullable=True,
        ),
        sa.Column("company_name", sa.String(255), nullable=True),
        sa.Column("job_title", sa.String(255), nullable=True),
        sa.Column("department", sa.String(255), nullable=True),
        sa.Column("industry", sa.String(255), nullable=True),
        sa.Column("customer_type", _enum("customer_type"), nullable=False),
        sa.Column("customer_status", _enum("customer_status"), nullable=False),
        sa.Column("customer_segment", _enum("customer_segment"), nullable=True),
        sa.Column("lead_source", _enum("lead_source"), nullable=True),
        sa.Column("assigned_to", sa.Uuid(), nullable=True),
        sa.Column("account_manager", sa.Uuid(), nullable=True),
        sa.Column("parent_company_id", sa.Uuid(), nullable=True),
        sa.Column("preferred_contact_method", _enum("communication_channel"), nullable=True),
        sa.Column("first_contact_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_contact_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_follow_up_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("linkedin_url", sa.Text(), nullable=True),
        sa.Column("twitter_url", sa.Text(), nullable=True),
        sa.Column("website_url", sa.Text(), nullable=True),
        sa.Column("total_revenue", MONEY, nullable=True),
        sa.Column("lifetime_value", MONEY, nullable=True),
        sa.Column("credit_limit", MONEY, nullable=True),
        sa.Column("payment_terms", sa.Integer(), nullable=True),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["parent_company_id"], ["crm_contacts.id"]),
        sa.CheckConstraint("first_name IS NOT NULL OR last_name IS NOT NULL", name="valid_name"),
        sa.CheckConstraint(
            "(first_contact_date IS NULL OR last_contact_date IS NULL OR first_contact_date <= last_contact_date) AND "
            "(last_contact_date IS NULL OR next_follow_up_date IS NULL OR last_contact_date <= next_follow_up_date)",
            name="valid_dates",
        ),
        sa.CheckConstraint(
            "(total_revenue IS NULL OR total_revenue >= 0) AND (lifetime_value IS NULL OR lifetime_value >= 0) AND "
            "(credit_limit IS NULL OR credit_limit >= 0) AND (payment_terms IS NULL OR payment_terms >= 0)",
            name="valid_metrics",
        ),
        _pg_check("linkedin_url IS NULL OR linkedin_url ~* '^https?://'", name="valid_linkedin_url"),
        _pg_check("website_url IS NULL OR website_url ~* '^https?://'", name="valid_website_url"),
    )
    _live_index("idx_crm_contacts_assigned_to", "crm_contacts", ["assigned_to"])
    _live_index("idx_crm_contacts_account_manager", "crm_contacts", ["account_manager"])
    _live_index("idx_crm_contacts_company", "crm_contacts", ["company_name"])
    _live_index("idx_crm_contacts_status", "crm_contacts", ["customer_status"])
    _live_index("idx_crm_contacts_follow_up", "crm_contacts", ["next_follow_up_date"])

    op.create_table(
        "crm_leads",
        *_audited_columns(),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("contact_id", sa.Uuid(), nullable=True),
        sa.Column("lead_status", _enum("lead_status"), nullable=False),
        sa.Column("lead_source", _enum("lead_source"), nullable=True),
        sa.Column("lead_score", sa.Integer(), nullable=True),
        sa.Column("assigned_to", sa.Uuid(), nullable=True),
        sa.Column("inquiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("qualification_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_contact_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_follow_up_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expected_close_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_value", MONEY, nullable=True),
        sa.Column("currency", _enum("currency"), nullable=False),
        sa.Column("utm_source", sa.String(255), nullable=True),
        sa.Column("utm_medium", sa.String(255), nullable=True),
        sa.Column("utm_campaign", sa.String(255), nullable=True),
        sa.Column("is_converted", sa.Boolean(), nullable=False),
        sa.Column("converted_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("converted_by", sa.Uuid(), nullable=True),
        sa.Column("converted_to_opportunity_id", sa.Uuid(), nullable=True),
        sa.Column("conversion_value", MONEY, nullable=True),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["contact_id"], ["crm_contacts.id"]),
        sa.CheckConstraint("lead_score IS NULL OR (lead_score >= 0 AND lead_score <= 100)", name="valid_lead_score"),
        sa.CheckConstraint(
            "(inquiry_date IS NULL OR qualification_date IS NULL OR inquiry_date <= qualification_date) AND "
            "(last_contact_date IS NULL OR next_follow_up_date IS NULL OR last_contact_date <= next_follow_up_date) AND "
            "(inquiry_date IS NULL OR expected_close_date IS NULL OR inquiry_date <= expected_close_date)",
            name="valid_dates",
        ),
        sa.CheckConstraint(
            "NOT is_converted OR (converted_date IS NOT NULL AND converted_by IS NOT NULL)",
            name="valid_conversion",
        ),
        sa.CheckConstraint("estimated_value IS NULL OR estimated_value >= 0", name="valid_estimated_value"),
    )
    _live_index("idx_crm_leads_assigned_to", "crm_leads", ["assigned_to"])
    _live_index("idx_crm_leads_status", "crm_leads", ["lead_status"])
    _live_index("idx_crm_leads_contact", "crm_leads", ["contact_id"])
    _live_index("idx_crm_leads_follow_up", "crm_leads", ["next_follow_up_date"])

    op.create_table(
        "crm_pipelines",
        *_audited_columns(),
        sa.Column("code", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("pipeline_type", _enum("pipeline_type"), nullable=False),
        sa.Column("status", _enum("pipeline_status"), nullable=False),
        sa.Column("stages", JSONB, nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.CheckConstraint("NOT (is_default AND deleted_at IS NOT NULL)", name="unique_default_pipeline"),
        _pg_check("jsonb_array_length(stages) > 0", name="valid_stages"),
        _pg_check("code ~ '^PIP-[0-9]{6}$'", name="valid_pipeline_code"),
    )
    _live_index("idx_crm_pipelines_code", "crm_pipelines", ["code"], unique=True)
    _live_index("idx_crm_pipelines_default", "crm_pipelines", ["pipeline_type"], unique=True, where="is_default")
    _live_index("idx_crm_pipelines_status", "crm_pipelines", ["status"])

    op.create_table(
        "crm_opportunities",
        *_audited_columns(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("contact_id", sa.Uuid(), nullable=False),
        sa.Column("lead_id", sa.Uuid(), nullable=True),
        sa.Column("pipeline_id", sa.Uuid(), nullable=True),
        sa.Column("stage_key", sa.String(64), nullable=True),
        sa.Column("opportunity_status", _enum("opportunity_status"), nullable=False),
        sa.Column("probability", sa.Integer(), nullable=False),
        sa.Column("win_reason", sa.Text(), nullable=True),
        sa.Column("loss_reason", sa.Text(), nullable=True),
        sa.Column("competitor", sa.String(255), nullable=True),
        sa.Column("currency", _enum("currency"), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column(
            "expected_revenue",
            MONEY,
            sa.Computed("amount * probability / 100.0", persisted=True),
            nullable=True,
        ),
        sa.Column("assigned_to", sa.Uuid(), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("close_date", sa.Date(), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_activity_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_step", sa.Text(), nullable=True),
        sa.Column("next_step_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("products", JSONB, nullable=False),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["contact_id"], ["crm_contacts.id"]),
        sa.ForeignKeyConstraint(["lead_id"], ["crm_leads.id"]),
        sa.ForeignKeyConstraint(["pipeline_id"], ["crm_pipelines.id"]),
        sa.CheckConstraint("probability >= 0 AND probability <= 100", name="valid_probability"),
        sa.CheckConstraint("amount >= 0", name="valid_amount"),
        sa.CheckConstraint(
            "(start_date IS NULL OR close_date IS NULL OR start_date <= close_date) AND "
            "(last_activity_date IS NULL OR next_step_date IS NULL OR last_activity_date <= next_step_date)",
            name="valid_dates",
        ),
        sa.CheckConstraint(
            "(opportunity_status != 'won' OR win_reason IS NOT NULL) AND "
            "(opportunity_status != 'lost' OR loss_reason IS NOT NULL)",
            name="valid_status_reason",
        ),
    )
    _live_index("idx_crm_opportunities_assigned_to", "crm_opportunities", ["assigned_to"])
    _live_index("idx_crm_opportunities_contact", "crm_opportunities", ["contact_id"])
    _live_index("idx_crm_opportunities_status", "crm_opportunities", ["opportunity_status"])
    _live_index("idx_crm_opportunities_close_date", "crm_opportunities", ["close_date"])

    op.create_table(
        "crm_quotes",
        *_audited_columns(),
        sa.Column("quote_number", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("contact_id", sa.Uuid(), nullable=False),
        sa.Column("opportunity_id", sa.Uuid(), nullable=True),
        sa.Column("quote_status", _enum("quote_status"), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("parent_quote_id", sa.Uuid(), nullable=True),
        sa.Column("currency", _enum("currency"), nullable=False),
        sa.Column("subtotal", MONEY, nullable=False),
        sa.Column("discount_amount", MONEY, nullable=True),
        sa.Column("tax_amount", MONEY, nullable=True),
        sa.Column(
            "total_amount",
            MONEY,
            sa.Computed("subtotal - COALESCE(discount_amount, 0) + COALESCE(tax_amount, 0)", persisted=True),
            nullable=True,
        ),
        sa.Column("line_items", JSONB, nullable=False),
        sa.Column("payment_terms", sa.Text(), nullable=True),
        sa.Column("delivery_terms", sa.Text(), nullable=True),
        sa.Column("validity_period", sa.Integer(), nullable=True),
        sa.Column("assigned_to", sa.Uuid(), nullable=True),
        sa.Column("issue_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acceptance_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["contact_id"], ["crm_contacts.id"]),
        sa.ForeignKeyConstraint(["opportunity_id"], ["crm_opportunities.id"]),
        sa.ForeignKeyConstraint(["parent_quote_id"], ["crm_quotes.id"]),
        sa.CheckConstraint(
            "subtotal >= 0 AND (discount_amount IS NULL OR discount_amount >= 0) AND "
            "(tax_amount IS NULL OR tax_amount >= 0)",
            name="valid_amounts",
        ),
        sa.CheckConstraint("version_number > 0", name="valid_version_number"),
        sa.CheckConstraint("validity_period IS NULL OR validity_period > 0", name="valid_validity_period"),
        sa.CheckConstraint(
            "(issue_date IS NULL OR expiry_date IS NULL OR issue_date <= expiry_date) AND "
            "(issue_date IS NULL OR acceptance_date IS NULL OR issue_date <= acceptance_date) AND "
            "(issue_date IS NULL OR rejection_date IS NULL OR issue_date <= rejection_date)",
            name="valid_dates",
        ),
        sa.CheckConstraint(
            "(quote_status != 'accepted' OR acceptance_date IS NOT NULL) AND "
            "(quote_status != 'rejected' OR rejection_date IS NOT NULL)",
            name="valid_status_dates",
        ),
    )
    _live_index("idx_crm_quotes_number", "crm_quotes", ["quote_number"], unique=True)
    _live_index("idx_crm_quotes_contact", "crm_quotes", ["contact_id"])
    _live_index("idx_crm_quotes_opportunity", "crm_quotes", ["opportunity_id"])
    _live_index("idx_crm_quotes_status", "crm_quotes", ["quote_status"])

    op.create_table(
        "crm_jobs",
        *_audited_columns(),
        sa.Column("job_number", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("contact_id", sa.Uuid(), nullable=False),
        sa.Column("opportunity_id", sa.Uuid(), nullable=True),
        sa.Column("quote_id", sa.Uuid(), nullable=True),
        sa.Column("status", _enum("job_status"), nullable=False),
        sa.Column("priority", _enum("job_priority"), nullable=False),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actual_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=True),
        sa.Column("location", JSONB, nullable=False),
        sa.Column("assigned_to", sa.Uuid(), nullable=True),
        sa.Column("team_members", JSONB, nullable=False),
        sa.Column("estimated_cost", MONEY, nullable=True),
        sa.Column("actual_cost", MONEY, nullable=True),
        sa.Column("currency", _enum("currency"), nullable=False),
        sa.Column("billing_status", _enum("billing_status"), nullable=False),
        sa.Column("completion_percentage", sa.Integer(), nullable=False),
        sa.Column("checklist", JSONB, nullable=False),
        sa.Column("milestones", JSONB, nullable=False),
        sa.Column("time_unit", _enum("time_unit"), nullable=False),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["contact_id"], ["crm_contacts.id"]),
        sa.ForeignKeyConstraint(["opportunity_id"], ["crm_opportunities.id"]),
        sa.ForeignKeyConstraint(["quote_id"], ["crm_quotes.id"]),
        sa.CheckConstraint("scheduled_end > scheduled_start", name="valid_schedule"),
        sa.CheckConstraint(
            "actual_end IS NULL OR (actual_start IS NOT NULL AND actual_end > actual_start)",
            name="valid_actual_time",
        ),
        sa.CheckConstraint("completion_percentage BETWEEN 0 AND 100", name="valid_completion"),
        sa.CheckConstraint(
            "(estimated_cost IS NULL OR estimated_cost >= 0) AND (actual_cost IS NULL OR actual_cost >= 0)",
            name="valid_costs",
        ),
        _pg_check("job_number ~ '^JOB-[0-9]{6}$'", name="valid_job_number"),
    )
    _live_index("idx_crm_jobs_number", "crm_jobs", ["job_number"], unique=True)
    _live_index("idx_crm_jobs_assigned_to", "crm_jobs", ["assigned_to"])
    _live_index("idx_crm_jobs_contact", "crm_jobs", ["contact_id"])
    _live_index("idx_crm_jobs_schedule", "crm_jobs", ["scheduled_start", "scheduled_end"])
    _live_index("idx_crm_jobs_status", "crm_jobs", ["status"])

    op.create_table(
        "crm_referrals",
        *_audited_columns(),
        sa.Column("referral_number", sa.String(20), nullable=False),
        sa.Column("referrer_id", sa.Uuid(), nullable=False),
        sa.Column("referee_id", sa.Uuid(), nullable=False),
        sa.Column("opportunity_id", sa.Uuid(), nullable=True),
        sa.Column("referral_type", sa.String(50), nullable=True),
        sa.Column("status", _enum("referral_status"), nullable=False),
        sa.Column("approval_status", _enum("approval_status"), nullable=False),
        sa.Column("reward_type", sa.String(50), nullable=True),
        sa.Column("reward_value", MONEY, nullable=True),
        sa.Column("reward_status", _enum("reward_status"), nullable=False),
        sa.Column("is_converted", sa.Boolean(), nullable=False),
        sa.Column("converted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("converted_by", sa.Uuid(), nullable=True),
        sa.Column("conversion_value", MONEY, nullable=True),
        sa.Column("parent_referral_id", sa.Uuid(), nullable=True),
        sa.Column("referral_level", sa.Integer(), nullable=False),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["referrer_id"], ["crm_contacts.id"]),
        sa.ForeignKeyConstraint(["referee_id"], ["crm_contacts.id"]),
        sa.ForeignKeyConstraint(["opportunity_id"], ["crm_opportunities.id"]),
        sa.ForeignKeyConstraint(["parent_referral_id"], ["crm_referrals.id"]),
        sa.CheckConstraint("referrer_id != referee_id", name="valid_referral"),
        sa.CheckConstraint(
            "NOT is_converted OR (converted_at IS NOT NULL AND converted_by IS NOT NULL)",
            name="valid_conversion",
        ),
        sa.CheckConstraint(
            "(reward_value IS NULL OR reward_value >= 0) AND (conversion_value IS NULL OR conversion_value >= 0)",
            name="valid_values",
        ),
        sa.CheckConstraint("referral_level > 0", name="valid_referral_level"),
        _pg_check("referral_number ~ '^REF-[0-9]{6}$'", name="valid_referral_number"),
    )
    _live_index("idx_crm_referrals_number", "crm_referrals", ["referral_number"], unique=True)
    _live_index("idx_crm_referrals_referrer", "crm_referrals", ["referrer_id"])
    _live_index("idx_crm_referrals_referee", "crm_referrals", ["referee_id"])
    _live_index("idx_crm_referrals_status", "crm_referrals", ["status"])

    op.create_table(
        "crm_products",
        *_audited_columns(),
        sa.Column("sku", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("product_type", _enum("product_type"), nullable=False),
        sa.Column("status", _enum("product_status"), nullable=False),
        sa.Column("category", sa.String(100), nullable=True),
        sa.Column("base_price", MONEY, nullable=False),
        sa.Column("cost_price", MONEY, nullable=True),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("currency", _enum("currency"), nullable=False),
        sa.Column("stock_quantity", sa.Integer(), nullable=True),
        sa.Column("low_stock_threshold", sa.Integer(), nullable=True),
        sa.Column("reorder_point", sa.Integer(), nullable=True),
        sa.Column("reorder_quantity", sa.Integer(), nullable=True),
        sa.Column("is_digital", sa.Boolean(), nullable=False),
        sa.Column("is_service", sa.Boolean(), nullable=False),
        sa.Column("service_duration", sa.Integer(), nullable=True),
        sa.Column("service_unit", _enum("time_unit"), nullable=True),
        sa.Column("view_count", sa.Integer(), nullable=False),
        sa.Column("purchase_count", sa.Integer(), nullable=False),
        sa.Column("rating_average", sa.Numeric(3, 2), nullable=True),
        sa.Column("review_count", sa.Integer(), nullable=False),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.CheckConstraint(
            "base_price >= 0 AND (cost_price IS NULL OR cost_price >= 0) AND (tax_rate IS NULL OR tax_rate >= 0)",
            name="valid_prices",
        ),
        sa.CheckConstraint(
            "(stock_quantity IS NULL OR stock_quantity >= 0) AND "
            "(low_stock_threshold IS NULL OR low_stock_threshold >= 0) AND "
            "(reorder_point IS NULL OR reorder_point >= 0) AND "
            "(reorder_quantity IS NULL OR reorder_quantity > 0)",
            name="valid_inventory",
        ),
        sa.CheckConstraint(
            "NOT is_service OR (service_duration IS NOT NULL AND service_unit IS NOT NULL)",
            name="valid_service",
        ),
        sa.CheckConstraint(
            "view_count >= 0 AND purchase_count >= 0 AND review_count >= 0 AND "
            "(rating_average IS NULL OR (rating_average >= 0 AND rating_average <= 5))",
            name="valid_metrics",
        ),
        _pg_check("sku ~ '^PRD-[0-9A-Z]{8}$'", name="valid_sku"),
    )
    _live_index("idx_crm_products_sku", "crm_products", ["sku"], unique=True)
    _live_index("idx_crm_products_status", "crm_products", ["status"])
    _live_index("idx_crm_products_category", "crm_products", ["category"])

    op.create_table(
        "crm_communications",
        *_audited_columns(),
        sa.Column("communication_number", sa.String(20), nullable=False),
        sa.Column("subject", sa.String(255), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("communication_type", _enum("communication_type"), nullable=False),
        sa.Column("status", _enum("communication_status"), nullable=False),
        sa.Column("priority", _enum("priority_level"), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("direction", _enum("communication_direction"), nullable=False),
        sa.Column("channel", _enum("communication_channel"), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("from_contact_id", sa.Uuid(), nullable=True),
        sa.Column("to_contacts", JSONB, nullable=False),
        sa.Column("assigned_to", sa.Uuid(), nullable=True),
        sa.Column("requires_followup", sa.Boolean(), nullable=False),
        sa.Column("followup_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sentiment_score", sa.Numeric(3, 2), nullable=True),
        sa.Column("response_time", sa.Integer(), nullable=True),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["from_contact_id"], ["crm_contacts.id"]),
        sa.CheckConstraint("duration IS NULL OR duration >= 0", name="valid_duration"),
        sa.CheckConstraint("start_time IS NULL OR end_time IS NULL OR end_time >= start_time", name="valid_dates"),
        sa.CheckConstraint(
            "sentiment_score IS NULL OR (sentiment_score >= -1 AND sentiment_score <= 1)",
            name="valid_sentiment",
        ),
        sa.CheckConstraint("response_time IS NULL OR response_time >= 0", name="valid_response_time"),
        sa.CheckConstraint("NOT requires_followup OR followup_date IS NOT NULL", name="valid_followup"),
    )
    _live_index("idx_crm_communications_number", "crm_communications", ["communication_number"], unique=True)
    _live_index("idx_crm_communications_entity", "crm_communications", ["entity_id", "entity_type"])
    _live_index("idx_crm_communications_assigned_to", "crm_communications", ["assigned_to"])
    _live_index("idx_crm_communications_followup", "crm_communications", ["followup_date"])

    op.create_table(
        "crm_documents",
        *_audited_columns(),
        sa.Column("document_number", sa.String(20), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("document_type", _enum("document_type"), nullable=False),
        sa.Column("status", _enum("document_status"), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=True),
        sa.Column("file_type", sa.String(100), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("file_url", sa.Text(), nullable=True),
        sa.Column("storage_path", sa.Text(), nullable=True),
        sa.Column("page_count", sa.Integer(), nullable=True),
        sa.Column("parent_version_id", sa.Uuid(), nullable=True),
        sa.Column("version_number", sa.Integer(), nullable=True),
        sa.Column("is_latest_version", sa.Boolean(), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", sa.Uuid(), nullable=True),
        sa.Column("access_level", _enum("access_level"), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=True),
        sa.Column("shared_with", JSONB, nullable=False),
        sa.Column("retention_start_date", sa.Date(), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("view_count", sa.Integer(), nullable=False),
        sa.Column("download_count", sa.Integer(), nullable=False),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["parent_version_id"], ["crm_documents.id"]),
        sa.CheckConstraint("file_size IS NULL OR file_size >= 0", name="valid_file_size"),
        sa.CheckConstraint("page_count IS NULL OR page_count >= 0", name="valid_page_count"),
        sa.CheckConstraint("view_count >= 0 AND download_count >= 0", name="valid_counts"),
        sa.CheckConstraint(
            "retention_start_date IS NULL OR expiry_date IS NULL OR expiry_date >= retention_start_date",
            name="valid_dates",
        ),
        sa.CheckConstraint("parent_version_id IS NULL OR version_number IS NOT NULL", name="valid_version"),
    )
    _live_index("idx_crm_documents_number", "crm_documents", ["document_number"], unique=True)
    _live_index("idx_crm_documents_entity", "crm_documents", ["entity_id", "entity_type"])
    _live_index("idx_crm_documents_owner", "crm_documents", ["owner_id"])
    _live_index("idx_crm_documents_parent", "crm_documents", ["parent_version_id"])

    op.create_table(
        "crm_relationships",
        *_audited_columns(),
        sa.Column("relationship_number", sa.String(10), nullable=False),
        sa.Column("entity1_type", sa.String(50), nullable=False),
        sa.Column("entity1_id", sa.Uuid(), nullable=False),
        sa.Column("entity2_type", sa.String(50), nullable=False),
        sa.Column("entity2_id", sa.Uuid(), nullable=False),
        sa.Column("relationship_type", sa.String(50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", _enum("relationship_status"), nullable=False),
        sa.Column("strength", _enum("relationship_strength"), nullable=True),
        sa.Column("direction", _enum("relationship_direction"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("interaction_count", sa.Integer(), nullable=False),
        sa.Column("last_interaction_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("relationship_score", sa.Integer(), nullable=True),
        sa.Column("assigned_to", sa.Uuid(), nullable=True),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.CheckConstraint("entity1_type != entity2_type OR entity1_id != entity2_id", name="different_entities"),
        sa.CheckConstraint(
            "relationship_score IS NULL OR (relationship_score >= 0 AND relationship_score <= 100)",
            name="valid_relationship_score",
        ),
        sa.CheckConstraint("interaction_count >= 0", name="valid_interaction_count"),
        sa.CheckConstraint("start_date IS NULL OR end_date IS NULL OR end_date >= start_date", name="valid_dates"),
        _pg_check("relationship_number ~ '^REL-[0-9]{6}$'", name="valid_relationship_number"),
    )
    _live_index("idx_crm_relationships_number", "crm_relationships", ["relationship_number"], unique=True)
    _live_index("idx_crm_relationships_entity1", "crm_relationships", ["entity1_id", "entity1_type"])
    _live_index("idx_crm_relationships_entity2", "crm_relationships", ["entity2_id", "entity2_type"])

    op.create_table(
        "crm_notes",
        *_audited_columns(),
        sa.Column("note_number", sa.String(20), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("content_format", _enum("content_format"), nullable=False),
        sa.Column("is_private", sa.Boolean(), nullable=False),
        sa.Column("is_pinned", sa.Boolean(), nullable=False),
        sa.Column("is_archived", sa.Boolean(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=True),
        sa.Column("access_level", _enum("access_level"), nullable=False),
        sa.Column("shared_with", JSONB, nullable=False),
        sa.Column("parent_note_id", sa.Uuid(), nullable=True),
        sa.Column("tags", JSONB, nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["parent_note_id"], ["crm_notes.id"]),
        sa.CheckConstraint("priority IS NULL OR priority BETWEEN 1 AND 5", name="valid_priority"),
        sa.CheckConstraint(
            "entity_type IN (" + ", ".join(f"'{value}'" for value in NOTE_ENTITY_TYPES) + ")",
            name="valid_entity_types",
        ),
    )
    _live_index("idx_crm_notes_number", "crm_notes", ["note_number"], unique=True)
    _live_index("idx_crm_notes_entity", "crm_notes", ["entity_id", "entity_type"])
    _live_index("idx_crm_notes_pinned", "crm_notes", ["is_pinned"])


def downgrade() -> None:
    for table in (
        "crm_notes",
        "crm_relationships",
        "crm_documents",
        "crm_communications",
        "crm_products",
        "crm_referrals",
        "crm_jobs",
        "crm_quotes",
        "crm_opportunities",
        "crm_pipelines",
        "crm_leads",
        "crm_contacts",
    ):
        op.drop_table(table)
