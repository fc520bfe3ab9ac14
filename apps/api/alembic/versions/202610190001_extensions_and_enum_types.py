"""extensions and enum types

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
from sqlalchemy.dialects import postgresql


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

ENUM_TYPES: dict[str, tuple[str, ...]] = {
    "status_type": ("active", "inactive", "pending", "suspended", "archived", "expired", "revoked"),
    "gender": ("male", "female", "non_binary", "other", "prefer_not_to_say"),
    "entity_type": ("user_profile", "crm_lead", "crm_contact", "crm_opportunity", "crm_referral", "system"),
    "role_type": (
        "super_admin",
        "system_admin",
        "sales_director",
        "marketing_director",
        "sales_manager",
        "marketing_manager",
        "senior_sales",
        "senior_marketing",
        "sales_rep",
        "marketing_specialist",
        "account_manager",
        "support_specialist",
        "standard_user",
        "guest_user",
        "standard",
        "custom",
    ),
    "onboarding_status": ("pending", "in_progress", "completed", "skipped"),
    "security_level": ("standard", "high", "critical"),
    "theme": ("system", "light", "dark"),
    "display_density": ("compact", "comfortable", "spacious"),
    "date_format": ("YYYY-MM-DD", "MM/DD/YYYY", "DD/MM/YYYY"),
    "time_format": ("12h", "24h"),
    "notification_frequency": ("instant", "hourly", "daily", "weekly"),
    "profile_visibility": ("public", "private", "contacts"),
    "two_factor_method": ("authenticator", "sms", "email"),
    "email_type": ("personal", "work", "backup", "recovery", "notification", "other"),
    "email_subscription_status": ("opted_in", "opted_out", "bounced", "complained", "unsubscribed"),
    "bounce_status": ("none", "soft", "hard", "complaint"),
    "phone_type": ("mobile", "home", "work", "fax", "pager", "other"),
    "contact_method": ("sms", "voice", "whatsapp"),
    "address_type": ("residential", "business", "shipping", "billing", "temporary", "other"),
    "address_validation_status": ("pending", "valid", "invalid", "needs_review"),
    "assignment_type": ("manual", "automatic", "inherited", "temporary"),
    "grant_type": ("explicit", "inherited", "temporary", "conditional"),
    "condition_type": ("unrestricted", "time_based", "resource_based", "custom"),
    "delegation_status": ("pending", "active", "suspended", "revoked", "expired", "cancelled", "completed"),
    "delegation_type": ("temporary", "permanent", "emergency", "scheduled"),
    "compliance_status": ("compliant", "pending_review", "non_compliant", "expired"),
    "audit_action": (
        "create",
        "update",
        "delete",
        "soft_delete",
        "restore",
        "login",
        "logout",
        "login_failed",
        "role_assigned",
        "role_revoked",
        "permission_granted",
        "permission_revoked",
        "export",
        "other",
    ),
    "audit_category": ("user", "data", "security", "system", "compliance"),
    "audit_status": ("pending", "completed", "failed"),
    "data_sensitivity": ("public", "internal", "confidential", "restricted"),
    "activity_type": ("login", "logout", "view", "create", "update", "delete", "search", "export", "other"),
    "security_severity": ("low", "medium", "high", "critical"),
    "customer_type": ("prospect", "customer", "partner", "vendor", "competitor", "other"),
    "customer_status": ("active", "inactive", "churned", "blocked"),
    "customer_segment": ("enterprise", "mid_market", "smb", "consumer"),
    "communication_channel": ("email", "phone", "sms", "chat", "in_person", "social"),
    "lead_status": ("new", "contacted", "qualified", "unqualified", "nurturing", "converted", "lost"),
    "lead_source": (
        "website",
        "referral",
        "social_media",
        "email_campaign",
        "cold_call",
        "trade_show",
        "partner",
        "advertisement",
        "other",
    ),
    "opportunity_status": ("prospecting", "qualification", "needs_analysis", "proposal", "negotiation", "won", "lost"),
    "quote_status": ("draft", "sent", "viewed", "accepted", "rejected", "expired", "revised"),
    "job_status": ("scheduled", "in_progress", "on_hold", "completed", "cancelled"),
    "job_priority": ("low", "medium", "high", "urgent"),
    "billing_status": ("pending", "invoiced", "paid", "overdue", "written_off"),
    "referral_status": ("pending", "contacted", "qualified", "converted", "rejected", "expired"),
    "reward_status": ("pending", "approved", "paid", "cancelled"),
    "product_type": ("physical", "digital", "service", "subscription", "bundle"),
    "product_status": ("draft", "active", "inactive", "discontinued"),
    "time_unit": ("minutes", "hours", "days", "weeks", "months"),
    "pipeline_type": ("sales", "lead", "service", "support"),
    "pipeline_status": ("active", "inactive", "archived"),
    "communication_type": ("email", "call", "meeting", "chat", "note", "sms", "social"),
    "communication_status": ("pending", "scheduled", "sent", "delivered", "completed", "failed", "cancelled"),
    "communication_direction": ("inbound", "outbound", "internal"),
    "priority_level": ("low", "normal", "high", "urgent"),
    "document_type": (
        "contract",
        "proposal",
        "invoice",
        "quote",
        "report",
        "presentation",
        "spreadsheet",
        "image",
        "other",
    ),
    "document_status": ("draft", "review", "approved", "published", "archived"),
    "access_level": ("public", "internal", "confidential", "restricted", "private"),
    "approval_status": ("not_required", "pending", "approved", "rejected"),
    "relationship_status": ("active", "inactive", "pending", "ended"),
    "relationship_strength": ("weak", "moderate", "strong"),
    "relationship_direction": ("unidirectional", "bidirectional"),
    "content_format": ("plain_text", "markdown", "html", "rich_text"),
    "board_type": ("kanban", "scrum", "project", "workflow", "timeline", "custom"),
    "list_type": ("backlog", "todo", "in_progress", "review", "done", "archive", "custom"),
    "task_type": (
        "story",
        "bug",
        "feature",
        "improvement",
        "maintenance",
        "research",
        "documentation",
        "review",
        "meeting",
        "other",
    ),
    "task_priority": ("critical", "high", "medium", "low", "none"),
    "task_status": ("backlog", "planned", "in_progress", "blocked", "review", "testing", "completed", "cancelled"),
    "assignment_role": ("owner", "assignee", "reviewer", "observer", "contributor"),
    "dependency_type": (
        "finish_to_start",
        "start_to_start",
        "finish_to_finish",
        "start_to_finish",
        "blocks",
        "is_blocked_by",
    ),
    "location_type": ("warehouse", "store", "transit", "supplier", "customer", "repair", "disposal"),
    "inventory_transaction_type": ("purchase", "sale", "transfer", "return", "adjustment", "scrap", "production"),
    "quality_status": ("available", "quarantine", "damaged", "expired"),
    "valuation_method": ("fifo", "lifo", "avg_cost", "specific", "standard"),
    "purchase_order_status": ("draft", "pending", "approved", "ordered", "partial", "complete", "cancelled"),
    "account_type": ("asset", "liability", "equity", "revenue", "expense"),
    "journal_entry_type": ("standard", "adjustment", "closing", "reversing"),
    "posting_status": ("draft", "posted", "voided"),
    "debit_credit": ("debit", "credit"),
    "payment_method": ("cash", "check", "credit_card", "bank_transfer", "ach", "wire", "other"),
    "payment_status": ("pending", "completed", "failed", "cancelled", "refunded"),
    "currency": ("USD", "EUR", "GBP", "CAD", "AUD", "JPY", "INR"),
    "sync_status": ("pending", "synced", "failed", "skipped"),
    "sync_type": ("full", "incremental", "manual"),
    "external_system": ("xero", "quickbooks", "sage", "netsuite"),
}


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name != "postgresql":
        return
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")
    op.execute("CREATE EXTENSION IF NOT EXISTS pg_trgm")
    for name, values in ENUM_TYPES.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name != "postgresql":
        return
    for name in reversed(list(ENUM_TYPES)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
