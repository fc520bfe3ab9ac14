"""add weighted search vectors and gin indexes to crm tables

Revision ID: 202610190009
Revises: 202610190008
Create Date: 2026-10-19 10:20:00
"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op


revision: str = "202610190009"
down_revision: str | None = "202610190008"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

# Generated columns cannot read other generated columns, so contacts weigh the name parts.
SEARCH_COLUMNS: dict[str, dict[str, tuple[str, ...]]] = {
    "crm_contacts": {"A": ("first_name", "last_name", "company_name"), "B": ("job_title", "industry"), "C": ("notes",)},
    "crm_leads": {"A": ("title",), "B": ("description",), "C": ("notes",)},
    "crm_opportunities": {"A": ("name",), "B": ("description",), "C": ("notes",)},
    "crm_quotes": {"A": ("quote_number", "title"), "B": ("description",), "C": ("notes",)},
    "crm_jobs": {"A": ("job_number", "title"), "B": ("description",), "C": ("notes",)},
    "crm_referrals": {"A": ("referral_number",), "B": ("referral_type",), "C": ("notes",)},
    "crm_products": {"A": ("name", "sku"), "B": ("description",), "C": ()},
    "crm_pipelines": {"A": ("name", "code"), "B": ("description",), "C": ()},
    "crm_communications": {"A": ("subject",), "B": ("body",), "C": ("communication_number",)},
    "crm_documents": {"A": ("title", "document_number"), "B": ("description",), "C": ("file_name",)},
    "crm_relationships": {"A": ("relationship_number",), "B": ("relationship_type",), "C": ("description",)},
    "crm_notes": {"A": ("title",), "B": ("content",), "C": ("note_number",)},
}


def _vector_expression(weights: dict[str, tuple[str, ...]]) -> str:
    parts = [
        f"setweight(to_tsvector('english', coalesce({column}, '')), '{weight}')"
        for weight, columns in weights.items()
        for column in columns
    ]
    return " || ".join(parts)


def upgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return
    for table, weights in SEARCH_COLUMNS.items():
        op.execute(
            f"ALTER TABLE {table} ADD COLUMN search_vector tsvector "
            f"GENERATED ALWAYS AS ({_vector_expression(weights)}) STORED"
        )
        op.execute(f"CREATE INDEX idx_{table}_search ON {table} USING GIN (search_vector)")


def downgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return
    for table in SEARCH_COLUMNS:
        op.execute(f"DROP INDEX IF EXISTS idx_{table}_search")
        op.execute(f"ALTER TABLE {table} DROP COLUMN IF EXISTS search_vector")
