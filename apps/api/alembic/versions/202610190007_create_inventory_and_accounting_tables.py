"""create inventory and accounting tables

Revision ID: 202610190007
Revises: 202610190006
Create Date: 2026-10-19 10:00:00
"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "202610190007"
down_revision: str | None = "202610190006"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

LIVE = "deleted_at IS NULL"
JSONB = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
QUANTITY = sa.Numeric(15, 2)
MONEY = sa.Numeric(15, 2)
AMOUNT = sa.Numeric(19, 4)
RATE = sa.Numeric(10, 6)


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


def _sync_columns() -> list[sa.Column]:
    return [
        sa.Column("external_refs", JSONB, nullable=False),
        sa.Column("sync_status", _enum("sync_status"), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_error", sa.Text(), nullable=True),
    ]


def _live_index(name: str, table: str, columns: list[str], *, unique: bool = False) -> None:
    op.create_index(
        name,
        table,
        columns,
        unique=unique,
        postgresql_where=sa.text(LIVE),
        sqlite_where=sa.text(LIVE),
    )


def upgrade() -> None:
    op.create_table(
        "inventory_locations",
        *_audited_columns(),
        sa.Column("code", sa.String(30), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("location_type", _enum("location_type"), nullable=False),
        sa.Column("address", JSONB, nullable=True),
        sa.Column("contact_info", JSONB, nullable=True),
        sa.Column("total_capacity", QUANTITY, nullable=True),
        sa.Column("available_capacity", QUANTITY, nullable=True),
        sa.Column("parent_id", sa.Uuid(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("settings", JSONB, nullable=False),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["parent_id"], ["inventory_locations.id"]),
        sa.CheckConstraint(
            "(total_capacity IS NULL AND available_capacity IS NULL) OR "
            "(total_capacity >= 0 AND available_capacity >= 0 AND available_capacity <= total_capacity)",
            name="valid_capacity",
        ),
        sa.CheckConstraint("parent_id IS NULL OR parent_id <> id", name="valid_location_parent"),
    )
    _live_index("idx_inventory_locations_code", "inventory_locations", ["code"], unique=True)
    _live_index("idx_inventory_locations_parent", "inventory_locations", ["parent_id"])

    op.create_table(
        "inventory_items",
        *_audited_columns(),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("location_id", sa.Uuid(), nullable=False),
        sa.Column("quantity", QUANTITY, nullable=False),
        sa.Column("reserved_quantity", QUANTITY, nullable=False),
        sa.Column(
            "available_quantity",
            QUANTITY,
            sa.Computed("quantity - COALESCE(reserved_quantity, 0)", persisted=True),
            nullable=True,
        ),
        sa.Column("unit_of_measure", sa.String(20), nullable=False),
        sa.Column("quality_status", _enum("quality_status"), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("lot_number", sa.String(100), nullable=True),
        sa.Column("serial_numbers", JSONB, nullable=False),
        sa.Column("valuation_method", _enum("valuation_method"), nullable=False),
        sa.Column("unit_cost", MONEY, nullable=True),
        sa.Column(
            "total_value",
            MONEY,
            sa.Computed("quantity * COALESCE(unit_cost, 0)", persisted=True),
            nullable=True,
        ),
        sa.Column("reorder_point", QUANTITY, nullable=True),
        sa.Column("reorder_quantity", QUANTITY, nullable=True),
        sa.Column("lead_time_days", sa.Integer(), nullable=True),
        sa.Column("last_counted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_counted_by", sa.Uuid(), nullable=True),
        sa.Column("storage_location", sa.String(100), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["product_id"], ["crm_products.id"]),
        sa.ForeignKeyConstraint(["location_id"], ["inventory_locations.id"]),
        sa.CheckConstraint(
            "quantity >= 0 AND reserved_quantity >= 0 AND reserved_quantity <= quantity",
            name="positive_quantities",
        ),
        sa.CheckConstraint(
            "(reorder_point IS NULL OR reorder_point >= 0) AND (reorder_quantity IS NULL OR reorder_quantity > 0)",
            name="valid_reorder",
        ),
        sa.CheckConstraint("unit_cost IS NULL OR unit_cost >= 0", name="valid_unit_cost"),
    )
    _live_index(
        "idx_inventory_items_product_location",
        "inventory_items",
        ["product_id", "location_id"],
        unique=True,
    )
    _live_index("idx_inventory_items_location", "inventory_items", ["location_id"])

    op.create_table(
        "inventory_transactions",
        *_audited_columns(),
        sa.Column("transaction_number", sa.String(20), nullable=False),
        sa.Column("transaction_type", _enum("inventory_transaction_type"), nullable=False),
        sa.Column("transaction_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("from_location_id", sa.Uuid(), nullable=True),
        sa.Column("to_location_id", sa.Uuid(), nullable=True),
        sa.Column("quantity", QUANTITY, nullable=False),
        sa.Column("unit_of_measure", sa.String(20), nullable=False),
        sa.Column("unit_cost", MONEY, nullable=True),
        sa.Column("total_cost", MONEY, nullable=True),
        sa.Column("quality_status", _enum("quality_status"), nullable=True),
        sa.Column("lot_number", sa.String(100), nullable=True),
        sa.Column("reason_code", sa.String(50), nullable=True),
        sa.Column("reference_type", sa.String(50), nullable=True),
        sa.Column("reference_id", sa.Uuid(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["product_id"], ["crm_products.id"]),
        sa.ForeignKeyConstraint(["from_location_id"], ["inventory_locations.id"]),
        sa.ForeignKeyConstraint(["to_location_id"], ["inventory_locations.id"]),
        sa.CheckConstraint(
            "(from_location_id IS NOT NULL AND to_location_id IS NULL) OR "
            "(from_location_id IS NULL AND to_location_id IS NOT NULL) OR "
            "(from_location_id IS NOT NULL AND to_location_id IS NOT NULL AND from_location_id <> to_location_id)",
            name="valid_locations",
        ),
        sa.CheckConstraint("quantity > 0", name="positive_quantity"),
        sa.CheckConstraint(
            "(unit_cost IS NULL AND total_cost IS NULL) OR (unit_cost >= 0 AND total_cost >= 0)",
            name="valid_costs",
        ),
        _pg_check("total_cost IS NULL OR total_cost = quantity * unit_cost", name="consistent_total_cost"),
        _pg_check("transaction_number ~ '^ITX-[0-9]{6}$'", name="valid_transaction_number"),
    )
    _live_index(
        "idx_inventory_transactions_number",
        "inventory_transactions",
        ["transaction_number"],
        unique=True,
    )
    _live_index("idx_inventory_transactions_product", "inventory_transactions", ["product_id"])
    _live_index("idx_inventory_transactions_date", "inventory_transactions", ["transaction_date"])

    op.create_table(
        "purchase_orders",
        *_audited_columns(),
        sa.Column("po_number", sa.String(20), nullable=False),
        sa.Column("supplier_id", sa.Uuid(), nullable=False),
        sa.Column("status", _enum("purchase_order_status"), nullable=False),
        sa.Column("order_date", sa.Date(), nullable=False),
        sa.Column("expected_date", sa.Date(), nullable=True),
        sa.Column("delivery_date", sa.Date(), nullable=True),
        sa.Column("currency", _enum("currency"), nullable=False),
        sa.Column("exchange_rate", sa.Numeric(15, 6), nullable=False),
        sa.Column("subtotal", MONEY, nullable=False),
        sa.Column("tax_amount", MONEY, nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("shipping_method", sa.String(100), nullable=True),
        sa.Column("tracking_number", sa.String(100), nullable=True),
        sa.Column("destination_location_id", sa.Uuid(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("terms_conditions", sa.Text(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.Uuid(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["supplier_id"], ["crm_contacts.id"]),
        sa.ForeignKeyConstraint(["destination_location_id"], ["inventory_locations.id"]),
        sa.CheckConstraint(
            "order_date <= COALESCE(expected_date, order_date) AND "
            "COALESCE(expected_date, order_date) <= COALESCE(delivery_date, COALESCE(expected_date, order_date))",
            name="valid_dates",
        ),
        sa.CheckConstraint(
            "exchange_rate > 0 AND subtotal >= 0 AND tax_amount >= 0 AND total_amount >= 0",
            name="valid_amounts",
        ),
        _pg_check("total_amount = subtotal + tax_amount", name="consistent_po_total"),
        sa.CheckConstraint(
            "(approved_at IS NULL AND approved_by IS NULL) OR (approved_at IS NOT NULL AND approved_by IS NOT NULL)",
            name="valid_approval",
        ),
        _pg_check("po_number ~ '^PO-[0-9]{6}$'", name="valid_po_number"),
    )
    _live_index("idx_purchase_orders_number", "purchase_orders", ["po_number"], unique=True)
    _live_index("idx_purchase_orders_supplier", "purchase_orders", ["supplier_id"])
    _live_index("idx_purchase_orders_status", "purchase_orders", ["status"])

    op.create_table(
        "purchase_order_items",
        *_audited_columns(),
        sa.Column("purchase_order_id", sa.Uuid(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("quantity", QUANTITY, nullable=False),
        sa.Column("unit_of_measure", sa.String(20), nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("tax_amount", MONEY, nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("received_quantity", QUANTITY, nullable=False),
        sa.Column("quality_status", _enum("quality_status"), nullable=True),
        sa.Column("inspection_notes", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["purchase_order_id"], ["purchase_orders.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["crm_products.id"]),
        sa.CheckConstraint(
            "quantity > 0 AND received_quantity >= 0 AND received_quantity <= quantity",
            name="positive_po_quantities",
        ),
        sa.CheckConstraint(
            "unit_price >= 0 AND tax_rate >= 0 AND tax_amount >= 0 AND total_amount >= 0",
            name="valid_po_item_amounts",
        ),
        _pg_check("total_amount = (quantity * unit_price) + tax_amount", name="consistent_po_item_total"),
    )
    _live_index("idx_purchase_order_items_order", "purchase_order_items", ["purchase_order_id"])

    op.create_table(
        "chart_of_accounts",
        *_audited_columns(),
        *_sync_columns(),
        sa.Column("account_number", sa.String(20), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("account_type", _enum("account_type"), nullable=False),
        sa.Column("parent_id", sa.Uuid(), nullable=True),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("path", JSONB, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_system", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["parent_id"], ["chart_of_accounts.id"]),
        sa.CheckConstraint("level > 0", name="valid_level"),
        sa.CheckConstraint("parent_id IS NULL OR parent_id <> id", name="valid_account_parent"),
        _pg_check("account_number ~ '^[A-Z0-9-]{4,20}$'", name="valid_account_number"),
    )
    _live_index("idx_chart_of_accounts_active_number", "chart_of_accounts", ["account_number"], unique=True)
    _live_index("idx_chart_of_accounts_parent", "chart_of_accounts", ["parent_id"])
    _live_index("idx_chart_of_accounts_type", "chart_of_accounts", ["account_type"])

    op.create_table(
        "journal_entries",
        *_audited_columns(),
        *_sync_columns(),
        sa.Column("entry_number", sa.String(20), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("entry_type", _enum("journal_entry_type"), nullable=False),
        sa.Column("posting_status", _enum("posting_status"), nullable=False),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("posted_by", sa.Uuid(), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_by", sa.Uuid(), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("reversal_of_id", sa.Uuid(), nullable=True),
        sa.Column("reference_type", sa.String(50), nullable=True),
        sa.Column("reference_id", sa.Uuid(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["reversal_of_id"], ["journal_entries.id"]),
        sa.CheckConstraint(
            "(posting_status = 'draft' AND posted_at IS NULL) OR "
            "(posting_status IN ('posted', 'voided') AND posted_at IS NOT NULL)",
            name="valid_posting",
        ),
        sa.CheckConstraint("(posting_status = 'voided') = (voided_at IS NOT NULL)", name="valid_void"),
        _pg_check("entry_number ~ '^JE-[0-9]{6,}$'", name="valid_entry_number"),
    )
    _live_index("idx_journal_entries_active_number", "journal_entries", ["entry_number"], unique=True)
    _live_index("idx_journal_entries_date", "journal_entries", ["entry_date"])
    _live_index("idx_journal_entries_status", "journal_entries", ["posting_status"])

    op.create_table(
        "journal_entry_lines",
        *_audited_columns(),
        *_sync_columns(),
        sa.Column("journal_entry_id", sa.Uuid(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", AMOUNT, nullable=False),
        sa.Column("entry_type", _enum("debit_credit"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["journal_entry_id"], ["journal_entries.id"]),
        sa.ForeignKeyConstraint(["account_id"], ["chart_of_accounts.id"]),
        sa.CheckConstraint("amount > 0", name="positive_amount"),
    )
    _live_index("idx_journal_entry_lines_entry", "journal_entry_lines", ["journal_entry_id"])
    _live_index("idx_journal_entry_lines_account", "journal_entry_lines", ["account_id"])

    op.create_table(
        "payment_transactions",
        *_audited_columns(),
        *_sync_columns(),
        sa.Column("transaction_number", sa.String(20), nullable=False),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", AMOUNT, nullable=False),
        sa.Column("currency_code", _enum("currency"), nullable=False),
        sa.Column("exchange_rate", RATE, nullable=False),
        sa.Column(
            "converted_amount",
            AMOUNT,
            sa.Computed("amount * exchange_rate", persisted=True),
            nullable=True,
        ),
        sa.Column("payment_method", _enum("payment_method"), nullable=False),
        sa.Column("payment_reference", sa.String(50), nullable=True),
        sa.Column("status", _enum("payment_status"), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("journal_entry_id", sa.Uuid(), nullable=True),
        sa.Column("reference_type", sa.String(50), nullable=True),
        sa.Column("reference_id", sa.Uuid(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["journal_entry_id"], ["journal_entries.id"]),
        sa.CheckConstraint("amount > 0", name="positive_amount"),
        sa.CheckConstraint("exchange_rate > 0", name="valid_exchange_rate"),
        sa.CheckConstraint("(status = 'refunded') = (refunded_at IS NOT NULL)", name="valid_refund"),
        _pg_check(
            "payment_reference IS NULL OR payment_reference ~ '^[A-Z0-9-]{4,50}$'",
            name="valid_payment_reference",
        ),
        _pg_check("transaction_number ~ '^PAY-[0-9]{6,}$'", name="valid_payment_number"),
    )
    _live_index(
        "idx_payment_transactions_active_number",
        "payment_transactions",
        ["transaction_number"],
        unique=True,
    )
    _live_index("idx_payment_transactions_status", "payment_transactions", ["status"])
    _live_index("idx_payment_transactions_journal", "payment_transactions", ["journal_entry_id"])

    op.create_table(
        "account_mappings",
        *_audited_columns(),
        sa.Column("account_id", sa.Uuid(), nullable=False),
        sa.Column("external_system", _enum("external_system"), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("external_refs", JSONB, nullable=False),
        sa.Column("mapping_details", JSONB, nullable=False),
        sa.Column("custom_fields", JSONB, nullable=False),
        sa.Column("sync_status", _enum("sync_status"), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_error", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.ForeignKeyConstraint(["account_id"], ["chart_of_accounts.id"]),
        sa.CheckConstraint("length(external_id) > 0", name="valid_external_id"),
    )
    _live_index("idx_account_mappings_active", "account_mappings", ["account_id", "external_system"], unique=True)
    _live_index("idx_account_mappings_external", "account_mappings", ["external_system", "external_id"])

    op.create_table(
        "sync_logs",
        *_audited_columns(),
        sa.Column("sync_type", _enum("sync_type"), nullable=False),
        sa.Column("external_system", _enum("external_system"), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", _enum("sync_status"), nullable=False),
        sa.Column("records_processed", sa.Integer(), nullable=False),
        sa.Column("records_succeeded", sa.Integer(), nullable=False),
        sa.Column("records_failed", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_details", JSONB, nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("metadata", JSONB, nullable=False),
        *_audited_constraints(),
        sa.CheckConstraint(
            "records_processed >= 0 AND records_succeeded >= 0 AND records_failed >= 0 "
            "AND records_processed >= records_succeeded + records_failed",
            name="valid_record_counts",
        ),
        sa.CheckConstraint("completed_at IS NULL OR completed_at >= started_at", name="valid_sync_window"),
    )
    _live_index("idx_sync_logs_status", "sync_logs", ["status"])
    _live_index("idx_sync_logs_type", "sync_logs", ["sync_type"])


def downgrade() -> None:
    for table in (
        "sync_logs",
        "account_mappings",
        "payment_transactions",
        "journal_entry_lines",
        "journal_entries",
        "chart_of_accounts",
        "purchase_order_items",
        "purchase_orders",
        "inventory_transactions",
        "inventory_items",
        "inventory_locations",
    ):
        op.drop_table(table)
