from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Computed,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from crmhub.core.database import Base
from crmhub.enums import (
    Currency,
    InventoryTransactionType,
    LocationType,
    PurchaseOrderStatus,
    QualityStatus,
    ValuationMethod,
    db_enum,
)
from crmhub.platform.persistence import AuditedMixin, JSONDocument, audited_table_args, live_index, live_unique_index, pg_check


QUANTITY = Numeric(15, 2)
MONEY = Numeric(15, 2)


class InventoryLocation(AuditedMixin, Base):
    __tablename__ = "inventory_locations"

    code: Mapped[str] = mapped_column(String(30), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location_type: Mapped[LocationType] = mapped_column(db_enum(LocationType), nullable=False)
    address: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    contact_info: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    total_capacity: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    available_capacity: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("inventory_locations.id"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    settings: Mapped[dict] = mapped_column(JSONDocument, nullable=False, default=dict)
    location_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint(
            "(total_capacity IS NULL AND available_capacity IS NULL) OR "
            "(total_capacity >= 0 AND available_capacity >= 0 AND available_capacity <= total_capacity)",
            name="valid_capacity",
        ),
        CheckConstraint("parent_id IS NULL OR parent_id <> id", name="valid_location_parent"),
        live_unique_index("idx_inventory_locations_code", "code"),
        live_index("idx_inventory_locations_parent", "parent_id"),
    )


class InventoryItem(AuditedMixin, Base):
    """Stock of one product at one location."""

    __tablename__ = "inventory_items"

    product_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("crm_products.id"), nullable=False)
    location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("inventory_locations.id"),
        nullable=False,
    )
    quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False, default=Decimal("0"))
    reserved_quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False, default=Decimal("0"))
    available_quantity: Mapped[Decimal | None] = mapped_column(
        QUANTITY,
        Computed("quantity - COALESCE(reserved_quantity, 0)", persisted=True),
    )
    unit_of_measure: Mapped[str] = mapped_column(String(20), nullable=False, default="each")
    quality_status: Mapped[QualityStatus] = mapped_column(
        db_enum(QualityStatus),
        nullable=False,
        default=QualityStatus.AVAILABLE,
    )
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    serial_numbers: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    valuation_method: Mapped[ValuationMethod] = mapped_column(
        db_enum(ValuationMethod),
        nullable=False,
        default=ValuationMethod.AVG_COST,
    )
    unit_cost: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    total_value: Mapped[Decimal | None] = mapped_column(
        MONEY,
        Computed("quantity * COALESCE(unit_cost, 0)", persisted=True),
    )
    reorder_point: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    reorder_quantity: Mapped[Decimal | None] = mapped_column(QUANTITY, nullable=True)
    lead_time_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_counted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_counted_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    storage_location: Mapped[str | None] = mapped_column(String(100), nullable=True)
    item_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint(
            "quantity >= 0 AND reserved_quantity >= 0 AND reserved_quantity <= quantity",
            name="positive_quantities",
        ),
        CheckConstraint(
            "(reorder_point IS NULL OR reorder_point >= 0) AND (reorder_quantity IS NULL OR reorder_quantity > 0)",
            name="valid_reorder",
        ),
        CheckConstraint("unit_cost IS NULL OR unit_cost >= 0", name="valid_unit_cost"),
        live_unique_index("idx_inventory_items_product_location", "product_id", "location_id"),
        live_index("idx_inventory_items_location", "location_id"),
    )


class InventoryTransaction(AuditedMixin, Base):
    """Immutable movement record; every stock change writes one."""

    __tablename__ = "inventory_transactions"

    transaction_number: Mapped[str] = mapped_column(String(20), nullable=False)
    transaction_type: Mapped[InventoryTransactionType] = mapped_column(db_enum(InventoryTransactionType), nullable=False)
    transaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("crm_products.id"), nullable=False)
    from_location_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("inventory_locations.id"),
        nullable=True,
    )
    to_location_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("inventory_locations.id"),
        nullable=True,
    )
    quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False)
    unit_of_measure: Mapped[str] = mapped_column(String(20), nullable=False, default="each")
    unit_cost: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    total_cost: Mapped[Decimal | None] = mapped_column(MONEY, nullable=True)
    quality_status: Mapped[QualityStatus | None] = mapped_column(db_enum(QualityStatus), nullable=True)
    lot_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reason_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = audited_table_args(
        CheckConstraint(
            "(from_location_id IS NOT NULL AND to_location_id IS NULL) OR "
            "(from_location_id IS NULL AND to_location_id IS NOT NULL) OR "
            "(from_location_id IS NOT NULL AND to_location_id IS NOT NULL AND from_location_id <> to_location_id)",
            name="valid_locations",
        ),
        CheckConstraint("quantity > 0", name="positive_quantity"),
        CheckConstraint(
            "(unit_cost IS NULL AND total_cost IS NULL) OR (unit_cost >= 0 AND total_cost >= 0)",
            name="valid_costs",
        ),
        pg_check("total_cost IS NULL OR total_cost = quantity * unit_cost", name="consistent_total_cost"),
        pg_check("transaction_number ~ '^ITX-[0-9]{6}$'", name="valid_transaction_number"),
        live_unique_index("idx_inventory_transactions_number", "transaction_number"),
        live_index("idx_inventory_transactions_product", "product_id"),
        live_index("idx_inventory_transactions_date", "transaction_date"),
    )


class PurchaseOrder(AuditedMixin, Base):
    __tablename__ = "purchase_orders"

    po_number: Mapped[str] = mapped_column(String(20), nullable=False)
    supplier_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("crm_contacts.id"), nullable=False)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        db_enum(PurchaseOrderStatus),
        nullable=False,
        default=PurchaseOrderStatus.DRAFT,
    )
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    currency: Mapped[Currency] = mapped_column(db_enum(Currency), nullable=False, default=Currency.USD)
    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(15, 6), nullable=False, default=Decimal("1"))
    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    shipping_method: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    destination_location_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("inventory_locations.id"),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    terms_conditions: Mapped[str | None] = mapped_column(Text, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_metadata: Mapped[dict] = mapped_column("metadata", JSONDocument, nullable=False, default=dict)

    __table_args__ = audited_table_args(
        CheckConstraint(
            "order_date <= COALESCE(expected_date, order_date) AND "
            "COALESCE(expected_date, order_date) <= COALESCE(delivery_date, COALESCE(expected_date, order_date))",
            name="valid_dates",
        ),
        CheckConstraint(
            "exchange_rate > 0 AND subtotal >= 0 AND tax_amount >= 0 AND total_amount >= 0",
            name="valid_amounts",
        ),
        pg_check("total_amount = subtotal + tax_amount", name="consistent_po_total"),
        CheckConstraint(
            "(approved_at IS NULL AND approved_by IS NULL) OR (approved_at IS NOT NULL AND approved_by IS NOT NULL)",
            name="valid_approval",
        ),
        pg_check("po_number ~ '^PO-[0-9]{6}$'", name="valid_po_number"),
        live_unique_index("idx_purchase_orders_number", "po_number"),
        live_index("idx_purchase_orders_supplier", "supplier_id"),
        live_index("idx_purchase_orders_status", "status"),
    )


class PurchaseOrderItem(AuditedMixin, Base):
    __tablename__ = "purchase_order_items"

    purchase_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("purchase_orders.id"),
        nullable=False,
    )
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("crm_products.id"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False)
    unit_of_measure: Mapped[str] = mapped_column(String(20), nullable=False, default="each")
    unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(QUANTITY, nullable=False, default=Decimal("0"))
    quality_status: Mapped[QualityStatus | None] = mapped_column(db_enum(QualityStatus), nullable=True)
    inspection_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = audited_table_args(
        CheckConstraint(
            "quantity > 0 AND received_quantity >= 0 AND received_quantity <= quantity",
            name="positive_po_quantities",
        ),
        CheckConstraint(
            "unit_price >= 0 AND tax_rate >= 0 AND tax_amount >= 0 AND total_amount >= 0",
            name="valid_po_item_amounts",
        ),
        pg_check("total_amount = (quantity * unit_price) + tax_amount", name="consistent_po_item_total"),
        live_index("idx_purchase_order_items_order", "purchase_order_id"),
    )
