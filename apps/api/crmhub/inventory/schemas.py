from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from crmhub.enums import (
    Currency,
    InventoryTransactionType,
    LocationType,
    PurchaseOrderStatus,
    QualityStatus,
    ValuationMethod,
)


LOCATION_CODE_PATTERN = r"^[A-Z0-9][A-Z0-9-]{1,29}$"


class InventoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    version: int
    created_at: datetime
    updated_at: datetime
    created_by: UUID | None = None
    updated_by: UUID | None = None


class VersionedRequest(BaseModel):
    version: int


# locations


class _Capacity(BaseModel):
    @model_validator(mode="after")
    def _capacity_pair(self) -> "_Capacity":
        total = getattr(self, "total_capacity", None)
        available = getattr(self, "available_capacity", None)
        if available is not None and total is None:
            raise ValueError("available_capacity requires total_capacity")
        if total is not None and available is not None and available > total:
            raise ValueError("available_capacity cannot exceed total_capacity")
        return self


class LocationCreate(_Capacity):
    code: str = Field(pattern=LOCATION_CODE_PATTERN)
    name: str = Field(min_length=1, max_length=255)
    location_type: LocationType = LocationType.WAREHOUSE
    address: dict[str, Any] | None = None
    contact_info: dict[str, Any] | None = None
    total_capacity: Decimal | None = Field(default=None, ge=0)
    available_capacity: Decimal | None = Field(default=None, ge=0)
    parent_id: UUID | None = None
    is_active: bool = True
    settings: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class LocationUpdate(_Capacity, VersionedRequest):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    location_type: LocationType | None = None
    address: dict[str, Any] | None = None
    contact_info: dict[str, Any] | None = None
    total_capacity: Decimal | None = Field(default=None, ge=0)
    available_capacity: Decimal | None = Field(default=None, ge=0)
    parent_id: UUID | None = None
    is_active: bool | None = None
    settings: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None


class LocationRead(InventoryRead):
    code: str
    name: str
    location_type: LocationType
    address: dict[str, Any] | None = None
    contact_info: dict[str, Any] | None = None
    total_capacity: Decimal | None = None
    available_capacity: Decimal | None = None
    parent_id: UUID | None = None
    is_active: bool
    settings: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("location_metadata", "metadata"),
    )


# stock


class ItemUpdate(VersionedRequest):
    quality_status: QualityStatus | None = None
    valuation_method: ValuationMethod | None = None
    reorder_point: Decimal | None = Field(default=None, ge=0)
    reorder_quantity: Decimal | None = Field(default=None, gt=0)
    lead_time_days: int | None = Field(default=None, ge=0)
    storage_location: str | None = Field(default=None, max_length=100)
    expiry_date: date | None = None


class ItemRead(InventoryRead):
    product_id: UUID
    location_id: UUID
    quantity: Decimal
    reserved_quantity: Decimal
    available_quantity: Decimal | None = None
    unit_of_measure: str
    quality_status: QualityStatus
    expiry_date: date | None = None
    lot_number: str | None = None
    serial_numbers: list[str] = Field(default_factory=list)
    valuation_method: ValuationMethod
    unit_cost: Decimal | None = None
    total_value: Decimal | None = None
    reorder_point: Decimal | None = None
    reorder_quantity: Decimal | None = None
    lead_time_days: int | None = None
    last_counted_at: datetime | None = None
    last_counted_by: UUID | None = None
    storage_location: str | None = None


class StockReceipt(BaseModel):
    product_id: UUID
    location_id: UUID
    quantity: Decimal = Field(gt=0)
    unit_cost: Decimal | None = Field(default=None, ge=0)
    unit_of_measure: str = Field(default="each", max_length=20)
    transaction_type: InventoryTransactionType = InventoryTransactionType.PURCHASE
    lot_number: str | None = Field(default=None, max_length=100)
    serial_numbers: list[str] = Field(default_factory=list)
    expiry_date: date | None = None
    reference_type: str | None = Field(default=None, max_length=50)
    reference_id: UUID | None = None
    notes: str | None = None


class StockReservation(BaseModel):
    product_id: UUID
    location_id: UUID
    quantity: Decimal = Field(gt=0)
    reference_type: str | None = Field(default=None, max_length=50)
    reference_id: UUID | None = None


class StockTransfer(BaseModel):
    product_id: UUID
    from_location_id: UUID
    to_location_id: UUID
    quantity: Decimal = Field(gt=0)
    notes: str | None = None

    @model_validator(mode="after")
    def _distinct_locations(self) -> "StockTransfer":
        if self.from_location_id == self.to_location_id:
            raise ValueError("from_location_id and to_location_id must differ")
        return self


class StockAdjustment(BaseModel):
    product_id: UUID
    location_id: UUID
    counted_quantity: Decimal = Field(ge=0)
    reason_code: str = Field(min_length=1, max_length=50)
    transaction_type: InventoryTransactionType = InventoryTransactionType.ADJUSTMENT
    notes: str | None = None


class TransactionRead(InventoryRead):
    transaction_number: str
    transaction_type: InventoryTransactionType
    transaction_date: datetime
    product_id: UUID
    from_location_id: UUID | None = None
    to_location_id: UUID | None = None
    quantity: Decimal
    unit_of_measure: str
    unit_cost: Decimal | None = None
    total_cost: Decimal | None = None
    quality_status: QualityStatus | None = None
    lot_number: str | None = None
    reason_code: str | None = None
    reference_type: str | None = None
    reference_id: UUID | None = None
    notes: str | None = None


class StockMovementRead(BaseModel):
    items: list[ItemRead]
    transaction: TransactionRead | None = None


# purchase orders


class PurchaseOrderLine(BaseModel):
    product_id: UUID
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    unit_of_measure: str = Field(default="each", max_length=20)
    notes: str | None = None


class PurchaseOrderCreate(BaseModel):
    supplier_id: UUID
    order_date: date | None = None
    expected_date: date | None = None
    currency: Currency = Currency.USD
    exchange_rate: Decimal = Field(default=Decimal("1"), gt=0)
    shipping_method: str | None = Field(default=None, max_length=100)
    destination_location_id: UUID | None = None
    notes: str | None = None
    terms_conditions: str | None = None
    items: list[PurchaseOrderLine] = Field(min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _expected_after_order(self) -> "PurchaseOrderCreate":
        if self.order_date is not None and self.expected_date is not None and self.expected_date < self.order_date:
            raise ValueError("expected_date cannot precede order_date")
        return self


class PurchaseOrderItemRead(InventoryRead):
    purchase_order_id: UUID
    product_id: UUID
    quantity: Decimal
    unit_of_measure: str
    unit_price: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    received_quantity: Decimal
    quality_status: QualityStatus | None = None
    notes: str | None = None


class PurchaseOrderRead(InventoryRead):
    po_number: str
    supplier_id: UUID
    status: PurchaseOrderStatus
    order_date: date
    expected_date: date | None = None
    delivery_date: date | None = None
    currency: Currency
    exchange_rate: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    shipping_method: str | None = None
    tracking_number: str | None = None
    destination_location_id: UUID | None = None
    notes: str | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("order_metadata", "metadata"),
    )
    items: list[PurchaseOrderItemRead] = Field(default_factory=list)


class ReceiptLine(BaseModel):
    item_id: UUID
    quantity: Decimal = Field(gt=0)


class PurchaseOrderReceipt(VersionedRequest):
    location_id: UUID | None = None
    lines: list[ReceiptLine] = Field(default_factory=list)
    tracking_number: str | None = Field(default=None, max_length=100)


class PurchaseOrderCancel(VersionedRequest):
    reason: str = Field(min_length=1)
