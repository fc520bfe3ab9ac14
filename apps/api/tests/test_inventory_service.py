from __future__ import annotations

import uuid
from collections.abc import Generator
from decimal import Decimal

import pytest
from fastapi import HTTPException
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crmhub import audit, events
from crmhub.core.database import Base
from crmhub.crm.schemas import ContactCreate, ProductCreate
from crmhub.crm.service import crm_service
from crmhub.enums import InventoryTransactionType, PurchaseOrderStatus
from crmhub.inventory.schemas import (
    LocationCreate,
    PurchaseOrderCancel,
    PurchaseOrderCreate,
    PurchaseOrderLine,
    PurchaseOrderReceipt,
    ReceiptLine,
    StockAdjustment,
    StockReceipt,
    StockReservation,
    StockTransfer,
    VersionedRequest,
)
from crmhub.inventory.service import inventory_service
from crmhub.platform.security.actor import ActorUser


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_state() -> None:
    audit.audit_entries.clear()
    events.published_events.clear()


@pytest.fixture()
def admin() -> ActorUser:
    return ActorUser(user_id=str(uuid.uuid4()), permissions=set(), roles={"system_admin"})


@pytest.fixture()
def product_id(db_session: Session, admin: ActorUser) -> uuid.UUID:
    return crm_service.create(db_session, admin, "products", ProductCreate(name="Widget")).id


@pytest.fixture()
def supplier_id(db_session: Session, admin: ActorUser) -> uuid.UUID:
    return crm_service.create(
        db_session,
        admin,
        "contacts",
        ContactCreate(first_name="Sam", company_name="Acme Supplies"),
    ).id


def _location(session: Session, actor: ActorUser, code: str, capacity: str | None = None):
    capacity_value = Decimal(capacity) if capacity is not None else None
    return inventory_service.create_location(
        session,
        actor,
        LocationCreate(code=code, name=f"Warehouse {code}", total_capacity=capacity_value, available_capacity=capacity_value),
    )


def test_receipts_average_the_unit_cost(db_session: Session, admin: ActorUser, product_id: uuid.UUID) -> None:
    location = _location(db_session, admin, "WH-1", capacity="100")

    inventory_service.receive_stock(
        db_session,
        admin,
        StockReceipt(product_id=product_id, location_id=location.id, quantity=Decimal("10"), unit_cost=Decimal("4")),
    )
    movement = inventory_service.receive_stock(
        db_session,
        admin,
        StockReceipt(product_id=product_id, location_id=location.id, quantity=Decimal("30"), unit_cost=Decimal("6")),
    )

    item = movement.items[0]
    assert item.quantity == Decimal("40")
    assert item.unit_cost == Decimal("5.50")
    assert movement.transaction.transaction_type == InventoryTransactionType.PURCHASE
    assert movement.transaction.transaction_number == "ITX-000002"
    assert inventory_service.get_location(db_session, admin, location.id).available_capacity == Decimal("60")


def test_receipt_beyond_capacity_is_conflict(db_session: Session, admin: ActorUser, product_id: uuid.UUID) -> None:
    location = _location(db_session, admin, "TINY", capacity="5")

    with pytest.raises(HTTPException) as exc_info:
        inventory_service.receive_stock(
            db_session,
            admin,
            StockReceipt(product_id=product_id, location_id=location.id, quantity=Decimal("6")),
        )

    assert exc_info.value.status_code == 409
    assert exc_info.value.detail == "location capacity exceeded"


def test_reservations_limit_transfers_and_adjustments(
    db_session: Session, admin: ActorUser, product_id: uuid.UUID
) -> None:
    main = _location(db_session, admin, "MAIN")
    overflow = _location(db_session, admin, "OVERFLOW")
    inventory_service.receive_stock(
        db_session,
        admin,
        StockReceipt(product_id=product_id, location_id=main.id, quantity=Decimal("10"), unit_cost=Decimal("2.25")),
    )

    reserved = inventory_service.reserve_stock(
        db_session,
        admin,
        StockReservation(product_id=product_id, location_id=main.id, quantity=Decimal("4")),
    )
    assert reserved.items[0].reserved_quantity == Decimal("4")
    assert reserved.items[0].available_quantity == Decimal("6")
    assert reserved.transaction is None

    with pytest.raises(HTTPException) as too_much:
        inventory_service.reserve_stock(
            db_session,
            admin,
            StockReservation(product_id=product_id, location_id=main.id, quantity=Decimal("7")),
        )
    assert too_much.value.status_code == 409
    assert too_much.value.detail == "insufficient available stock"

    with pytest.raises(HTTPException) as blocked_transfer:
        inventory_service.transfer_stock(
            db_session,
            admin,
            StockTransfer(product_id=product_id, from_location_id=main.id, to_location_id=overflow.id, quantity=Decimal("7")),
        )
    assert blocked_transfer.value.status_code == 409

    transfer = inventory_service.transfer_stock(
        db_session,
        admin,
        StockTransfer(product_id=product_id, from_location_id=main.id, to_location_id=overflow.id, quantity=Decimal("5")),
    )
    source, target = transfer.items
    assert source.quantity == Decimal("5")
    assert target.quantity == Decimal("5")
    assert target.unit_cost == Decimal("2.25")
    assert transfer.transaction.transaction_type == InventoryTransactionType.TRANSFER

    with pytest.raises(HTTPException) as below_reserved:
        inventory_service.adjust_stock(
            db_session,
            admin,
            StockAdjustment(product_id=product_id, location_id=main.id, counted_quantity=Decimal("3"), reason_code="count"),
        )
    assert below_reserved.value.status_code == 422

    adjusted = inventory_service.adjust_stock(
        db_session,
        admin,
        StockAdjustment(product_id=product_id, location_id=main.id, counted_quantity=Decimal("4"), reason_code="shrinkage"),
    )
    assert adjusted.items[0].quantity == Decimal("4")
    assert adjusted.items[0].last_counted_by == admin.actor_uuid
    assert adjusted.transaction.quantity == Decimal("1")
    assert adjusted.transaction.from_location_id == main.id
    assert adjusted.transaction.reason_code == "shrinkage"

    released = inventory_service.release_reservation(
        db_session,
        admin,
        StockReservation(product_id=product_id, location_id=main.id, quantity=Decimal("4")),
    )
    assert released.items[0].reserved_quantity == Decimal("0")


def test_purchase_order_receiving_lifecycle(
    db_session: Session,
    admin: ActorUser,
    product_id: uuid.UUID,
    supplier_id: uuid.UUID,
) -> None:
    dock = _location(db_session, admin, "DOCK-A")
    order = inventory_service.create_purchase_order(
        db_session,
        admin,
        PurchaseOrderCreate(
            supplier_id=supplier_id,
            destination_location_id=dock.id,
            items=[
                PurchaseOrderLine(
                    product_id=product_id,
                    quantity=Decimal("10"),
                    unit_price=Decimal("12.5"),
                    tax_rate=Decimal("10"),
                )
            ],
        ),
    )
    assert order.po_number == "PO-000001"
    assert order.status == PurchaseOrderStatus.DRAFT
    assert order.subtotal == Decimal("125")
    assert order.tax_amount == Decimal("12.5")
    assert order.total_amount == Decimal("137.5")

    with pytest.raises(HTTPException) as not_approved:
        inventory_service.receive_purchase_order_items(
            db_session, admin, order.id, PurchaseOrderReceipt(version=order.version)
        )
    assert not_approved.value.status_code == 409

    approved = inventory_service.approve_purchase_order(db_session, admin, order.id, VersionedRequest(version=order.version))
    assert approved.status == PurchaseOrderStatus.APPROVED
    assert approved.approved_by == admin.actor_uuid
    line_id = approved.items[0].id

    with pytest.raises(HTTPException) as over_receipt:
        inventory_service.receive_purchase_order_items(
            db_session,
            admin,
            order.id,
            PurchaseOrderReceipt(version=approved.version, lines=[ReceiptLine(item_id=line_id, quantity=Decimal("11"))]),
        )
    assert over_receipt.value.status_code == 422

    partial = inventory_service.receive_purchase_order_items(
        db_session,
        admin,
        order.id,
        PurchaseOrderReceipt(version=approved.version, lines=[ReceiptLine(item_id=line_id, quantity=Decimal("4"))]),
    )
    assert partial.status == PurchaseOrderStatus.PARTIAL
    assert partial.items[0].received_quantity == Decimal("4")

    complete = inventory_service.receive_purchase_order_items(
        db_session, admin, order.id, PurchaseOrderReceipt(version=partial.version)
    )
    assert complete.status == PurchaseOrderStatus.COMPLETE
    assert complete.delivery_date is not None

    stock = inventory_service.list_items(db_session, admin, product_id=product_id)
    assert [(row.location_id, row.quantity, row.unit_cost) for row in stock] == [(dock.id, Decimal("10"), Decimal("12.5"))]

    with pytest.raises(HTTPException) as too_late:
        inventory_service.cancel_purchase_order(
            db_session, admin, order.id, PurchaseOrderCancel(version=complete.version, reason="duplicate")
        )
    assert too_late.value.status_code == 409


def test_cancel_draft_purchase_order(
    db_session: Session,
    admin: ActorUser,
    product_id: uuid.UUID,
    supplier_id: uuid.UUID,
) -> None:
    order = inventory_service.create_purchase_order(
        db_session,
        admin,
        PurchaseOrderCreate(
            supplier_id=supplier_id,
            items=[PurchaseOrderLine(product_id=product_id, quantity=Decimal("2"), unit_price=Decimal("3"))],
        ),
    )

    cancelled = inventory_service.cancel_purchase_order(
        db_session, admin, order.id, PurchaseOrderCancel(version=order.version, reason="supplier closed")
    )

    assert cancelled.status == PurchaseOrderStatus.CANCELLED
    assert cancelled.cancellation_reason == "supplier closed"
    assert cancelled.cancelled_at is not None


def test_purchase_order_needs_a_live_supplier(db_session: Session, admin: ActorUser, product_id: uuid.UUID) -> None:
    with pytest.raises(HTTPException) as exc_info:
        inventory_service.create_purchase_order(
            db_session,
            admin,
            PurchaseOrderCreate(
                supplier_id=uuid.uuid4(),
                items=[PurchaseOrderLine(product_id=product_id, quantity=Decimal("1"), unit_price=Decimal("1"))],
            ),
        )

    assert exc_info.value.status_code == 422
