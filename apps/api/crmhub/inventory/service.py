"""Stock levels, movements and purchase orders.

Every change of on-hand quantity writes an ``inventory_transactions`` row in
the same commit. Reservations only move ``reserved_quantity`` and leave no
transaction. Locations with a tracked capacity have ``available_capacity``
drawn down by receipts and released by outbound movements.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from crmhub.crm.models import CRMContact, CRMProduct
from crmhub.enums import InventoryTransactionType, PurchaseOrderStatus
from crmhub.inventory.models import InventoryItem, InventoryLocation, InventoryTransaction, PurchaseOrder, PurchaseOrderItem
from crmhub.inventory.repositories import (
    item_repository,
    location_repository,
    purchase_order_repository,
    transaction_repository,
)
from crmhub.inventory.schemas import (
    ItemRead,
    ItemUpdate,
    LocationCreate,
    LocationRead,
    LocationUpdate,
    PurchaseOrderCancel,
    PurchaseOrderCreate,
    PurchaseOrderItemRead,
    PurchaseOrderRead,
    PurchaseOrderReceipt,
    StockAdjustment,
    StockMovementRead,
    StockReceipt,
    StockReservation,
    StockTransfer,
    TransactionRead,
    VersionedRequest,
)
from crmhub.metrics import observe_inventory_movement
from crmhub.platform.persistence import utcnow
from crmhub.platform.security.actor import ActorUser, to_auth_context
from crmhub.platform.security.repository import BaseRepository
from crmhub.services.common import (
    bind,
    check_version,
    commit_or_conflict,
    flush_or_conflict,
    next_sequence_number,
    not_found,
    publish,
    security_errors_as_http,
    unprocessable,
)


logger = logging.getLogger("crmhub.inventory")

CENT = Decimal("0.01")
INBOUND_TYPES = {InventoryTransactionType.PURCHASE, InventoryTransactionType.RETURN, InventoryTransactionType.PRODUCTION}
ADJUSTMENT_TYPES = {InventoryTransactionType.ADJUSTMENT, InventoryTransactionType.SCRAP}
APPROVABLE = {PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.PENDING}
RECEIVABLE = {PurchaseOrderStatus.APPROVED, PurchaseOrderStatus.ORDERED, PurchaseOrderStatus.PARTIAL}
CANCELLABLE = {
    PurchaseOrderStatus.DRAFT,
    PurchaseOrderStatus.PENDING,
    PurchaseOrderStatus.APPROVED,
    PurchaseOrderStatus.ORDERED,
}


def _conflict(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


class InventoryService:
    # locations

    def create_location(self, session: Session, actor_user: ActorUser, dto: LocationCreate) -> LocationRead:
        bind(session, actor_user)
        values = dto.model_dump(exclude={"metadata"})
        self._authorize(actor_user, location_repository, values)
        self._require_live(session, InventoryLocation, dto.parent_id, "parent_id")
        if values["total_capacity"] is not None and values["available_capacity"] is None:
            values["available_capacity"] = values["total_capacity"]

        location = InventoryLocation(**values, location_metadata=dto.metadata)
        session.add(location)
        flush_or_conflict(session, "location code already in use")
        publish("inventory.location.created", actor_user, {"id": str(location.id), "code": location.code})
        commit_or_conflict(session, "location code already in use")
        session.refresh(location)
        return self._read(LocationRead, location_repository, location, actor_user)

    def get_location(self, session: Session, actor_user: ActorUser, location_id: uuid.UUID) -> LocationRead:
        location = self._visible(session, actor_user, location_repository, location_id, "location")
        return self._read(LocationRead, location_repository, location, actor_user)

    def list_locations(
        self,
        session: Session,
        actor_user: ActorUser,
        *,
        active_only: bool = True,
        parent_id: uuid.UUID | None = None,
    ) -> list[LocationRead]:
        stmt = select(InventoryLocation).where(InventoryLocation.deleted_at.is_(None))
        if active_only:
            stmt = stmt.where(InventoryLocation.is_active.is_(True))
        if parent_id is not None:
            stmt = stmt.where(InventoryLocation.parent_id == parent_id)
        stmt = location_repository.apply_scope_query(stmt, to_auth_context(actor_user))
        rows = session.scalars(stmt.order_by(InventoryLocation.code)).all()
        return [self._read(LocationRead, location_repository, row, actor_user) for row in rows]

    def update_location(
        self,
        session: Session,
        actor_user: ActorUser,
        location_id: uuid.UUID,
        dto: LocationUpdate,
    ) -> LocationRead:
        bind(session, actor_user)
        location = self._visible(session, actor_user, location_repository, location_id, "location")
        changes = dto.model_dump(exclude_unset=True)
        expected = changes.pop("version", None)
        self._authorize(actor_user, location_repository, changes)
        check_version(location, expected, "inventory_locations")

        if changes.get("parent_id") is not None:
            self._require_live(session, InventoryLocation, changes["parent_id"], "parent_id")
            if self._is_descendant(session, changes["parent_id"], location.id):
                raise unprocessable("location hierarchy cannot contain cycles")
        if "metadata" in changes:
            changes["location_metadata"] = changes.pop("metadata") or {}
        if "total_capacity" in changes and "available_capacity" not in changes:
            # keep used capacity constant when only the total moves
            used = (location.total_capacity or 0) - (location.available_capacity or 0)
            total = changes["total_capacity"]
            changes["available_capacity"] = None if total is None else total - used
        for key, value in changes.items():
            if value is not None or key in {"address", "contact_info", "parent_id", "total_capacity", "available_capacity"}:
                setattr(location, key, value)
        if location.available_capacity is not None and not (
            0 <= location.available_capacity <= (location.total_capacity or 0)
        ):
            session.rollback()
            raise unprocessable("available_capacity must lie between 0 and total_capacity")
        publish("inventory.location.updated", actor_user, {"id": str(location.id), "fields": sorted(changes)})
        commit_or_conflict(session, "location code already in use")
        session.refresh(location)
        return self._read(LocationRead, location_repository, location, actor_user)

    def delete_location(self, session: Session, actor_user: ActorUser, location_id: uuid.UUID) -> None:
        bind(session, actor_user)
        location = self._visible(session, actor_user, location_repository, location_id, "location")
        items = session.scalars(
            select(InventoryItem).where(InventoryItem.location_id == location.id, InventoryItem.deleted_at.is_(None))
        ).all()
        if any(item.quantity > 0 for item in items):
            raise _conflict("location still holds stock")
        child = session.scalar(
            select(InventoryLocation.id).where(
                InventoryLocation.parent_id == location.id,
                InventoryLocation.deleted_at.is_(None),
            )
        )
        if child is not None:
            raise _conflict("location has child locations")
        for item in items:
            item.soft_delete(actor_user.actor_uuid)
        location.soft_delete(actor_user.actor_uuid)
        publish("inventory.location.deleted", actor_user, {"id": str(location.id)})
        commit_or_conflict(session, "location could not be deleted")

    # stock

    def list_items(
        self,
        session: Session,
        actor_user: ActorUser,
        *,
        location_id: uuid.UUID | None = None,
        product_id: uuid.UUID | None = None,
        low_stock: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ItemRead]:
        stmt = select(InventoryItem).where(InventoryItem.deleted_at.is_(None))
        if location_id is not None:
            stmt = stmt.where(InventoryItem.location_id == location_id)
        if product_id is not None:
            stmt = stmt.where(InventoryItem.product_id == product_id)
        if low_stock:
            stmt = stmt.where(
                InventoryItem.reorder_point.is_not(None),
                InventoryItem.quantity - InventoryItem.reserved_quantity <= InventoryItem.reorder_point,
            )
        stmt = item_repository.apply_scope_query(stmt, to_auth_context(actor_user))
        rows = session.scalars(stmt.order_by(InventoryItem.created_at, InventoryItem.id).offset(offset).limit(limit)).all()
        return [self._read(ItemRead, item_repository, row, actor_user) for row in rows]

    def get_item(self, session: Session, actor_user: ActorUser, item_id: uuid.UUID) -> ItemRead:
        item = self._visible(session, actor_user, item_repository, item_id, "inventory item")
        return self._read(ItemRead, item_repository, item, actor_user)

    def update_item(self, session: Session, actor_user: ActorUser, item_id: uuid.UUID, dto: ItemUpdate) -> ItemRead:
        bind(session, actor_user)
        item = self._visible(session, actor_user, item_repository, item_id, "inventory item")
        changes = dto.model_dump(exclude_unset=True)
        expected = changes.pop("version", None)
        self._authorize(actor_user, item_repository, changes)
        check_version(item, expected, "inventory_items")
        for key, value in changes.items():
            if value is not None or key in {"reorder_point", "reorder_quantity", "lead_time_days", "storage_location"}:
                setattr(item, key, value)
        commit_or_conflict(session, "inventory item could not be updated")
        session.refresh(item)
        return self._read(ItemRead, item_repository, item, actor_user)

    def receive_stock(self, session: Session, actor_user: ActorUser, dto: StockReceipt) -> StockMovementRead:
        """Book inbound stock at a location, re-averaging the unit cost of the on-hand quantity."""

        if dto.transaction_type not in INBOUND_TYPES:
            raise unprocessable(f"{dto.transaction_type.value} is not an inbound transaction type")
        bind(session, actor_user)
        self._authorize(actor_user, transaction_repository, dto.model_dump(exclude_unset=True))
        item = self._receive(
            session,
            product_id=dto.product_id,
            location_id=dto.location_id,
            quantity=dto.quantity,
            unit_cost=dto.unit_cost,
            unit_of_measure=dto.unit_of_measure,
            lot_number=dto.lot_number,
            serial_numbers=dto.serial_numbers,
            expiry_date=dto.expiry_date,
        )
        transaction = self._record(
            session,
            dto.transaction_type,
            product_id=dto.product_id,
            to_location_id=dto.location_id,
            quantity=dto.quantity,
            unit_cost=dto.unit_cost,
            unit_of_measure=dto.unit_of_measure,
            lot_number=dto.lot_number,
            reference_type=dto.reference_type,
            reference_id=dto.reference_id,
            notes=dto.notes,
        )
        return self._commit_movement(session, actor_user, [item], transaction)

    def reserve_stock(self, session: Session, actor_user: ActorUser, dto: StockReservation) -> StockMovementRead:
        bind(session, actor_user)
        item = self._stock_at(session, dto.product_id, dto.location_id)
        if item.quantity - item.reserved_quantity < dto.quantity:
            raise _conflict("insufficient available stock")
        item.reserved_quantity += dto.quantity
        publish(
            "inventory.stock.reserved",
            actor_user,
            {
                "item_id": str(item.id),
                "quantity": str(dto.quantity),
                "reference_type": dto.reference_type,
                "reference_id": str(dto.reference_id) if dto.reference_id else None,
            },
        )
        return self._commit_movement(session, actor_user, [item], None)

    def release_reservation(self, session: Session, actor_user: ActorUser, dto: StockReservation) -> StockMovementRead:
        bind(session, actor_user)
        item = self._stock_at(session, dto.product_id, dto.location_id)
        if dto.quantity > item.reserved_quantity:
            raise unprocessable("cannot release more than the reserved quantity")
        item.reserved_quantity -= dto.quantity
        publish("inventory.stock.released", actor_user, {"item_id": str(item.id), "quantity": str(dto.quantity)})
        return self._commit_movement(session, actor_user, [item], None)

    def transfer_stock(self, session: Session, actor_user: ActorUser, dto: StockTransfer) -> StockMovementRead:
        bind(session, actor_user)
        self._authorize(actor_user, transaction_repository, dto.model_dump(exclude_unset=True))
        source = self._stock_at(session, dto.product_id, dto.from_location_id)
        if source.quantity - source.reserved_quantity < dto.quantity:
            raise _conflict("insufficient available stock")
        source.quantity -= dto.quantity
        self._release_capacity(session, dto.from_location_id, dto.quantity)
        target = self._receive(
            session,
            product_id=dto.product_id,
            location_id=dto.to_location_id,
            quantity=dto.quantity,
            unit_cost=source.unit_cost,
            unit_of_measure=source.unit_of_measure,
            valuation_method=source.valuation_method,
        )
        transaction = self._record(
            session,
            InventoryTransactionType.TRANSFER,
            product_id=dto.product_id,
            from_location_id=dto.from_location_id,
            to_location_id=dto.to_location_id,
            quantity=dto.quantity,
            unit_cost=source.unit_cost,
            unit_of_measure=source.unit_of_measure,
            notes=dto.notes,
        )
        return self._commit_movement(session, actor_user, [source, target], transaction)

    def adjust_stock(self, session: Session, actor_user: ActorUser, dto: StockAdjustment) -> StockMovementRead:
        """Set on-hand quantity to a physical count; never below what is reserved."""

        if dto.transaction_type not in ADJUSTMENT_TYPES:
            raise unprocessable(f"{dto.transaction_type.value} is not an adjustment transaction type")
        bind(session, actor_user)
        self._authorize(actor_user, transaction_repository, dto.model_dump(exclude_unset=True))
        item = self._stock_at(session, dto.product_id, dto.location_id)
        if dto.counted_quantity < item.reserved_quantity:
            raise unprocessable("cannot adjust below the reserved quantity")
        delta = dto.counted_quantity - item.quantity
        if dto.transaction_type == InventoryTransactionType.SCRAP and delta >= 0:
            raise unprocessable("scrap must reduce the on-hand quantity")

        item.quantity = dto.counted_quantity
        item.last_counted_at = utcnow()
        item.last_counted_by = actor_user.actor_uuid
        transaction = None
        if delta != 0:
            if delta > 0:
                self._claim_capacity(session, dto.location_id, delta)
            else:
                self._release_capacity(session, dto.location_id, -delta)
            transaction = self._record(
                session,
                dto.transaction_type,
                product_id=dto.product_id,
                from_location_id=dto.location_id if delta < 0 else None,
                to_location_id=dto.location_id if delta > 0 else None,
                quantity=abs(delta),
                unit_cost=item.unit_cost,
                unit_of_measure=item.unit_of_measure,
                reason_code=dto.reason_code,
                notes=dto.notes,
            )
        return self._commit_movement(session, actor_user, [item], transaction)

    def list_transactions(
        self,
        session: Session,
        actor_user: ActorUser,
        *,
        product_id: uuid.UUID | None = None,
        location_id: uuid.UUID | None = None,
        transaction_type: InventoryTransactionType | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[TransactionRead]:
        stmt = select(InventoryTransaction).where(InventoryTransaction.deleted_at.is_(None))
        if product_id is not None:
            stmt = stmt.where(InventoryTransaction.product_id == product_id)
        if location_id is not None:
            stmt = stmt.where(
                (InventoryTransaction.from_location_id == location_id) | (InventoryTransaction.to_location_id == location_id)
            )
        if transaction_type is not None:
            stmt = stmt.where(InventoryTransaction.transaction_type == transaction_type)
        stmt = transaction_repository.apply_scope_query(stmt, to_auth_context(actor_user))
        rows = session.scalars(
            stmt.order_by(InventoryTransaction.transaction_date.desc(), InventoryTransaction.transaction_number.desc())
            .offset(offset)
            .limit(limit)
        ).all()
        return [self._read(TransactionRead, transaction_repository, row, actor_user) for row in rows]

    # purchase orders

    def create_purchase_order(self, session: Session, actor_user: ActorUser, dto: PurchaseOrderCreate) -> PurchaseOrderRead:
        bind(session, actor_user)
        self._authorize(actor_user, purchase_order_repository, dto.model_dump(exclude={"items"}, exclude_unset=True))
        self._require_live(session, CRMContact, dto.supplier_id, "supplier_id")
        self._require_live(session, InventoryLocation, dto.destination_location_id, "destination_location_id")

        order = PurchaseOrder(
            po_number=next_sequence_number(session, PurchaseOrder, PurchaseOrder.po_number, "PO"),
            supplier_id=dto.supplier_id,
            order_date=dto.order_date or utcnow().date(),
            expected_date=dto.expected_date,
            currency=dto.currency,
            exchange_rate=dto.exchange_rate,
            shipping_method=dto.shipping_method,
            destination_location_id=dto.destination_location_id,
            notes=dto.notes,
            terms_conditions=dto.terms_conditions,
            order_metadata=dto.metadata,
        )
        if order.expected_date is not None and order.expected_date < order.order_date:
            raise unprocessable("expected_date cannot precede order_date")
        session.add(order)
        flush_or_conflict(session, "purchase order number already in use")

        subtotal = Decimal("0")
        tax_total = Decimal("0")
        for line in dto.items:
            self._require_live(session, CRMProduct, line.product_id, "product_id")
            net = line.quantity * line.unit_price
            tax = (net * line.tax_rate / 100).quantize(CENT)
            session.add(
                PurchaseOrderItem(
                    purchase_order_id=order.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_of_measure=line.unit_of_measure,
                    unit_price=line.unit_price,
                    tax_rate=line.tax_rate,
                    tax_amount=tax,
                    total_amount=net + tax,
                    notes=line.notes,
                )
            )
            subtotal += net
            tax_total += tax
        order.subtotal = subtotal
        order.tax_amount = tax_total
        order.total_amount = subtotal + tax_total
        publish(
            "inventory.purchase_order.created",
            actor_user,
            {"id": str(order.id), "po_number": order.po_number, "total_amount": str(order.total_amount)},
        )
        commit_or_conflict(session, "purchase order could not be created")
        session.refresh(order)
        logger.info("inventory.po_created", extra={"purchase_order_id": str(order.id)})
        return self._order_read(session, order, actor_user)

    def get_purchase_order(self, session: Session, actor_user: ActorUser, order_id: uuid.UUID) -> PurchaseOrderRead:
        order = self._visible(session, actor_user, purchase_order_repository, order_id, "purchase order")
        return self._order_read(session, order, actor_user)

    def list_purchase_orders(
        self,
        session: Session,
        actor_user: ActorUser,
        *,
        status_value: PurchaseOrderStatus | None = None,
        supplier_id: uuid.UUID | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[PurchaseOrderRead]:
        stmt = select(PurchaseOrder).where(PurchaseOrder.deleted_at.is_(None))
        if status_value is not None:
            stmt = stmt.where(PurchaseOrder.status == status_value)
        if supplier_id is not None:
            stmt = stmt.where(PurchaseOrder.supplier_id == supplier_id)
        stmt = purchase_order_repository.apply_scope_query(stmt, to_auth_context(actor_user))
        rows = session.scalars(stmt.order_by(PurchaseOrder.po_number.desc()).offset(offset).limit(limit)).all()
        return [self._order_read(session, row, actor_user) for row in rows]

    def approve_purchase_order(
        self,
        session: Session,
        actor_user: ActorUser,
        order_id: uuid.UUID,
        dto: VersionedRequest,
    ) -> PurchaseOrderRead:
        bind(session, actor_user)
        order = self._visible(session, actor_user, purchase_order_repository, order_id, "purchase order")
        check_version(order, dto.version, "purchase_orders")
        if order.status not in APPROVABLE:
            raise _conflict(f"purchase order is {order.status.value}")
        order.status = PurchaseOrderStatus.APPROVED
        order.approved_at = utcnow()
        order.approved_by = actor_user.actor_uuid
        publish("inventory.purchase_order.approved", actor_user, {"id": str(order.id)})
        commit_or_conflict(session, "purchase order could not be approved")
        session.refresh(order)
        return self._order_read(session, order, actor_user)

    def receive_purchase_order_items(
        self,
        session: Session,
        actor_user: ActorUser,
        order_id: uuid.UUID,
        dto: PurchaseOrderReceipt,
    ) -> PurchaseOrderRead:
        """Receive order lines into stock; all outstanding quantities when no lines are given."""

        bind(session, actor_user)
        order = self._visible(session, actor_user, purchase_order_repository, order_id, "purchase order")
        check_version(order, dto.version, "purchase_orders")
        if order.status not in RECEIVABLE:
            raise _conflict(f"purchase order is {order.status.value}")
        location_id = dto.location_id or order.destination_location_id
        if location_id is None:
            raise unprocessable("location_id is required when the order has no destination location")

        lines = self._order_items(session, order.id)
        by_id = {line.id: line for line in lines}
        requested = [(line.id, line.quantity - line.received_quantity) for line in lines]
        if dto.lines:
            requested = [(entry.item_id, entry.quantity) for entry in dto.lines]
        for item_id, quantity in requested:
            line = by_id.get(item_id)
            if line is None:
                raise unprocessable(f"item {item_id} is not part of this purchase order")
            if quantity <= 0:
                continue
            if line.received_quantity + quantity > line.quantity:
                raise unprocessable("received quantity cannot exceed the ordered quantity")
            line.received_quantity += quantity
            self._receive(
                session,
                product_id=line.product_id,
                location_id=location_id,
                quantity=quantity,
                unit_cost=line.unit_price,
                unit_of_measure=line.unit_of_measure,
            )
            self._record(
                session,
                InventoryTransactionType.PURCHASE,
                product_id=line.product_id,
                to_location_id=location_id,
                quantity=quantity,
                unit_cost=line.unit_price,
                unit_of_measure=line.unit_of_measure,
                reference_type="purchase_order",
                reference_id=order.id,
            )

        if all(line.received_quantity >= line.quantity for line in lines):
            order.status = PurchaseOrderStatus.COMPLETE
            order.delivery_date = max(utcnow().date(), order.expected_date or order.order_date)
        else:
            order.status = PurchaseOrderStatus.PARTIAL
        if dto.tracking_number is not None:
            order.tracking_number = dto.tracking_number
        publish(
            "inventory.purchase_order.received",
            actor_user,
            {"id": str(order.id), "status": order.status.value, "location_id": str(location_id)},
        )
        commit_or_conflict(session, "purchase order could not be received")
        session.refresh(order)
        return self._order_read(session, order, actor_user)

    def cancel_purchase_order(
        self,
        session: Session,
        actor_user: ActorUser,
        order_id: uuid.UUID,
        dto: PurchaseOrderCancel,
    ) -> PurchaseOrderRead:
        bind(session, actor_user)
        order = self._visible(session, actor_user, purchase_order_repository, order_id, "purchase order")
        check_version(order, dto.version, "purchase_orders")
        if order.status not in CANCELLABLE:
            raise _conflict(f"purchase order is {order.status.value}")
        order.status = PurchaseOrderStatus.CANCELLED
        order.cancelled_at = utcnow()
        order.cancellation_reason = dto.reason
        publish("inventory.purchase_order.cancelled", actor_user, {"id": str(order.id), "reason": dto.reason})
        commit_or_conflict(session, "purchase order could not be cancelled")
        session.refresh(order)
        return self._order_read(session, order, actor_user)

    # helpers

    def _visible(
        self,
        session: Session,
        actor_user: ActorUser,
        repository: BaseRepository,
        record_id: uuid.UUID,
        label: str,
    ) -> Any:
        model = repository.model
        stmt = select(model).where(model.id == record_id, model.deleted_at.is_(None))
        record = session.scalar(repository.apply_scope_query(stmt, to_auth_context(actor_user)))
        if record is None:
            raise not_found(label)
        return record

    @staticmethod
    def _authorize(actor_user: ActorUser, repository: BaseRepository, payload: dict[str, Any]) -> None:
        with security_errors_as_http():
            repository.validate_write_security(payload, to_auth_context(actor_user))

    @staticmethod
    def _read(schema: Any, repository: BaseRepository, record: Any, actor_user: ActorUser) -> Any:
        payload = schema.model_validate(record).model_dump()
        return schema.model_validate(repository.apply_read_security(payload, to_auth_context(actor_user)))

    @staticmethod
    def _require_live(session: Session, model: Any, record_id: uuid.UUID | None, field: str) -> Any:
        if record_id is None:
            return None
        record = session.scalar(select(model).where(model.id == record_id, model.deleted_at.is_(None)))
        if record is None:
            raise unprocessable(f"{field} does not reference a live record")
        return record

    @staticmethod
    def _is_descendant(session: Session, candidate: uuid.UUID, ancestor: uuid.UUID) -> bool:
        seen: set[uuid.UUID] = set()
        current: uuid.UUID | None = candidate
        while current is not None and current not in seen:
            if current == ancestor:
                return True
            seen.add(current)
            current = session.scalar(select(InventoryLocation.parent_id).where(InventoryLocation.id == current))
        return False

    @staticmethod
    def _stock_at(session: Session, product_id: uuid.UUID, location_id: uuid.UUID) -> InventoryItem:
        item = session.scalar(
            select(InventoryItem).where(
                InventoryItem.product_id == product_id,
                InventoryItem.location_id == location_id,
                InventoryItem.deleted_at.is_(None),
            )
        )
        if item is None:
            raise not_found("inventory item")
        return item

    def _receive(
        self,
        session: Session,
        *,
        product_id: uuid.UUID,
        location_id: uuid.UUID,
        quantity: Decimal,
        unit_cost: Decimal | None,
        unit_of_measure: str,
        valuation_method: Any = None,
        lot_number: str | None = None,
        serial_numbers: list[str] | None = None,
        expiry_date: Any = None,
    ) -> InventoryItem:
        self._require_live(session, CRMProduct, product_id, "product_id")
        location = self._require_live(session, InventoryLocation, location_id, "location_id")
        if not location.is_active:
            raise unprocessable("location is inactive")
        self._claim_capacity(session, location_id, quantity)

        item = session.scalar(
            select(InventoryItem).where(
                InventoryItem.product_id == product_id,
                InventoryItem.location_id == location_id,
                InventoryItem.deleted_at.is_(None),
            )
        )
        if item is None:
            item = InventoryItem(
                product_id=product_id,
                location_id=location_id,
                quantity=Decimal("0"),
                reserved_quantity=Decimal("0"),
                unit_of_measure=unit_of_measure,
            )
            if valuation_method is not None:
                item.valuation_method = valuation_method
            session.add(item)
        elif item.unit_of_measure != unit_of_measure:
            raise unprocessable(f"stock at this location is kept in {item.unit_of_measure}")

        if unit_cost is not None:
            on_hand = item.quantity or Decimal("0")
            if item.unit_cost is None or on_hand == 0:
                item.unit_cost = unit_cost
            else:
                item.unit_cost = ((on_hand * item.unit_cost + quantity * unit_cost) / (on_hand + quantity)).quantize(CENT)
        item.quantity = (item.quantity or Decimal("0")) + quantity
        if lot_number is not None:
            item.lot_number = lot_number
        if serial_numbers:
            item.serial_numbers = [*(item.serial_numbers or []), *serial_numbers]
        if expiry_date is not None:
            item.expiry_date = expiry_date
        return item

    @staticmethod
    def _claim_capacity(session: Session, location_id: uuid.UUID, quantity: Decimal) -> None:
        location = session.get(InventoryLocation, location_id)
        if location is None or location.available_capacity is None:
            return
        if quantity > location.available_capacity:
            raise _conflict("location capacity exceeded")
        location.available_capacity -= quantity

    @staticmethod
    def _release_capacity(session: Session, location_id: uuid.UUID, quantity: Decimal) -> None:
        location = session.get(InventoryLocation, location_id)
        if location is None or location.available_capacity is None:
            return
        location.available_capacity = min(location.total_capacity, location.available_capacity + quantity)

    @staticmethod
    def _record(
        session: Session,
        transaction_type: InventoryTransactionType,
        *,
        product_id: uuid.UUID,
        quantity: Decimal,
        unit_of_measure: str,
        from_location_id: uuid.UUID | None = None,
        to_location_id: uuid.UUID | None = None,
        unit_cost: Decimal | None = None,
        **extra: Any,
    ) -> InventoryTransaction:
        transaction = InventoryTransaction(
            transaction_number=next_sequence_number(
                session,
                InventoryTransaction,
                InventoryTransaction.transaction_number,
                "ITX",
            ),
            transaction_type=transaction_type,
            transaction_date=utcnow(),
            product_id=product_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            quantity=quantity,
            unit_of_measure=unit_of_measure,
            unit_cost=unit_cost,
            total_cost=None if unit_cost is None else quantity * unit_cost,
            **extra,
        )
        session.add(transaction)
        flush_or_conflict(session, "inventory transaction number already in use")
        observe_inventory_movement(transaction_type.value)
        return transaction

    def _commit_movement(
        self,
        session: Session,
        actor_user: ActorUser,
        items: list[InventoryItem],
        transaction: InventoryTransaction | None,
    ) -> StockMovementRead:
        flush_or_conflict(session, "stock level would violate an inventory rule")
        if transaction is not None:
            publish(
                f"inventory.stock.{transaction.transaction_type.value}",
                actor_user,
                {
                    "transaction_id": str(transaction.id),
                    "product_id": str(transaction.product_id),
                    "quantity": str(transaction.quantity),
                },
            )
        commit_or_conflict(session, "stock level would violate an inventory rule")
        for item in items:
            session.refresh(item)
        if transaction is not None:
            session.refresh(transaction)
        return StockMovementRead(
            items=[self._read(ItemRead, item_repository, item, actor_user) for item in items],
            transaction=self._read(TransactionRead, transaction_repository, transaction, actor_user) if transaction else None,
        )

    @staticmethod
    def _order_items(session: Session, order_id: uuid.UUID) -> list[PurchaseOrderItem]:
        return list(
            session.scalars(
                select(PurchaseOrderItem)
                .where(PurchaseOrderItem.purchase_order_id == order_id, PurchaseOrderItem.deleted_at.is_(None))
                .order_by(PurchaseOrderItem.created_at, PurchaseOrderItem.id)
            ).all()
        )

    def _order_read(self, session: Session, order: PurchaseOrder, actor_user: ActorUser) -> PurchaseOrderRead:
        read = self._read(PurchaseOrderRead, purchase_order_repository, order, actor_user)
        read.items = [PurchaseOrderItemRead.model_validate(line) for line in self._order_items(session, order.id)]
        return read


inventory_service = InventoryService()
