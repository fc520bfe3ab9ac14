import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from crmhub.api.deps import get_current_user, http_error_response, require_permission
from crmhub.core.database import get_db
from crmhub.enums import InventoryTransactionType, PurchaseOrderStatus
from crmhub.inventory.schemas import (
    ItemRead,
    ItemUpdate,
    LocationCreate,
    LocationRead,
    LocationUpdate,
    PurchaseOrderCancel,
    PurchaseOrderCreate,
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
from crmhub.inventory.service import inventory_service as service
from crmhub.platform.security.actor import ActorUser


router = APIRouter(prefix="/api/inventory", tags=["inventory"])


# locations


@router.get("/locations", response_model=list[LocationRead])
def list_locations(
    request: Request,
    active_only: bool = Query(default=True),
    parent_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.read")
        return service.list_locations(db, user, active_only=active_only, parent_id=parent_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_location_list_failed")


@router.post("/locations", response_model=LocationRead, status_code=status.HTTP_201_CREATED)
def create_location(
    request: Request,
    dto: LocationCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.create")
        return service.create_location(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_location_create_failed")


@router.get("/locations/{location_id}", response_model=LocationRead)
def get_location(
    request: Request,
    location_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.read")
        return service.get_location(db, user, location_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_location_get_failed")


@router.patch("/locations/{location_id}", response_model=LocationRead)
def update_location(
    request: Request,
    location_id: uuid.UUID,
    dto: LocationUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.update")
        return service.update_location(db, user, location_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_location_update_failed")


@router.delete("/locations/{location_id}", response_model=None)
def delete_location(
    request: Request,
    location_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.delete")
        service.delete_location(db, user, location_id)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_location_delete_failed")


# stock


@router.get("/items", response_model=list[ItemRead])
def list_items(
    request: Request,
    location_id: uuid.UUID | None = Query(default=None),
    product_id: uuid.UUID | None = Query(default=None),
    low_stock: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.read")
        return service.list_items(
            db,
            user,
            location_id=location_id,
            product_id=product_id,
            low_stock=low_stock,
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_item_list_failed")


@router.get("/items/{item_id}", response_model=ItemRead)
def get_item(
    request: Request,
    item_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.read")
        return service.get_item(db, user, item_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_item_get_failed")


@router.patch("/items/{item_id}", response_model=ItemRead)
def update_item(
    request: Request,
    item_id: uuid.UUID,
    dto: ItemUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.update")
        return service.update_item(db, user, item_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_item_update_failed")


@router.post("/stock/receive", response_model=StockMovementRead, status_code=status.HTTP_201_CREATED)
def receive_stock(
    request: Request,
    dto: StockReceipt,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.update")
        return service.receive_stock(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_receive_failed")


@router.post("/stock/reserve", response_model=StockMovementRead)
def reserve_stock(
    request: Request,
    dto: StockReservation,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.update")
        return service.reserve_stock(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_reserve_failed")


@router.post("/stock/release", response_model=StockMovementRead)
def release_reservation(
    request: Request,
    dto: StockReservation,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.update")
        return service.release_reservation(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_release_failed")


@router.post("/stock/transfer", response_model=StockMovementRead, status_code=status.HTTP_201_CREATED)
def transfer_stock(
    request: Request,
    dto: StockTransfer,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.update")
        return service.transfer_stock(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_transfer_failed")


@router.post("/stock/adjust", response_model=StockMovementRead)
def adjust_stock(
    request: Request,
    dto: StockAdjustment,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.update")
        return service.adjust_stock(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_adjust_failed")


@router.get("/transactions", response_model=list[TransactionRead])
def list_transactions(
    request: Request,
    product_id: uuid.UUID | None = Query(default=None),
    location_id: uuid.UUID | None = Query(default=None),
    transaction_type: InventoryTransactionType | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.read")
        return service.list_transactions(
            db,
            user,
            product_id=product_id,
            location_id=location_id,
            transaction_type=transaction_type,
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_transaction_list_failed")


# purchase orders


@router.get("/purchase-orders", response_model=list[PurchaseOrderRead])
def list_purchase_orders(
    request: Request,
    status_value: PurchaseOrderStatus | None = Query(default=None, alias="status"),
    supplier_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.read")
        return service.list_purchase_orders(
            db,
            user,
            status_value=status_value,
            supplier_id=supplier_id,
            limit=limit,
            offset=offset,
        )
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_po_list_failed")


@router.post("/purchase-orders", response_model=PurchaseOrderRead, status_code=status.HTTP_201_CREATED)
def create_purchase_order(
    request: Request,
    dto: PurchaseOrderCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.create")
        return service.create_purchase_order(db, user, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_po_create_failed")


@router.get("/purchase-orders/{order_id}", response_model=PurchaseOrderRead)
def get_purchase_order(
    request: Request,
    order_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.read")
        return service.get_purchase_order(db, user, order_id)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_po_get_failed")


@router.post("/purchase-orders/{order_id}/approve", response_model=PurchaseOrderRead)
def approve_purchase_order(
    request: Request,
    order_id: uuid.UUID,
    dto: VersionedRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.approve")
        return service.approve_purchase_order(db, user, order_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_po_approve_failed")


@router.post("/purchase-orders/{order_id}/receive", response_model=PurchaseOrderRead)
def receive_purchase_order(
    request: Request,
    order_id: uuid.UUID,
    dto: PurchaseOrderReceipt,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.update")
        return service.receive_purchase_order_items(db, user, order_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_po_receive_failed")


@router.post("/purchase-orders/{order_id}/cancel", response_model=PurchaseOrderRead)
def cancel_purchase_order(
    request: Request,
    order_id: uuid.UUID,
    dto: PurchaseOrderCancel,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Any:
    try:
        require_permission(user, "inventory.update")
        return service.cancel_purchase_order(db, user, order_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, "inventory_po_cancel_failed")
