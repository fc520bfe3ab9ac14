from __future__ import annotations

from crmhub.inventory.models import InventoryItem, InventoryLocation, InventoryTransaction, PurchaseOrder, PurchaseOrderItem
from crmhub.platform.security.repository import PermissionGatedRepository


class LocationRepository(PermissionGatedRepository):
    resource = "inventory_locations"
    model = InventoryLocation


class ItemRepository(PermissionGatedRepository):
    resource = "inventory_items"
    model = InventoryItem
    read_only_fields = frozenset(
        {"quantity", "reserved_quantity", "available_quantity", "total_value", "unit_cost", "product_id", "location_id"}
    )


class TransactionRepository(PermissionGatedRepository):
    resource = "inventory_transactions"
    model = InventoryTransaction
    read_only_fields = frozenset({"transaction_number"})


class PurchaseOrderRepository(PermissionGatedRepository):
    resource = "purchase_orders"
    model = PurchaseOrder
    read_only_fields = frozenset({"po_number", "subtotal", "tax_amount", "total_amount", "approved_at", "approved_by"})


class PurchaseOrderItemRepository(PermissionGatedRepository):
    resource = "purchase_order_items"
    model = PurchaseOrderItem
    read_only_fields = frozenset({"received_quantity", "tax_amount", "total_amount"})


location_repository = LocationRepository()
item_repository = ItemRepository()
transaction_repository = TransactionRepository()
purchase_order_repository = PurchaseOrderRepository()
purchase_order_item_repository = PurchaseOrderItemRepository()
