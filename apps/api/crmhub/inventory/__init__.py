from crmhub.inventory.models import InventoryItem, InventoryLocation, InventoryTransaction, PurchaseOrder, PurchaseOrderItem

__all__ = [
    "InventoryLocation",
    "InventoryItem",
    "InventoryTransaction",
    "PurchaseOrder",
    "PurchaseOrderItem",
]
