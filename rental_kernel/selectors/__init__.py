"""Read-only selectors for the rental kernel."""

from rental_kernel.selectors.audit_log_selector import AuditLogSelector
from rental_kernel.selectors.bulk_operation_selector import BulkOperationSelector
from rental_kernel.selectors.inventory_selector import InventorySelector, item_info

__all__ = [
    "AuditLogSelector",
    "BulkOperationSelector",
    "InventorySelector",
    "item_info",
]
