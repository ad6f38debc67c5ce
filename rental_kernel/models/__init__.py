"""ORM models for the rental kernel."""

from rental_kernel.models.audit_log import AuditAction, AuditLogEntry
from rental_kernel.models.bulk_operation import InventoryBulkOperation
from rental_kernel.models.category import Category
from rental_kernel.models.inventory_export import InventoryExport
from rental_kernel.models.inventory_item import InventoryItem
from rental_kernel.models.serial_sequence import SerialNumberSequence, format_serial
from rental_kernel.models.status_change import InventoryItemStatusChange

__all__ = [
    "AuditAction",
    "AuditLogEntry",
    "Category",
    "InventoryBulkOperation",
    "InventoryExport",
    "InventoryItem",
    "InventoryItemStatusChange",
    "SerialNumberSequence",
    "format_serial",
]
