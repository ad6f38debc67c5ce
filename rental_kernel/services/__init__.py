"""Services for the rental kernel (write side)."""

from rental_kernel.services.audit_log_service import AuditLogService
from rental_kernel.services.bulk_edit_engine import BulkEditEngine
from rental_kernel.services.category_service import CategoryService
from rental_kernel.services.export_coordinator import ExportCoordinator
from rental_kernel.services.inventory_orchestrator import InventoryOrchestrator
from rental_kernel.services.item_mutation_service import (
    ItemMutationService,
    record_status_change,
)
from rental_kernel.services.serial_number_service import SerialNumberService

__all__ = [
    "AuditLogService",
    "BulkEditEngine",
    "CategoryService",
    "ExportCoordinator",
    "InventoryOrchestrator",
    "ItemMutationService",
    "SerialNumberService",
    "record_status_change",
]
