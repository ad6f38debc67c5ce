"""
Data Transfer Objects for the rental kernel.

Frozen dataclasses passed across the service boundary.  Inputs use ``None``
for "not provided"; outputs are snapshots detached from the ORM session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID

from rental_kernel.domain.values import (
    AvailabilityStatus,
    BulkItemOutcome,
    BulkOperationStatus,
    ExportFormat,
    ExportStatus,
    ExportType,
    ItemStatus,
    ItemType,
    SerialNumberSource,
    StatusChangeType,
)


# =============================================================================
# Request-side inputs
# =============================================================================


@dataclass(frozen=True)
class RequestContext:
    """Where a mutation came from.  Stored on history, export and audit rows."""

    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class ItemCreateSpec:
    """
    Fields for a new item.

    Serialized items need ``serial_number`` or ``auto_generate_serial``.
    Non-serialized items need ``quantity``.
    """

    name: str
    category_id: UUID
    item_type: ItemType
    description: str | None = None
    serial_number: str | None = None
    auto_generate_serial: bool = False
    quantity: int | None = None
    quantity_unit: str | None = None
    condition_notes: str | None = None


@dataclass(frozen=True)
class ItemPatch:
    """General field edit.  Only non-None fields are applied.

    ``item_type`` may change only on items without rental history; the
    variant fields needed by the new type ride along in the same patch.
    """

    name: str | None = None
    description: str | None = None
    category_id: UUID | None = None
    status: ItemStatus | None = None
    item_type: ItemType | None = None
    serial_number: str | None = None
    auto_generate_serial: bool = False
    quantity: int | None = None
    quantity_unit: str | None = None


@dataclass(frozen=True)
class SerializedFieldsPatch:
    serial_number: str | None = None
    serial_number_source: SerialNumberSource | None = None
    condition_notes: str | None = None
    last_maintenance_date: date | None = None
    next_maintenance_due_date: date | None = None


@dataclass(frozen=True)
class BulkOperations:
    """Sparse patch applied to every item of a bulk edit."""

    category_id: UUID | None = None
    append_maintenance_notes: str | None = None
    status: ItemStatus | None = None
    availability_status: AvailabilityStatus | None = None
    status_change_reason: str | None = None

    def is_empty(self) -> bool:
        return (
            self.category_id is None
            and not self.append_maintenance_notes
            and self.status is None
            and self.availability_status is None
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "category_id": str(self.category_id) if self.category_id else None,
            "append_maintenance_notes": self.append_maintenance_notes,
            "status": self.status.value if self.status else None,
            "availability_status": (
                self.availability_status.value if self.availability_status else None
            ),
            "status_change_reason": self.status_change_reason,
        }


# =============================================================================
# Snapshots
# =============================================================================


@dataclass(frozen=True)
class CategoryInfo:
    id: UUID
    tenant_id: UUID
    name: str
    description: str | None
    is_active: bool


@dataclass(frozen=True)
class InventoryItemInfo:
    """Read-only snapshot of an inventory item."""

    id: UUID
    tenant_id: UUID
    name: str
    description: str | None
    category_id: UUID
    item_type: ItemType
    serial_number: str | None
    serial_number_source: SerialNumberSource | None
    previous_serial_number: str | None
    quantity: int | None
    quantity_unit: str | None
    allocated_quantity: int | None
    availability_status: AvailabilityStatus
    status: ItemStatus
    version: int
    has_rental_history: bool
    last_status_change_reason: str | None
    expected_resolution_date: date | None
    condition_notes: str | None
    last_maintenance_date: date | None
    next_maintenance_due_date: date | None
    created_at: datetime | None
    updated_at: datetime | None

    @property
    def available_quantity(self) -> int | None:
        if self.quantity is None:
            return None
        return self.quantity - (self.allocated_quantity or 0)


@dataclass(frozen=True)
class ItemChange:
    """One field-level difference.  Values are JSON-friendly."""

    field: str
    old_value: Any
    new_value: Any

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "old_value": self.old_value, "new_value": self.new_value}


@dataclass(frozen=True)
class ItemMutationResult:
    item: InventoryItemInfo
    changes: tuple[ItemChange, ...] = ()


@dataclass(frozen=True)
class StatusChangeResult:
    item_id: UUID
    previous_status: AvailabilityStatus
    new_status: AvailabilityStatus
    reason: str | None
    expected_resolution_date: date | None
    change_id: UUID
    changed_at: datetime
    version: int


@dataclass(frozen=True)
class StatusTransitionOption:
    status: AvailabilityStatus
    label: str
    requires_reason: bool
    requires_resolution_date: bool


@dataclass(frozen=True)
class StatusRestriction:
    status: AvailabilityStatus
    reason: str


@dataclass(frozen=True)
class StatusOptions:
    current_status: AvailabilityStatus
    valid_transitions: tuple[StatusTransitionOption, ...]
    restrictions: tuple[StatusRestriction, ...]


@dataclass(frozen=True)
class StatusChangeRecord:
    id: UUID
    item_id: UUID
    item_version: int
    previous_status: AvailabilityStatus
    new_status: AvailabilityStatus
    change_reason: str | None
    expected_resolution_date: date | None
    change_type: StatusChangeType
    changed_by: UUID
    ip_address: str | None
    user_agent: str | None
    created_at: datetime


@dataclass(frozen=True)
class StatusHistoryPage:
    records: tuple[StatusChangeRecord, ...]
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int

    @property
    def has_next_page(self) -> bool:
        return self.current_page < self.total_pages

    @property
    def has_previous_page(self) -> bool:
        return self.current_page > 1


@dataclass(frozen=True)
class SerializedUpdateResult:
    item: InventoryItemInfo
    changes: tuple[ItemChange, ...]
    serial_number_changed: bool
    historical_link_maintained: bool


@dataclass(frozen=True)
class QuantityImpact:
    availability_change: int
    significant_reduction: bool


@dataclass(frozen=True)
class QuantityUpdateResult:
    item_id: UUID
    previous_quantity: int
    new_quantity: int
    allocated_quantity: int
    available_quantity: int
    quantity_unit: str | None
    change_reason: str | None
    impact: QuantityImpact
    version: int


@dataclass(frozen=True)
class SerialSequenceInfo:
    tenant_id: UUID
    prefix: str
    next_number: int
    padding_length: int

    @property
    def next_serial(self) -> str:
        return f"{self.prefix}{self.next_number:0{self.padding_length}d}"


# =============================================================================
# Bulk edit
# =============================================================================


@dataclass(frozen=True)
class BulkItemError:
    """``field`` is the operation field, or "item"/"general" for whole-item failures."""

    field: str
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "code": self.code, "message": self.message}


@dataclass(frozen=True)
class BulkItemResult:
    item_id: UUID
    status: BulkItemOutcome
    changes: tuple[ItemChange, ...] = ()
    errors: tuple[BulkItemError, ...] = ()


@dataclass(frozen=True)
class BulkEditSummary:
    total_items: int
    successful_items: int
    failed_items: int
    partially_successful: int


@dataclass(frozen=True)
class BulkEditResult:
    operation_id: UUID
    summary: BulkEditSummary
    results: tuple[BulkItemResult, ...] = field(default_factory=tuple)

    def result_for(self, item_id: UUID) -> BulkItemResult | None:
        for result in self.results:
            if result.item_id == item_id:
                return result
        return None


@dataclass(frozen=True)
class BulkOperationInfo:
    id: UUID
    tenant_id: UUID
    status: BulkOperationStatus
    total_items: int
    processed_items: int
    successful_items: int
    failed_items: int
    partially_successful: int
    operation_parameters: dict[str, Any]
    failure_details: list[dict[str, Any]] | None
    created_at: datetime
    completed_at: datetime | None

    @property
    def progress_percentage(self) -> int:
        if self.total_items == 0:
            return 100
        return int(self.processed_items * 100 / self.total_items)


# =============================================================================
# Exports
# =============================================================================


@dataclass(frozen=True)
class ExportInfo:
    id: UUID
    tenant_id: UUID
    export_type: ExportType
    export_format: ExportFormat
    status: ExportStatus
    record_count: int
    item_ids: tuple[UUID, ...] | None
    download_url: str | None
    expires_at: datetime
    download_count: int
    error_message: str | None
    created_at: datetime

    @property
    def is_immediate(self) -> bool:
        return self.status is ExportStatus.COMPLETED


@dataclass(frozen=True)
class AuditRecordInfo:
    id: UUID
    tenant_id: UUID
    actor_user_id: UUID
    action: str
    subject_id: UUID | None
    details: dict[str, Any]
    created_at: datetime


@dataclass(frozen=True)
class ExportDownload:
    """Materialized export content handed to the external formatter."""

    export: ExportInfo
    items: tuple[InventoryItemInfo, ...] = ()
    audit_records: tuple[AuditRecordInfo, ...] = ()
