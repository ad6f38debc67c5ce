"""
Value enums shared by the domain, the ORM models, and the services.

Every enum is a ``str`` subclass and is persisted by value in a String
column, so rows stay readable from SQL and portable across backends.
"""

from __future__ import annotations

from enum import Enum


class ItemType(str, Enum):
    """How an item is counted."""

    SERIALIZED = "serialized"
    NON_SERIALIZED = "non_serialized"


class SerialNumberSource(str, Enum):
    AUTO_GENERATED = "auto_generated"
    MANUAL = "manual"


class AvailabilityStatus(str, Enum):
    """Operational state of an item.  Transitions live in status_policy."""

    AVAILABLE = "available"
    RENTED = "rented"
    MAINTENANCE = "maintenance"
    DAMAGED = "damaged"
    LOST = "lost"


class ItemStatus(str, Enum):
    """Lifecycle state (retirement), independent of availability."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class StatusChangeType(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class ExportType(str, Enum):
    SINGLE_ITEM = "single_item"
    MULTIPLE_ITEMS = "multiple_items"
    FULL_INVENTORY = "full_inventory"
    AUDIT_LOG = "audit_log"

    @property
    def is_audit(self) -> bool:
        return self is ExportType.AUDIT_LOG


class ExportFormat(str, Enum):
    CSV = "csv"
    JSON = "json"
    PDF = "pdf"
    EXCEL = "excel"


class ExportStatus(str, Enum):
    INITIATED = "initiated"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BulkOperationStatus(str, Enum):
    INITIATED = "initiated"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PARTIALLY_COMPLETED = "partially_completed"


class BulkItemOutcome(str, Enum):
    """Per-item result of a bulk edit."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
