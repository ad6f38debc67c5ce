"""
Typed Exception Hierarchy for the Rental Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the HTTP layer, the bulk edit engine, tests) branch on the kind of
failure, never on message text.  Every exception therefore carries:
  1. A TYPED class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA as attributes (versions, statuses, ids)

Example - WRONG way:
    try:
        service.update_item(...)
    except Exception as e:
        if "version" in str(e):       # FRAGILE
            refetch()

Example - RIGHT way:
    try:
        service.update_item(...)
    except EditConflictError as e:
        api_response(code=e.code, current=e.current_version,
                     submitted=e.submitted_version)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RentalKernelError (base)
    |
    +-- NotFoundError
    |   +-- CategoryNotFoundError
    |   +-- ItemNotFoundError
    |   +-- ExportNotFoundError
    |   +-- BulkOperationNotFoundError
    |
    +-- ConflictError
    |   +-- DuplicateNameError
    |   +-- DuplicateSerialError
    |   |   +-- SerialNumberExistsError
    |   +-- EditConflictError
    |   +-- ExportNotReadyError
    |
    +-- ValidationError
    |   +-- QuantityRequiredError
    |   +-- InvalidQuantityError
    |   +-- QuantityBelowAllocatedError
    |   +-- AllocationExceedsQuantityError
    |   +-- MaintenanceDateLogicError
    |   +-- InvalidStatusTransitionError
    |   +-- StatusReasonRequiredError
    |   +-- ResolutionDateNotAllowedError
    |   +-- SerialNumberRequiredError
    |   +-- ItemTypeMismatchError
    |   +-- InvalidItemSelectionError
    |   +-- EmptyBulkOperationError
    |   +-- ExportInvalidItemsError
    |   +-- InvalidPaginationError
    |   +-- InvalidDateRangeError
    |
    +-- PolicyBlockedError
    |   +-- ItemAllocatedError
    |   +-- SerialNumberChangeConfirmationRequiredError
    |   +-- ItemTypeChangeBlockedError
    |   +-- PermissionDeniedError
    |
    +-- CapacityExceededError
    |   +-- ExportTooLargeError
    |   +-- BulkLargeOperationWarning
    |
    +-- ExpiredError
    |   +-- ExportExpiredError
    |
    +-- ConcurrencyError
    |   +-- ItemTimeoutError
    |
    +-- ImmutabilityViolationError

===============================================================================
HANDLING
===============================================================================

Nothing in the kernel retries.  Single-item operations roll back and
re-raise.  The bulk edit engine catches RentalKernelError per item and
turns it into a result entry carrying ``code`` and the message; only its
pre-flight checks (selection, operations, confirmation, permission) raise
out of ``bulk_edit``.
"""

from datetime import date, datetime


class RentalKernelError(Exception):
    """Base exception for all rental kernel errors."""

    code: str = "RENTAL_KERNEL_ERROR"


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(RentalKernelError):
    """Base for references the caller must re-resolve."""

    code: str = "NOT_FOUND"


class CategoryNotFoundError(NotFoundError):
    """Category does not exist in the tenant (or was deactivated)."""

    code: str = "CATEGORY_NOT_FOUND"

    def __init__(self, category_id: str):
        self.category_id = category_id
        super().__init__(f"Category not found: {category_id}")


class ItemNotFoundError(NotFoundError):
    """Inventory item does not exist in the tenant."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Inventory item not found: {item_id}")


class ExportNotFoundError(NotFoundError):
    code: str = "EXPORT_NOT_FOUND"

    def __init__(self, export_id: str):
        self.export_id = export_id
        super().__init__(f"Export not found: {export_id}")


class BulkOperationNotFoundError(NotFoundError):
    code: str = "BULK_OPERATION_NOT_FOUND"

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"Bulk operation not found: {operation_id}")


# =============================================================================
# Conflicts
# =============================================================================


class ConflictError(RentalKernelError):
    """Base for conflicts the caller resolves by refetch, rename or retry."""

    code: str = "CONFLICT"


class DuplicateNameError(ConflictError):
    """Item name already used within the tenant."""

    code: str = "DUPLICATE_NAME"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"An item named '{name}' already exists")


class DuplicateSerialError(ConflictError):
    """Serial number already used within the tenant."""

    code: str = "DUPLICATE_SERIAL"

    def __init__(self, serial_number: str):
        self.serial_number = serial_number
        super().__init__(f"Serial number '{serial_number}' already exists")


class SerialNumberExistsError(DuplicateSerialError):
    """Raised when a serial number edit collides with another item."""

    code: str = "SERIAL_NUMBER_EXISTS"


class EditConflictError(ConflictError):
    """
    The submitted version is not the stored version.

    Both versions are carried so the client can re-fetch and re-apply.
    ``current_version`` is None when the conflict was detected at write
    time (the row changed between read and write).
    """

    code: str = "EDIT_CONFLICT"

    def __init__(
        self,
        item_id: str,
        current_version: int | None,
        submitted_version: int | None,
    ):
        self.item_id = item_id
        self.current_version = current_version
        self.submitted_version = submitted_version
        super().__init__(
            f"Item {item_id} was modified concurrently: "
            f"submitted version {submitted_version}, "
            f"current version {current_version}"
        )


class ExportNotReadyError(ConflictError):
    code: str = "EXPORT_NOT_READY"

    def __init__(self, export_id: str, status: str):
        self.export_id = export_id
        self.status = status
        super().__init__(f"Export {export_id} is not ready (status: {status})")


# =============================================================================
# Validation
# =============================================================================


class ValidationError(RentalKernelError):
    """Base for input the caller must correct.  Never partially applied."""

    code: str = "VALIDATION_ERROR"


class QuantityRequiredError(ValidationError):
    code: str = "QUANTITY_REQUIRED"

    def __init__(self):
        super().__init__("Quantity is required for non-serialized items")


class InvalidQuantityError(ValidationError):
    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: int):
        self.field = field
        self.value = value
        super().__init__(f"{field} must be zero or greater, got {value}")


class QuantityBelowAllocatedError(ValidationError):
    """New quantity would drop below what is currently allocated."""

    code: str = "QUANTITY_BELOW_ALLOCATED"

    def __init__(self, requested_quantity: int, allocated_quantity: int):
        self.requested_quantity = requested_quantity
        self.allocated_quantity = allocated_quantity
        super().__init__(
            f"Quantity {requested_quantity} is below the allocated "
            f"quantity {allocated_quantity}"
        )


class AllocationExceedsQuantityError(ValidationError):
    code: str = "ALLOCATION_EXCEEDS_QUANTITY"

    def __init__(self, allocated_quantity: int, quantity: int):
        self.allocated_quantity = allocated_quantity
        self.quantity = quantity
        super().__init__(
            f"Allocated quantity {allocated_quantity} exceeds quantity {quantity}"
        )


class MaintenanceDateLogicError(ValidationError):
    code: str = "MAINTENANCE_DATE_LOGIC_ERROR"

    def __init__(self, last_maintenance_date: date, next_maintenance_due_date: date):
        self.last_maintenance_date = last_maintenance_date
        self.next_maintenance_due_date = next_maintenance_due_date
        super().__init__(
            "Next maintenance due date must be after the last maintenance date"
        )


class InvalidStatusTransitionError(ValidationError):
    """Transition is not in the availability state table."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, current_status: str, requested_status: str, valid_transitions: list[str]):
        self.current_status = current_status
        self.requested_status = requested_status
        self.valid_transitions = valid_transitions
        super().__init__(
            f"Cannot change status from {current_status} to {requested_status}. "
            f"Valid transitions: {', '.join(valid_transitions) or 'none'}"
        )


class StatusReasonRequiredError(ValidationError):
    code: str = "STATUS_REASON_REQUIRED"

    def __init__(self, requested_status: str):
        self.requested_status = requested_status
        super().__init__(f"A reason is required when changing status to {requested_status}")


class ResolutionDateNotAllowedError(ValidationError):
    code: str = "RESOLUTION_DATE_NOT_ALLOWED"

    def __init__(self, requested_status: str):
        self.requested_status = requested_status
        super().__init__(
            f"An expected resolution date cannot be set for status {requested_status}"
        )


class SerialNumberRequiredError(ValidationError):
    code: str = "SERIAL_NUMBER_REQUIRED"

    def __init__(self):
        super().__init__(
            "Serialized items need a serial number or auto-generation"
        )


class ItemTypeMismatchError(ValidationError):
    """Operation applies to the other item type."""

    code: str = "ITEM_TYPE_MISMATCH"

    def __init__(self, item_id: str, item_type: str, required_type: str):
        self.item_id = item_id
        self.item_type = item_type
        self.required_type = required_type
        super().__init__(
            f"Item {item_id} is {item_type}; operation requires {required_type}"
        )


class InvalidItemSelectionError(ValidationError):
    code: str = "INVALID_ITEM_SELECTION"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class EmptyBulkOperationError(ValidationError):
    code: str = "EMPTY_BULK_OPERATION"

    def __init__(self):
        super().__init__("At least one bulk operation must be specified")


class ExportInvalidItemsError(ValidationError):
    code: str = "EXPORT_INVALID_ITEMS"

    def __init__(self, missing_item_ids: list[str]):
        self.missing_item_ids = missing_item_ids
        super().__init__(
            f"{len(missing_item_ids)} item(s) not found or not accessible"
        )


class InvalidDateRangeError(ValidationError):
    code: str = "INVALID_DATE_RANGE"

    def __init__(self, date_from: datetime, date_to: datetime):
        self.date_from = date_from
        self.date_to = date_to
        super().__init__("date_from must not be after date_to")


class InvalidPaginationError(ValidationError):
    code: str = "INVALID_PAGINATION"

    def __init__(self, page: int, limit: int):
        self.page = page
        self.limit = limit
        super().__init__(f"Invalid pagination: page={page}, limit={limit}")


# =============================================================================
# Policy blocked
# =============================================================================


class PolicyBlockedError(RentalKernelError):
    """Needs explicit confirmation or external clearance before retry."""

    code: str = "POLICY_BLOCKED"


class ItemAllocatedError(PolicyBlockedError):
    """Item is held by an active allocation and cannot leave Rented."""

    code: str = "ITEM_ALLOCATED"

    def __init__(self, item_id: str, requested_status: str):
        self.item_id = item_id
        self.requested_status = requested_status
        super().__init__(
            f"Item {item_id} is currently allocated and cannot change to "
            f"{requested_status} until it is returned"
        )


class SerialNumberChangeConfirmationRequiredError(PolicyBlockedError):
    code: str = "SERIAL_NUMBER_CHANGE_CONFIRMATION_REQUIRED"

    def __init__(self, item_id: str, current_serial: str | None, new_serial: str):
        self.item_id = item_id
        self.current_serial = current_serial
        self.new_serial = new_serial
        super().__init__(
            "This item has rental history. Changing the serial number requires "
            "explicit confirmation"
        )


class ItemTypeChangeBlockedError(PolicyBlockedError):
    code: str = "ITEM_TYPE_CHANGE_BLOCKED"

    def __init__(self, item_id: str, reason: str = "item has rental history"):
        self.item_id = item_id
        self.reason = reason
        super().__init__(f"Item type of {item_id} cannot change: {reason}")


class PermissionDeniedError(PolicyBlockedError):
    code: str = "PERMISSION_DENIED"

    def __init__(self, user_id: str, resource: str, action: str):
        self.user_id = user_id
        self.resource = resource
        self.action = action
        super().__init__(f"User {user_id} may not {action} {resource}")


# =============================================================================
# Capacity
# =============================================================================


class CapacityExceededError(RentalKernelError):
    """Caller must shrink the scope or explicitly confirm."""

    code: str = "CAPACITY_EXCEEDED"


class ExportTooLargeError(CapacityExceededError):
    code: str = "EXPORT_TOO_LARGE"

    def __init__(self, record_count: int, max_records: int):
        self.record_count = record_count
        self.max_records = max_records
        super().__init__(
            f"Export of {record_count} records exceeds the limit of {max_records}"
        )


class BulkLargeOperationWarning(CapacityExceededError):
    """Batch above the confirmation threshold submitted without confirmation."""

    code: str = "BULK_LARGE_OPERATION_WARNING"

    def __init__(self, item_count: int, threshold: int):
        self.item_count = item_count
        self.threshold = threshold
        super().__init__(
            f"Bulk operation on {item_count} items exceeds {threshold}; "
            "confirmation required"
        )


# =============================================================================
# Expiry
# =============================================================================


class ExpiredError(RentalKernelError):
    code: str = "EXPIRED"


class ExportExpiredError(ExpiredError):
    code: str = "EXPORT_EXPIRED"

    def __init__(self, export_id: str, expired_at: datetime):
        self.export_id = export_id
        self.expired_at = expired_at
        super().__init__(f"Export {export_id} expired at {expired_at.isoformat()}")


# =============================================================================
# Concurrency
# =============================================================================


class ConcurrencyError(RentalKernelError):
    code: str = "CONCURRENCY_ERROR"


class ItemTimeoutError(ConcurrencyError):
    """A bulk edit item exceeded its transaction time budget."""

    code: str = "ITEM_TIMEOUT"

    def __init__(self, item_id: str, timeout_seconds: float):
        self.item_id = item_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Processing item {item_id} exceeded {timeout_seconds}s"
        )


# =============================================================================
# Immutability
# =============================================================================


class ImmutabilityViolationError(RentalKernelError):
    """Attempt to modify or delete an append-only or non-deletable record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
