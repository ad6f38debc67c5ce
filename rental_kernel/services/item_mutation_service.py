"""
ItemMutationService -- single-item mutations as atomic units of work.

Responsibility:
    Create, update, change availability, edit serialized fields and change
    quantities of one inventory item at a time.  Each public mutation is
    one transaction that produces a field-level change list and one audit
    record.

Architecture position:
    Kernel > Services -- imperative shell.  Owns the transaction boundary
    when ``auto_commit=True`` (the default); with ``auto_commit=False`` the
    caller commits or rolls back.

Flow of every mutation:
    1. Bind LogContext (correlation_id, tenant, actor, item)
    2. Permission check (when a PermissionChecker is wired in)
    3. Load the item (tenant-scoped, refreshed from the database)
    4. Version check against the caller's expected version
    5. Validate everything and resolve serials BEFORE touching the item,
       so exactly one UPDATE is flushed and version moves by exactly one
    6. Apply, flush, audit
    7. Commit (auto_commit) or rollback on any exception

Invariants enforced:
    - A stale ``expected_version`` is rejected with EditConflictError,
      carrying both versions.  A write that loses the race between read
      and flush is rejected the same way (StaleDataError from the mapper's
      version_id_col).
    - Every persisted mutation increments ``version`` by one, status
      changes included.  A request that changes nothing writes nothing:
      no version bump, no audit record.
    - ``allocated_quantity <= quantity`` after every successful quantity
      or allocation change; violations are rejected with state unchanged.
    - Availability transitions go through ``validate_transition`` and each
      one inserts exactly one InventoryItemStatusChange row.

Failure modes:
    - NotFoundError / ConflictError / ValidationError / PolicyBlockedError
      subclasses, raised after rollback.  Nothing is partially applied.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Iterator
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from rental_kernel.domain.clock import Clock, SystemClock
from rental_kernel.domain.collaborators import (
    AllocationChecker,
    AuditSink,
    CategoryCatalog,
    ConservativeAllocationChecker,
    PermissionChecker,
)
from rental_kernel.domain.dtos import (
    InventoryItemInfo,
    ItemChange,
    ItemCreateSpec,
    ItemMutationResult,
    ItemPatch,
    QuantityImpact,
    QuantityUpdateResult,
    RequestContext,
    SerializedFieldsPatch,
    SerializedUpdateResult,
    SerialSequenceInfo,
    StatusChangeResult,
    StatusHistoryPage,
    StatusOptions,
)
from rental_kernel.domain.settings import DEFAULT_SETTINGS, KernelSettings
from rental_kernel.domain.status_policy import status_options, validate_transition
from rental_kernel.domain.values import (
    AvailabilityStatus,
    ItemStatus,
    ItemType,
    SerialNumberSource,
    StatusChangeType,
)
from rental_kernel.exceptions import (
    AllocationExceedsQuantityError,
    CategoryNotFoundError,
    DuplicateNameError,
    DuplicateSerialError,
    EditConflictError,
    InvalidQuantityError,
    ItemNotFoundError,
    ItemTypeChangeBlockedError,
    ItemTypeMismatchError,
    MaintenanceDateLogicError,
    PermissionDeniedError,
    QuantityBelowAllocatedError,
    QuantityRequiredError,
    RentalKernelError,
    SerialNumberChangeConfirmationRequiredError,
    SerialNumberExistsError,
    SerialNumberRequiredError,
)
from rental_kernel.logging_config import LogContext, get_logger
from rental_kernel.models.audit_log import AuditAction
from rental_kernel.models.inventory_item import InventoryItem
from rental_kernel.models.status_change import InventoryItemStatusChange
from rental_kernel.selectors.inventory_selector import InventorySelector, item_info
from rental_kernel.services.audit_log_service import AuditLogService, record_audit
from rental_kernel.services.base import BaseService
from rental_kernel.services.category_service import CategoryService
from rental_kernel.services.serial_number_service import SerialNumberService
from rental_kernel.utils.hashing import to_json_safe

logger = get_logger("services.item_mutation")

PERMISSION_RESOURCE = "inventory"

# Generated serials that collide with manually entered ones are skipped
_MAX_SERIAL_SKIPS = 100

_SERIALIZED_FIELDS = (
    "serial_number_source",
    "condition_notes",
    "last_maintenance_date",
    "next_maintenance_due_date",
)


def record_status_change(
    session: Session,
    item: InventoryItem,
    new_status: AvailabilityStatus,
    reason: str | None,
    resolution_date: date | None,
    actor_id: UUID,
    change_type: StatusChangeType,
    request_context: RequestContext | None,
    now: datetime,
) -> InventoryItemStatusChange:
    """
    Apply an already-validated availability transition and add its history row.

    Shared by single-item status changes and bulk edits.
    """
    previous = item.availability
    item.apply_availability(new_status, reason, resolution_date)
    row = InventoryItemStatusChange(
        id=uuid4(),
        inventory_item_id=item.id,
        # the flush that writes this row bumps the item version once
        item_version=item.version + 1,
        tenant_id=item.tenant_id,
        changed_by=actor_id,
        previous_status=previous.value,
        new_status=new_status.value,
        change_reason=reason,
        expected_resolution_date=resolution_date,
        change_type=change_type.value,
        ip_address=request_context.ip_address if request_context else None,
        user_agent=request_context.user_agent if request_context else None,
        created_at=now,
    )
    session.add(row)
    return row


def field_change(item: InventoryItem, field: str, value: Any) -> ItemChange:
    """Set ``field`` on ``item`` and return the JSON-friendly diff entry."""
    old = getattr(item, field)
    setattr(item, field, value)
    return ItemChange(field=field, old_value=to_json_safe(old), new_value=to_json_safe(value))


class ItemMutationService(BaseService[InventoryItem]):
    """
    Single-item inventory mutations.

    Contract:
        Every public mutation either commits its change, its status-change
        row (if any) and its audit record together, or leaves the database
        untouched and re-raises.

    Non-goals:
        - Does NOT retry on EditConflictError; the caller re-fetches.
        - Does NOT decide allocation; the AllocationChecker does.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: KernelSettings | None = None,
        catalog: CategoryCatalog | None = None,
        audit_sink: AuditSink | None = None,
        permission_checker: PermissionChecker | None = None,
        allocation_checker: AllocationChecker | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session)
        self.clock = clock or SystemClock()
        self.settings = settings or DEFAULT_SETTINGS
        self.catalog = catalog or CategoryService(session, self.clock)
        self.audit_sink = audit_sink or AuditLogService(session, self.clock)
        self.permission_checker = permission_checker
        self.allocation_checker = allocation_checker or ConservativeAllocationChecker()
        self.serials = SerialNumberService(session, self.clock, self.settings.serial)
        self.selector = InventorySelector(session, self.settings.history)
        self._auto_commit = auto_commit

    # =========================================================================
    # Unit of work
    # =========================================================================

    @contextmanager
    def _unit_of_work(
        self,
        operation: str,
        tenant_id: UUID,
        actor_id: UUID,
        item_id: UUID | None = None,
        submitted_version: int | None = None,
    ) -> Iterator[None]:
        with LogContext.bind(
            correlation_id=uuid4(),
            tenant_id=tenant_id,
            actor_id=actor_id,
            item_id=item_id,
        ):
            logger.info(f"{operation}_started")
            t0 = time.monotonic()
            try:
                yield
                self.session.flush()
                if self._auto_commit:
                    self.session.commit()
            except StaleDataError as exc:
                current_version = None
                if self._auto_commit:
                    self.session.rollback()
                    current_version = self._current_version(tenant_id, item_id)
                logger.warning(
                    f"{operation}_failed",
                    extra={
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                        "error_code": EditConflictError.code,
                    },
                )
                raise EditConflictError(
                    str(item_id), current_version, submitted_version
                ) from exc
            except RentalKernelError as exc:
                if self._auto_commit:
                    self.session.rollback()
                logger.warning(
                    f"{operation}_failed",
                    extra={
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                        "error_code": exc.code,
                    },
                    exc_info=True,
                )
                raise
            except Exception:
                if self._auto_commit:
                    self.session.rollback()
                logger.error(
                    f"{operation}_failed",
                    extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
                    exc_info=True,
                )
                raise

            logger.info(
                f"{operation}_completed",
                extra={"duration_ms": round((time.monotonic() - t0) * 1000, 2)},
            )

    def _current_version(self, tenant_id: UUID, item_id: UUID | None) -> int | None:
        if item_id is None:
            return None
        return self.session.execute(
            select(InventoryItem.version).where(
                InventoryItem.tenant_id == tenant_id,
                InventoryItem.id == item_id,
            )
        ).scalar_one_or_none()

    # =========================================================================
    # Shared steps
    # =========================================================================

    def _authorize(self, tenant_id: UUID, actor_id: UUID, action: str) -> None:
        if self.permission_checker is None:
            return
        if not self.permission_checker.has_permission(
            tenant_id, actor_id, PERMISSION_RESOURCE, action
        ):
            raise PermissionDeniedError(str(actor_id), PERMISSION_RESOURCE, action)

    def _load(self, tenant_id: UUID, item_id: UUID) -> InventoryItem:
        item = self.session.execute(
            select(InventoryItem)
            .where(
                InventoryItem.tenant_id == tenant_id,
                InventoryItem.id == item_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if item is None:
            raise ItemNotFoundError(str(item_id))
        return item

    @staticmethod
    def _check_version(item: InventoryItem, expected_version: int | None) -> None:
        if expected_version is not None and item.version != expected_version:
            raise EditConflictError(str(item.id), item.version, expected_version)

    def _require_category(self, tenant_id: UUID, category_id: UUID) -> None:
        if self.catalog.get_category(tenant_id, category_id) is None:
            raise CategoryNotFoundError(str(category_id))

    def _touch(self, item: InventoryItem, actor_id: UUID) -> None:
        item.updated_at = self.clock.now()
        item.updated_by_id = actor_id

    def _flush_item(self, item: InventoryItem) -> None:
        """Flush, mapping a lost uniqueness race to the typed conflict."""
        try:
            self.session.flush()
        except IntegrityError as exc:
            message = str(exc.orig).lower()
            if "serial" in message:
                raise DuplicateSerialError(item.serial_number or "") from exc
            if "name" in message:
                raise DuplicateNameError(item.name) from exc
            raise

    def _audit(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        action: AuditAction,
        subject_id: UUID | None,
        details: dict[str, Any],
        request_context: RequestContext | None,
    ) -> None:
        record_audit(
            self.session,
            self.audit_sink,
            tenant_id,
            actor_id,
            action.value,
            subject_id,
            details,
            ip_address=request_context.ip_address if request_context else None,
            user_agent=request_context.user_agent if request_context else None,
        )

    def _issue_serial(self, tenant_id: UUID, actor_id: UUID) -> str:
        serial = ""
        for _ in range(_MAX_SERIAL_SKIPS):
            serial = self.serials.next_serial(tenant_id, actor_id)
            if not self.selector.serial_number_exists(tenant_id, serial):
                return serial
            logger.warning("generated_serial_in_use", extra={"serial_number": serial})
        raise DuplicateSerialError(serial)

    def _resolve_serial(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        serial_number: str | None,
        auto_generate: bool,
    ) -> tuple[str, SerialNumberSource]:
        """Serial and its source for a new serialized item.  Generation wins."""
        if auto_generate:
            return self._issue_serial(tenant_id, actor_id), SerialNumberSource.AUTO_GENERATED
        if serial_number is None or not serial_number.strip():
            raise SerialNumberRequiredError()
        serial_number = serial_number.strip()
        if self.selector.serial_number_exists(tenant_id, serial_number):
            raise DuplicateSerialError(serial_number)
        return serial_number, SerialNumberSource.MANUAL

    # =========================================================================
    # Create
    # =========================================================================

    def create_item(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        spec: ItemCreateSpec,
        request_context: RequestContext | None = None,
    ) -> ItemMutationResult:
        """
        Create an item with ``availability_status=available``,
        ``status=active`` and ``version=1``.

        Raises:
            CategoryNotFoundError, DuplicateNameError, DuplicateSerialError,
            SerialNumberRequiredError, QuantityRequiredError,
            InvalidQuantityError, PermissionDeniedError.
        """
        item_type = ItemType(spec.item_type)
        with self._unit_of_work("item_create", tenant_id, actor_id):
            self._authorize(tenant_id, actor_id, "create")
            self._require_category(tenant_id, spec.category_id)
            if self.selector.name_exists(tenant_id, spec.name):
                raise DuplicateNameError(spec.name)

            item = InventoryItem(
                id=uuid4(),
                tenant_id=tenant_id,
                name=spec.name,
                description=spec.description,
                category_id=spec.category_id,
                item_type=item_type.value,
                availability_status=AvailabilityStatus.AVAILABLE.value,
                status=ItemStatus.ACTIVE.value,
                allocated_quantity=0,
                has_rental_history=False,
                condition_notes=spec.condition_notes,
                created_by_id=actor_id,
            )
            if item_type is ItemType.SERIALIZED:
                serial, source = self._resolve_serial(
                    tenant_id, actor_id, spec.serial_number, spec.auto_generate_serial
                )
                item.serial_number = serial
                item.serial_number_source = source.value
            else:
                if spec.quantity is None:
                    raise QuantityRequiredError()
                if spec.quantity < 0:
                    raise InvalidQuantityError("quantity", spec.quantity)
                item.quantity = spec.quantity
                item.quantity_unit = spec.quantity_unit

            now = self.clock.now()
            item.created_at = now
            item.updated_at = now
            self.session.add(item)
            self._flush_item(item)

            info = item_info(item)
            self._audit(
                tenant_id,
                actor_id,
                AuditAction.INVENTORY_ITEM_CREATED,
                item.id,
                {
                    "name": item.name,
                    "item_type": item.item_type,
                    "category_id": item.category_id,
                    "serial_number": item.serial_number,
                    "serial_number_source": item.serial_number_source,
                    "quantity": item.quantity,
                    "quantity_unit": item.quantity_unit,
                },
                request_context,
            )

        logger.info(
            "item_created",
            extra={"item_id": str(info.id), "item_type": info.item_type.value},
        )
        return ItemMutationResult(item=info)

    # =========================================================================
    # General update
    # =========================================================================

    def update_item(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        item_id: UUID,
        patch: ItemPatch,
        expected_version: int,
        request_context: RequestContext | None = None,
    ) -> ItemMutationResult:
        """
        Apply a general field patch.

        ``serial_number`` in a patch that keeps the item serialized follows
        the serialized-edit rule: an item with rental history cannot change
        serial here (use ``update_serialized_fields`` with confirmation).
        ``quantity`` follows the quantity rules.

        Raises:
            EditConflictError: expected_version is stale.
            ItemNotFoundError, CategoryNotFoundError, DuplicateNameError,
            DuplicateSerialError, ItemTypeChangeBlockedError,
            QuantityRequiredError, InvalidQuantityError,
            QuantityBelowAllocatedError,
            SerialNumberChangeConfirmationRequiredError.
        """
        with self._unit_of_work(
            "item_update", tenant_id, actor_id, item_id, expected_version
        ):
            self._authorize(tenant_id, actor_id, "update")
            item = self._load(tenant_id, item_id)
            self._check_version(item, expected_version)

            # Validate and resolve first; assignments below must not autoflush
            # half-applied state.
            updates: dict[str, Any] = {}
            if patch.name is not None and patch.name != item.name:
                if self.selector.name_exists(tenant_id, patch.name, exclude_item_id=item.id):
                    raise DuplicateNameError(patch.name)
                updates["name"] = patch.name
            if patch.description is not None and patch.description != item.description:
                updates["description"] = patch.description
            if patch.category_id is not None and patch.category_id != item.category_id:
                self._require_category(tenant_id, patch.category_id)
                updates["category_id"] = patch.category_id
            if patch.status is not None and ItemStatus(patch.status).value != item.status:
                updates["status"] = ItemStatus(patch.status).value

            new_type = ItemType(patch.item_type) if patch.item_type is not None else item.type
            if new_type is not item.type:
                updates.update(self._plan_type_change(tenant_id, actor_id, item, new_type, patch))
            elif item.is_serialized:
                updates.update(self._plan_serial_edit(tenant_id, item, patch.serial_number))
            else:
                updates.update(self._plan_quantity_edit(item, patch.quantity, patch.quantity_unit))

            changes = [
                field_change(item, field, value)
                for field, value in updates.items()
                if getattr(item, field) != value
            ]
            if changes:
                self._touch(item, actor_id)
                self._flush_item(item)
                self._audit(
                    tenant_id,
                    actor_id,
                    AuditAction.INVENTORY_ITEM_UPDATED,
                    item.id,
                    {
                        "changes": [c.to_dict() for c in changes],
                        "previous_version": expected_version,
                        "version": item.version,
                    },
                    request_context,
                )
            info = item_info(item)

        return ItemMutationResult(item=info, changes=tuple(changes))

    def _plan_type_change(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        item: InventoryItem,
        new_type: ItemType,
        patch: ItemPatch,
    ) -> dict[str, Any]:
        if item.has_rental_history:
            raise ItemTypeChangeBlockedError(str(item.id))

        if new_type is ItemType.SERIALIZED:
            if item.allocated_quantity:
                raise ItemTypeChangeBlockedError(str(item.id), "units are allocated")
            serial, source = self._resolve_serial(
                tenant_id, actor_id, patch.serial_number, patch.auto_generate_serial
            )
            return {
                "item_type": new_type.value,
                "serial_number": serial,
                "serial_number_source": source.value,
                "quantity": None,
                "quantity_unit": None,
                "allocated_quantity": 0,
            }

        if patch.quantity is None:
            raise QuantityRequiredError()
        if patch.quantity < 0:
            raise InvalidQuantityError("quantity", patch.quantity)
        return {
            "item_type": new_type.value,
            "quantity": patch.quantity,
            "quantity_unit": patch.quantity_unit,
            "allocated_quantity": 0,
            "serial_number": None,
            "serial_number_source": None,
            "previous_serial_number": item.serial_number,
        }

    def _plan_serial_edit(
        self,
        tenant_id: UUID,
        item: InventoryItem,
        serial_number: str | None,
        confirmed: bool = False,
    ) -> dict[str, Any]:
        if serial_number is None or serial_number == item.serial_number:
            return {}
        if not serial_number.strip():
            raise SerialNumberRequiredError()
        if item.has_rental_history and not confirmed:
            raise SerialNumberChangeConfirmationRequiredError(
                str(item.id), item.serial_number, serial_number
            )
        if self.selector.serial_number_exists(
            tenant_id, serial_number, exclude_item_id=item.id
        ):
            raise SerialNumberExistsError(serial_number)
        return {
            "previous_serial_number": item.serial_number,
            "serial_number": serial_number,
        }

    @staticmethod
    def _plan_quantity_edit(
        item: InventoryItem,
        quantity: int | None,
        quantity_unit: str | None,
    ) -> dict[str, Any]:
        updates: dict[str, Any] = {}
        if quantity is not None and quantity != item.quantity:
            if quantity < 0:
                raise InvalidQuantityError("quantity", quantity)
            if quantity < item.allocated_quantity:
                raise QuantityBelowAllocatedError(quantity, item.allocated_quantity)
            updates["quantity"] = quantity
        if quantity_unit is not None and quantity_unit != item.quantity_unit:
            updates["quantity_unit"] = quantity_unit
        return updates

    # =========================================================================
    # Availability
    # =========================================================================

    def _is_allocated(self, tenant_id: UUID, item: InventoryItem) -> bool:
        # Only consulted where the answer can change the outcome
        if item.availability is not AvailabilityStatus.RENTED:
            return False
        return self.allocation_checker.is_currently_allocated(tenant_id, item.id)

    def change_status(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        item_id: UUID,
        new_status: AvailabilityStatus,
        reason: str | None = None,
        resolution_date: date | None = None,
        expected_version: int | None = None,
        request_context: RequestContext | None = None,
    ) -> StatusChangeResult:
        """
        Move an item to ``new_status``.

        Postconditions:
            - availability_status, last_status_change_reason and
              expected_resolution_date updated; version incremented.
            - One InventoryItemStatusChange row (change_type=manual).

        Raises:
            InvalidStatusTransitionError, ItemAllocatedError,
            StatusReasonRequiredError, ResolutionDateNotAllowedError,
            ItemNotFoundError, EditConflictError.
        """
        new_status = AvailabilityStatus(new_status)
        with self._unit_of_work(
            "status_change", tenant_id, actor_id, item_id, expected_version
        ):
            self._authorize(tenant_id, actor_id, "change_status")
            item = self._load(tenant_id, item_id)
            self._check_version(item, expected_version)

            previous = item.availability
            validate_transition(
                previous,
                new_status,
                reason=reason,
                resolution_date=resolution_date,
                is_allocated=self._is_allocated(tenant_id, item),
                item_id=str(item.id),
            )

            now = self.clock.now()
            reason = reason.strip() if reason else None
            change = record_status_change(
                self.session,
                item,
                new_status,
                reason,
                resolution_date,
                actor_id,
                StatusChangeType.MANUAL,
                request_context,
                now,
            )
            self._touch(item, actor_id)
            self.session.flush()
            self._audit(
                tenant_id,
                actor_id,
                AuditAction.INVENTORY_STATUS_CHANGED,
                item.id,
                {
                    "previous_status": previous.value,
                    "new_status": new_status.value,
                    "reason": reason,
                    "expected_resolution_date": resolution_date,
                    "change_id": change.id,
                },
                request_context,
            )
            result = StatusChangeResult(
                item_id=item.id,
                previous_status=previous,
                new_status=new_status,
                reason=reason,
                expected_resolution_date=resolution_date,
                change_id=change.id,
                changed_at=now,
                version=item.version,
            )

        return result

    def get_status_options(self, tenant_id: UUID, item_id: UUID) -> StatusOptions:
        item = self._load(tenant_id, item_id)
        return status_options(item.availability, is_allocated=self._is_allocated(tenant_id, item))

    def get_status_history(
        self,
        tenant_id: UUID,
        item_id: UUID,
        page: int = 1,
        limit: int | None = None,
    ) -> StatusHistoryPage:
        return self.selector.status_history(tenant_id, item_id, page=page, limit=limit)

    # =========================================================================
    # Serialized items
    # =========================================================================

    def update_serialized_fields(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        item_id: UUID,
        patch: SerializedFieldsPatch,
        confirm_serial_number_change: bool = False,
        expected_version: int | None = None,
        request_context: RequestContext | None = None,
    ) -> SerializedUpdateResult:
        """
        Edit serial number, condition notes and maintenance dates.

        A serial change moves the old value into ``previous_serial_number``.
        Items with rental history need ``confirm_serial_number_change``.

        Raises:
            ItemTypeMismatchError: item is not serialized.
            SerialNumberChangeConfirmationRequiredError, SerialNumberExistsError,
            MaintenanceDateLogicError, ItemNotFoundError, EditConflictError.
        """
        with self._unit_of_work(
            "serialized_update", tenant_id, actor_id, item_id, expected_version
        ):
            self._authorize(tenant_id, actor_id, "update")
            item = self._load(tenant_id, item_id)
            self._check_version(item, expected_version)
            if not item.is_serialized:
                raise ItemTypeMismatchError(
                    str(item.id), item.item_type, ItemType.SERIALIZED.value
                )

            updates = self._plan_serial_edit(
                tenant_id, item, patch.serial_number, confirmed=confirm_serial_number_change
            )
            serial_changed = bool(updates)

            last = patch.last_maintenance_date or item.last_maintenance_date
            due = patch.next_maintenance_due_date or item.next_maintenance_due_date
            touches_dates = (
                patch.last_maintenance_date is not None
                or patch.next_maintenance_due_date is not None
            )
            if touches_dates and last is not None and due is not None and due <= last:
                raise MaintenanceDateLogicError(last, due)

            for field in _SERIALIZED_FIELDS:
                value = getattr(patch, field)
                if value is None:
                    continue
                if field == "serial_number_source":
                    value = SerialNumberSource(value).value
                if value != getattr(item, field):
                    updates[field] = value

            changes = [
                field_change(item, field, value)
                for field, value in updates.items()
                if field != "previous_serial_number"
            ]
            if serial_changed:
                item.previous_serial_number = updates["previous_serial_number"]

            if changes:
                self._touch(item, actor_id)
                self._flush_item(item)
                self._audit(
                    tenant_id,
                    actor_id,
                    AuditAction.INVENTORY_ITEM_SERIALIZED_UPDATED,
                    item.id,
                    {
                        "changes": [c.to_dict() for c in changes],
                        "serial_number_changed": serial_changed,
                        "confirmed": confirm_serial_number_change,
                    },
                    request_context,
                )
            result = SerializedUpdateResult(
                item=item_info(item),
                changes=tuple(changes),
                serial_number_changed=serial_changed,
                historical_link_maintained=serial_changed and item.has_rental_history,
            )

        return result

    # =========================================================================
    # Non-serialized items
    # =========================================================================

    def _require_non_serialized(self, item: InventoryItem) -> None:
        if item.is_serialized:
            raise ItemTypeMismatchError(
                str(item.id), item.item_type, ItemType.NON_SERIALIZED.value
            )

    def update_quantity(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        item_id: UUID,
        new_quantity: int,
        quantity_unit: str | None = None,
        reason: str | None = None,
        expected_version: int | None = None,
        request_context: RequestContext | None = None,
    ) -> QuantityUpdateResult:
        """
        Set the quantity of a non-serialized line.

        ``impact`` reports the availability change and whether the drop
        exceeds the configured ratio of the previous quantity.  It never
        blocks the update.

        Raises:
            ItemTypeMismatchError, InvalidQuantityError,
            QuantityBelowAllocatedError, ItemNotFoundError, EditConflictError.
        """
        with self._unit_of_work(
            "quantity_update", tenant_id, actor_id, item_id, expected_version
        ):
            self._authorize(tenant_id, actor_id, "update")
            item = self._load(tenant_id, item_id)
            self._check_version(item, expected_version)
            self._require_non_serialized(item)
            if new_quantity < 0:
                raise InvalidQuantityError("quantity", new_quantity)
            if new_quantity < item.allocated_quantity:
                raise QuantityBelowAllocatedError(new_quantity, item.allocated_quantity)

            previous = item.quantity
            drop = previous - new_quantity
            impact = QuantityImpact(
                availability_change=new_quantity - previous,
                significant_reduction=(
                    previous > 0
                    and drop / previous > self.settings.quantity.significant_reduction_ratio
                ),
            )

            updates = self._plan_quantity_edit(item, new_quantity, quantity_unit)
            changes = [field_change(item, field, value) for field, value in updates.items()]
            if changes:
                self._touch(item, actor_id)
                self._flush_item(item)
                self._audit(
                    tenant_id,
                    actor_id,
                    AuditAction.INVENTORY_ITEM_QUANTITY_UPDATED,
                    item.id,
                    {
                        "previous_quantity": previous,
                        "new_quantity": new_quantity,
                        "quantity_unit": item.quantity_unit,
                        "allocated_quantity": item.allocated_quantity,
                        "change_reason": reason,
                        "availability_change": impact.availability_change,
                        "significant_reduction": impact.significant_reduction,
                    },
                    request_context,
                )
            result = QuantityUpdateResult(
                item_id=item.id,
                previous_quantity=previous,
                new_quantity=item.quantity,
                allocated_quantity=item.allocated_quantity,
                available_quantity=item.available_quantity,
                quantity_unit=item.quantity_unit,
                change_reason=reason,
                impact=impact,
                version=item.version,
            )

        if impact.significant_reduction:
            logger.info(
                "quantity_significant_reduction",
                extra={
                    "item_id": str(item_id),
                    "previous_quantity": previous,
                    "new_quantity": new_quantity,
                },
            )
        return result

    def set_allocated_quantity(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        item_id: UUID,
        allocated_quantity: int,
        expected_version: int | None = None,
        request_context: RequestContext | None = None,
    ) -> ItemMutationResult:
        """
        Record how many units of a non-serialized line are allocated.

        This is the rental side's path; ``0 <= allocated <= quantity``.
        """
        with self._unit_of_work(
            "allocation_update", tenant_id, actor_id, item_id, expected_version
        ):
            self._authorize(tenant_id, actor_id, "allocate")
            item = self._load(tenant_id, item_id)
            self._check_version(item, expected_version)
            self._require_non_serialized(item)
            if allocated_quantity < 0:
                raise InvalidQuantityError("allocated_quantity", allocated_quantity)
            if allocated_quantity > item.quantity:
                raise AllocationExceedsQuantityError(allocated_quantity, item.quantity)

            changes: list[ItemChange] = []
            if allocated_quantity != item.allocated_quantity:
                changes.append(field_change(item, "allocated_quantity", allocated_quantity))
                self._touch(item, actor_id)
                self._flush_item(item)
                self._audit(
                    tenant_id,
                    actor_id,
                    AuditAction.INVENTORY_ITEM_ALLOCATION_UPDATED,
                    item.id,
                    {
                        "changes": [c.to_dict() for c in changes],
                        "quantity": item.quantity,
                    },
                    request_context,
                )
            info = item_info(item)

        return ItemMutationResult(item=info, changes=tuple(changes))

    # =========================================================================
    # Serial numbers
    # =========================================================================

    def generate_serial_number(self, tenant_id: UUID, actor_id: UUID) -> str:
        """Consume and return the tenant's next serial."""
        with self._unit_of_work("serial_generate", tenant_id, actor_id):
            self._authorize(tenant_id, actor_id, "create")
            serial = self._issue_serial(tenant_id, actor_id)
        return serial

    def validate_serial_number(
        self,
        tenant_id: UUID,
        serial_number: str,
        exclude_item_id: UUID | None = None,
    ) -> bool:
        """True when no other item in the tenant carries ``serial_number``."""
        return not self.selector.serial_number_exists(
            tenant_id, serial_number, exclude_item_id=exclude_item_id
        )

    def configure_serial_sequence(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        prefix: str,
        padding_length: int,
        start_number: int = 1,
        request_context: RequestContext | None = None,
    ) -> SerialSequenceInfo:
        with self._unit_of_work("serial_sequence_configure", tenant_id, actor_id):
            self._authorize(tenant_id, actor_id, "configure")
            info = self.serials.configure_sequence(
                tenant_id, actor_id, prefix, padding_length, start_number
            )
            self._audit(
                tenant_id,
                actor_id,
                AuditAction.SERIAL_SEQUENCE_CONFIGURED,
                None,
                {
                    "prefix": prefix,
                    "padding_length": padding_length,
                    "start_number": start_number,
                },
                request_context,
            )
        return info

    def current_serial_sequence(self, tenant_id: UUID) -> SerialSequenceInfo | None:
        return self.serials.current_sequence(tenant_id)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_item(self, tenant_id: UUID, item_id: UUID) -> InventoryItemInfo:
        return self.selector.get_item(tenant_id, item_id)
