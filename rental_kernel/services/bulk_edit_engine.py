"""
BulkEditEngine -- apply one sparse patch to many items, item by item.

Responsibility:
    Validate a batch up front, then run every item in its OWN session and
    transaction, collecting a per-item outcome (success / partial /
    failed), a persisted ``inventory_bulk_operations`` record and one
    audit record for the whole batch.

Architecture position:
    Kernel > Services.  Needs a session factory (not a session): each item
    commits or rolls back independently.

Pre-flight (raised out of ``bulk_edit``, nothing written):
    1. Empty selection               -> InvalidItemSelectionError
    2. Empty operations              -> EmptyBulkOperationError
    3. > threshold without confirm   -> BulkLargeOperationWarning
    4. Permission denied             -> PermissionDeniedError

Per-item rules:
    - Missing item                  -> failed, error on field "item"
    - Unknown/inactive category     -> error on field "category_id"
    - Illegal availability change   -> error on field "availability_status"
    - Fields equal to the current value are skipped (not changes, not errors)
    - changes and no errors -> success; changes and errors -> partial;
      errors and no changes -> failed; neither -> success (no-op)
    - A failing item never stops the batch.

Concurrency:
    Items run sequentially by default.  With ``max_workers > 1`` they run
    on a ThreadPoolExecutor; each worker has its own session, and result
    order always follows the (de-duplicated) input order.
"""

from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from contextvars import copy_context
from dataclasses import dataclass, field
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy import select, text
from sqlalchemy.orm import Session, sessionmaker
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
    BulkEditResult,
    BulkEditSummary,
    BulkItemError,
    BulkItemResult,
    BulkOperationInfo,
    BulkOperations,
    ItemChange,
    RequestContext,
)
from rental_kernel.domain.settings import DEFAULT_SETTINGS, KernelSettings
from rental_kernel.domain.status_policy import validate_transition
from rental_kernel.domain.values import (
    AvailabilityStatus,
    BulkItemOutcome,
    BulkOperationStatus,
    ItemStatus,
    StatusChangeType,
)
from rental_kernel.exceptions import (
    BulkLargeOperationWarning,
    CategoryNotFoundError,
    EditConflictError,
    EmptyBulkOperationError,
    InvalidItemSelectionError,
    ItemNotFoundError,
    ItemTimeoutError,
    PermissionDeniedError,
    RentalKernelError,
)
from rental_kernel.logging_config import LogContext, get_logger
from rental_kernel.models.audit_log import AuditAction
from rental_kernel.models.bulk_operation import InventoryBulkOperation
from rental_kernel.models.inventory_item import InventoryItem
from rental_kernel.selectors.bulk_operation_selector import BulkOperationSelector
from rental_kernel.services.audit_log_service import AuditLogService, record_audit
from rental_kernel.services.category_service import CategoryService
from rental_kernel.services.item_mutation_service import (
    PERMISSION_RESOURCE,
    field_change,
    record_status_change,
)

logger = get_logger("services.bulk_edit")

OPERATION_TYPE = "bulk_edit"


@dataclass
class _ItemOutcome:
    changes: list[ItemChange] = field(default_factory=list)
    errors: list[BulkItemError] = field(default_factory=list)

    def fail(self, field_name: str, exc: RentalKernelError) -> None:
        self.errors.append(BulkItemError(field=field_name, code=exc.code, message=str(exc)))

    @property
    def status(self) -> BulkItemOutcome:
        if self.errors and self.changes:
            return BulkItemOutcome.PARTIAL
        if self.errors:
            return BulkItemOutcome.FAILED
        return BulkItemOutcome.SUCCESS


def _failed(item_id: UUID, field_name: str, exc: RentalKernelError) -> BulkItemResult:
    return BulkItemResult(
        item_id=item_id,
        status=BulkItemOutcome.FAILED,
        errors=(BulkItemError(field=field_name, code=exc.code, message=str(exc)),),
    )


class BulkEditEngine:
    """
    Multi-item edits with per-item partial failure.

    Contract:
        ``bulk_edit`` returns a BulkEditResult for every accepted batch,
        however many items fail.  Only pre-flight checks raise.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Clock | None = None,
        settings: KernelSettings | None = None,
        catalog_factory: Callable[[Session], CategoryCatalog] | None = None,
        audit_sink_factory: Callable[[Session], AuditSink] | None = None,
        permission_checker: PermissionChecker | None = None,
        allocation_checker: AllocationChecker | None = None,
    ):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()
        self.settings = settings or DEFAULT_SETTINGS
        self.catalog_factory = catalog_factory or (
            lambda session: CategoryService(session, self.clock)
        )
        self.audit_sink_factory = audit_sink_factory or (
            lambda session: AuditLogService(session, self.clock)
        )
        self.permission_checker = permission_checker
        self.allocation_checker = allocation_checker or ConservativeAllocationChecker()

    # =========================================================================
    # Entry point
    # =========================================================================

    def bulk_edit(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        item_ids: list[UUID],
        operations: BulkOperations,
        confirm_large_operation: bool = False,
        request_context: RequestContext | None = None,
    ) -> BulkEditResult:
        """
        Apply ``operations`` to each of ``item_ids``.

        Raises:
            InvalidItemSelectionError, EmptyBulkOperationError,
            BulkLargeOperationWarning, PermissionDeniedError.
        """
        item_ids = self._preflight(
            tenant_id, actor_id, item_ids, operations, confirm_large_operation
        )

        operation_id = uuid4()
        with LogContext.bind(
            correlation_id=uuid4(),
            tenant_id=tenant_id,
            actor_id=actor_id,
            operation_id=operation_id,
        ):
            logger.info(
                "bulk_edit_started",
                extra={
                    "item_count": len(item_ids),
                    "operations": operations.to_dict(),
                    "confirmed": confirm_large_operation,
                },
            )
            t0 = time.monotonic()

            self._open_operation(
                operation_id, tenant_id, actor_id, item_ids, operations, request_context
            )
            results = self._run_items(
                tenant_id, actor_id, item_ids, operations, request_context
            )
            summary = BulkEditSummary(
                total_items=len(results),
                successful_items=sum(
                    1 for r in results if r.status is BulkItemOutcome.SUCCESS
                ),
                failed_items=sum(1 for r in results if r.status is BulkItemOutcome.FAILED),
                partially_successful=sum(
                    1 for r in results if r.status is BulkItemOutcome.PARTIAL
                ),
            )
            self._close_operation(
                operation_id, tenant_id, actor_id, operations, results, summary, request_context
            )

            logger.info(
                "bulk_edit_completed",
                extra={
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    "successful_items": summary.successful_items,
                    "failed_items": summary.failed_items,
                    "partially_successful": summary.partially_successful,
                },
            )

        return BulkEditResult(
            operation_id=operation_id,
            summary=summary,
            results=tuple(results),
        )

    def get_bulk_operation(self, tenant_id: UUID, operation_id: UUID) -> BulkOperationInfo:
        session = self.session_factory()
        try:
            return BulkOperationSelector(session).get_operation(tenant_id, operation_id)
        finally:
            session.close()

    # =========================================================================
    # Pre-flight
    # =========================================================================

    def _preflight(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        item_ids: list[UUID],
        operations: BulkOperations,
        confirm_large_operation: bool,
    ) -> list[UUID]:
        if not item_ids:
            raise InvalidItemSelectionError("at least one item id is required")
        if operations.is_empty():
            raise EmptyBulkOperationError()

        threshold = self.settings.bulk.large_operation_threshold
        if len(item_ids) > threshold and not confirm_large_operation:
            logger.warning(
                "bulk_edit_confirmation_required",
                extra={"item_count": len(item_ids), "threshold": threshold},
            )
            raise BulkLargeOperationWarning(len(item_ids), threshold)

        if self.permission_checker is not None and not self.permission_checker.has_permission(
            tenant_id, actor_id, PERMISSION_RESOURCE, "bulk_update"
        ):
            raise PermissionDeniedError(str(actor_id), PERMISSION_RESOURCE, "bulk_update")

        # Duplicates would race against themselves; first occurrence wins
        return list(dict.fromkeys(item_ids))

    # =========================================================================
    # Operation record
    # =========================================================================

    def _open_operation(
        self,
        operation_id: UUID,
        tenant_id: UUID,
        actor_id: UUID,
        item_ids: list[UUID],
        operations: BulkOperations,
        request_context: RequestContext | None,
    ) -> None:
        session = self.session_factory()
        try:
            session.add(
                InventoryBulkOperation(
                    id=operation_id,
                    tenant_id=tenant_id,
                    initiated_by=actor_id,
                    operation_type=OPERATION_TYPE,
                    target_item_ids=[str(i) for i in item_ids],
                    operation_parameters=operations.to_dict(),
                    status=BulkOperationStatus.PROCESSING.value,
                    total_items=len(item_ids),
                    processed_items=0,
                    successful_items=0,
                    failed_items=0,
                    partially_successful=0,
                    ip_address=request_context.ip_address if request_context else None,
                    user_agent=request_context.user_agent if request_context else None,
                    created_at=self.clock.now(),
                )
            )
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _close_operation(
        self,
        operation_id: UUID,
        tenant_id: UUID,
        actor_id: UUID,
        operations: BulkOperations,
        results: list[BulkItemResult],
        summary: BulkEditSummary,
        request_context: RequestContext | None,
    ) -> None:
        if summary.successful_items == summary.total_items:
            status = BulkOperationStatus.COMPLETED
        elif summary.failed_items == summary.total_items:
            status = BulkOperationStatus.FAILED
        else:
            status = BulkOperationStatus.PARTIALLY_COMPLETED

        failure_details = [
            {
                "item_id": str(r.item_id),
                "status": r.status.value,
                "errors": [e.to_dict() for e in r.errors],
            }
            for r in results
            if r.status is not BulkItemOutcome.SUCCESS
        ]

        session = self.session_factory()
        try:
            op = session.execute(
                select(InventoryBulkOperation).where(
                    InventoryBulkOperation.id == operation_id
                )
            ).scalar_one()
            op.status = status.value
            op.processed_items = summary.total_items
            op.successful_items = summary.successful_items
            op.failed_items = summary.failed_items
            op.partially_successful = summary.partially_successful
            op.failure_details = failure_details or None
            op.completed_at = self.clock.now()
            session.commit()
        except Exception:
            # Items are already committed; the caller still gets their results
            session.rollback()
            session.close()
            logger.error("bulk_operation_finalize_failed", exc_info=True)
            return

        try:
            record_audit(
                session,
                self.audit_sink_factory(session),
                tenant_id,
                actor_id,
                AuditAction.INVENTORY_ITEMS_BULK_UPDATED.value,
                operation_id,
                {
                    "operation_id": operation_id,
                    "operations": operations.to_dict(),
                    "total_items": summary.total_items,
                    "successful_items": summary.successful_items,
                    "failed_items": summary.failed_items,
                    "partially_successful": summary.partially_successful,
                    "updated_item_ids": [r.item_id for r in results if r.changes],
                },
                ip_address=request_context.ip_address if request_context else None,
                user_agent=request_context.user_agent if request_context else None,
            )
            session.commit()
        except Exception:
            session.rollback()
            logger.warning(
                "audit_record_failed",
                exc_info=True,
                extra={"action": AuditAction.INVENTORY_ITEMS_BULK_UPDATED.value},
            )
        finally:
            session.close()

    # =========================================================================
    # Items
    # =========================================================================

    def _run_items(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        item_ids: list[UUID],
        operations: BulkOperations,
        request_context: RequestContext | None,
    ) -> list[BulkItemResult]:
        max_workers = self.settings.bulk.max_workers
        if max_workers <= 1 or len(item_ids) == 1:
            return [
                self._process_item(tenant_id, actor_id, item_id, operations, request_context)
                for item_id in item_ids
            ]

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [
                # Each worker carries the batch's LogContext
                executor.submit(
                    copy_context().run,
                    self._process_item,
                    tenant_id,
                    actor_id,
                    item_id,
                    operations,
                    request_context,
                )
                for item_id in item_ids
            ]
            return [f.result() for f in futures]

    def _process_item(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        item_id: UUID,
        operations: BulkOperations,
        request_context: RequestContext | None,
    ) -> BulkItemResult:
        timeout = self.settings.bulk.item_timeout_seconds
        deadline = time.monotonic() + timeout
        session = self.session_factory()
        try:
            with LogContext.bind(item_id=item_id):
                if session.get_bind().dialect.name == "postgresql":
                    session.execute(
                        text(f"SET LOCAL statement_timeout = {int(timeout * 1000)}")
                    )

                item = session.execute(
                    select(InventoryItem).where(
                        InventoryItem.tenant_id == tenant_id,
                        InventoryItem.id == item_id,
                    )
                ).scalar_one_or_none()
                if item is None:
                    session.rollback()
                    return _failed(item_id, "item", ItemNotFoundError(str(item_id)))

                outcome = self._apply(
                    session, tenant_id, actor_id, item, operations, request_context
                )
                if outcome.changes:
                    item.updated_at = self.clock.now()
                    item.updated_by_id = actor_id
                    session.flush()
                    if time.monotonic() > deadline:
                        raise ItemTimeoutError(str(item_id), timeout)
                    session.commit()
                else:
                    session.rollback()

                logger.debug(
                    "bulk_item_processed",
                    extra={
                        "status": outcome.status.value,
                        "change_count": len(outcome.changes),
                        "error_count": len(outcome.errors),
                    },
                )
                return BulkItemResult(
                    item_id=item_id,
                    status=outcome.status,
                    changes=tuple(outcome.changes),
                    errors=tuple(outcome.errors),
                )
        except StaleDataError:
            session.rollback()
            logger.warning("bulk_item_conflict", extra={"item_id": str(item_id)})
            return _failed(item_id, "item", EditConflictError(str(item_id), None, None))
        except RentalKernelError as exc:
            session.rollback()
            logger.warning(
                "bulk_item_failed",
                extra={"item_id": str(item_id), "error_code": exc.code},
            )
            return _failed(item_id, "item", exc)
        except Exception as exc:
            session.rollback()
            logger.error(
                "bulk_item_unexpected_error",
                extra={"item_id": str(item_id)},
                exc_info=True,
            )
            return BulkItemResult(
                item_id=item_id,
                status=BulkItemOutcome.FAILED,
                errors=(
                    BulkItemError(field="general", code="UNEXPECTED_ERROR", message=str(exc)),
                ),
            )
        finally:
            session.close()

    def _apply(
        self,
        session: Session,
        tenant_id: UUID,
        actor_id: UUID,
        item: InventoryItem,
        operations: BulkOperations,
        request_context: RequestContext | None,
    ) -> _ItemOutcome:
        """Validate every requested field, then apply the valid ones."""
        outcome = _ItemOutcome()
        updates: dict[str, object] = {}

        if operations.category_id is not None and operations.category_id != item.category_id:
            catalog = self.catalog_factory(session)
            if catalog.get_category(tenant_id, operations.category_id) is None:
                outcome.fail("category_id", CategoryNotFoundError(str(operations.category_id)))
            else:
                updates["category_id"] = operations.category_id

        if operations.status is not None:
            status_value = ItemStatus(operations.status).value
            if status_value != item.status:
                updates["status"] = status_value

        if operations.append_maintenance_notes:
            updates["condition_notes"] = item.appended_condition_notes(
                operations.append_maintenance_notes
            )

        new_availability = None
        reason = operations.status_change_reason or operations.append_maintenance_notes
        if operations.availability_status is not None:
            requested = AvailabilityStatus(operations.availability_status)
            if requested is not item.availability:
                is_allocated = (
                    item.availability is AvailabilityStatus.RENTED
                    and self.allocation_checker.is_currently_allocated(tenant_id, item.id)
                )
                try:
                    validate_transition(
                        item.availability,
                        requested,
                        reason=reason,
                        is_allocated=is_allocated,
                        item_id=str(item.id),
                    )
                    new_availability = requested
                except RentalKernelError as exc:
                    outcome.fail("availability_status", exc)

        for field_name, value in updates.items():
            outcome.changes.append(field_change(item, field_name, value))

        if new_availability is not None:
            previous = item.availability
            record_status_change(
                session,
                item,
                new_availability,
                reason.strip() if reason else None,
                None,
                actor_id,
                StatusChangeType.MANUAL,
                request_context,
                self.clock.now(),
            )
            outcome.changes.append(
                ItemChange(
                    field="availability_status",
                    old_value=previous.value,
                    new_value=new_availability.value,
                )
            )

        return outcome
