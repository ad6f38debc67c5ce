"""
Inventory Orchestrator - the operation surface consumed by the HTTP layer.

The Orchestrator ties together:
- ItemMutationService: single-item create/update/status/quantity/serial
- BulkEditEngine: multi-item edits, one transaction per item
- ExportCoordinator: export routing, completion and downloads
- CategoryService: tenant categories

Each call opens its own session from the factory, commits or rolls back
inside the service it delegates to, and closes the session.  Concurrent
callers therefore never share ORM state; same-item races are arbitrated by
the item's version column.
"""

from contextlib import contextmanager
from datetime import date, datetime
from typing import Callable, Iterator
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

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
    BulkOperationInfo,
    BulkOperations,
    CategoryInfo,
    ExportDownload,
    ExportInfo,
    InventoryItemInfo,
    ItemCreateSpec,
    ItemMutationResult,
    ItemPatch,
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
from rental_kernel.domain.values import AvailabilityStatus, ExportFormat, ExportType, ItemStatus
from rental_kernel.selectors.inventory_selector import InventorySelector
from rental_kernel.services.audit_log_service import AuditLogService
from rental_kernel.services.bulk_edit_engine import BulkEditEngine
from rental_kernel.services.category_service import CategoryService
from rental_kernel.services.export_coordinator import ExportCoordinator
from rental_kernel.services.item_mutation_service import ItemMutationService


class InventoryOrchestrator:
    """
    Session-per-call facade over the inventory services.

    Collaborators that need the database (category catalog, audit sink) are
    given as factories taking the call's session, so they join its
    transaction.  Defaults are the SQL implementations in this package.
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
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._settings = settings or DEFAULT_SETTINGS
        self._catalog_factory = catalog_factory or (
            lambda session: CategoryService(session, self._clock)
        )
        self._audit_sink_factory = audit_sink_factory or (
            lambda session: AuditLogService(session, self._clock)
        )
        self._permission_checker = permission_checker
        self._allocation_checker = allocation_checker or ConservativeAllocationChecker()

        self._bulk = BulkEditEngine(
            session_factory,
            clock=self._clock,
            settings=self._settings,
            catalog_factory=self._catalog_factory,
            audit_sink_factory=self._audit_sink_factory,
            permission_checker=permission_checker,
            allocation_checker=self._allocation_checker,
        )

    @property
    def settings(self) -> KernelSettings:
        return self._settings

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    @contextmanager
    def _items(self) -> Iterator[ItemMutationService]:
        with self._session() as session:
            yield ItemMutationService(
                session,
                clock=self._clock,
                settings=self._settings,
                catalog=self._catalog_factory(session),
                audit_sink=self._audit_sink_factory(session),
                permission_checker=self._permission_checker,
                allocation_checker=self._allocation_checker,
            )

    @contextmanager
    def _exports(self) -> Iterator[ExportCoordinator]:
        with self._session() as session:
            yield ExportCoordinator(
                session,
                clock=self._clock,
                settings=self._settings,
                audit_sink=self._audit_sink_factory(session),
                permission_checker=self._permission_checker,
            )

    # =========================================================================
    # Categories
    # =========================================================================

    def create_category(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        name: str,
        description: str | None = None,
    ) -> CategoryInfo:
        with self._session() as session:
            try:
                info = CategoryService(
                    session, self._clock, self._audit_sink_factory(session)
                ).create_category(tenant_id, name, actor_id, description)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return info

    def deactivate_category(
        self, tenant_id: UUID, actor_id: UUID, category_id: UUID
    ) -> CategoryInfo:
        with self._session() as session:
            try:
                info = CategoryService(
                    session, self._clock, self._audit_sink_factory(session)
                ).deactivate_category(tenant_id, category_id, actor_id)
                session.commit()
            except Exception:
                session.rollback()
                raise
        return info

    def list_categories(self, tenant_id: UUID) -> list[CategoryInfo]:
        with self._session() as session:
            return CategoryService(session, self._clock).list_categories(tenant_id)

    # =========================================================================
    # Items
    # =========================================================================

    def create_item(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        spec: ItemCreateSpec,
        request_context: RequestContext | None = None,
    ) -> ItemMutationResult:
        with self._items() as items:
            return items.create_item(tenant_id, actor_id, spec, request_context)

    def update_item(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        item_id: UUID,
        patch: ItemPatch,
        expected_version: int,
        request_context: RequestContext | None = None,
    ) -> ItemMutationResult:
        with self._items() as items:
            return items.update_item(
                tenant_id, actor_id, item_id, patch, expected_version, request_context
            )

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
        with self._items() as items:
            return items.change_status(
                tenant_id,
                actor_id,
                item_id,
                new_status,
                reason=reason,
                resolution_date=resolution_date,
                expected_version=expected_version,
                request_context=request_context,
            )

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
        with self._items() as items:
            return items.update_serialized_fields(
                tenant_id,
                actor_id,
                item_id,
                patch,
                confirm_serial_number_change=confirm_serial_number_change,
                expected_version=expected_version,
                request_context=request_context,
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
        with self._items() as items:
            return items.update_quantity(
                tenant_id,
                actor_id,
                item_id,
                new_quantity,
                quantity_unit=quantity_unit,
                reason=reason,
                expected_version=expected_version,
                request_context=request_context,
            )

    def set_allocated_quantity(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        item_id: UUID,
        allocated_quantity: int,
        expected_version: int | None = None,
    ) -> ItemMutationResult:
        with self._items() as items:
            return items.set_allocated_quantity(
                tenant_id, actor_id, item_id, allocated_quantity, expected_version
            )

    def get_item(self, tenant_id: UUID, item_id: UUID) -> InventoryItemInfo:
        with self._session() as session:
            return InventorySelector(session, self._settings.history).get_item(tenant_id, item_id)

    def list_items(
        self,
        tenant_id: UUID,
        item_ids: list[UUID] | None = None,
        status: ItemStatus | None = None,
    ) -> list[InventoryItemInfo]:
        with self._session() as session:
            return InventorySelector(session, self._settings.history).list_items(
                tenant_id, item_ids=item_ids, status=status
            )

    def get_status_options(self, tenant_id: UUID, item_id: UUID) -> StatusOptions:
        with self._items() as items:
            return items.get_status_options(tenant_id, item_id)

    def get_status_history(
        self,
        tenant_id: UUID,
        item_id: UUID,
        page: int = 1,
        limit: int | None = None,
    ) -> StatusHistoryPage:
        with self._items() as items:
            return items.get_status_history(tenant_id, item_id, page=page, limit=limit)

    # =========================================================================
    # Serial numbers
    # =========================================================================

    def validate_serial_number(
        self,
        tenant_id: UUID,
        serial_number: str,
        exclude_item_id: UUID | None = None,
    ) -> bool:
        with self._items() as items:
            return items.validate_serial_number(tenant_id, serial_number, exclude_item_id)

    def generate_serial_number(self, tenant_id: UUID, actor_id: UUID) -> str:
        with self._items() as items:
            return items.generate_serial_number(tenant_id, actor_id)

    def configure_serial_sequence(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        prefix: str,
        padding_length: int,
        start_number: int = 1,
    ) -> SerialSequenceInfo:
        with self._items() as items:
            return items.configure_serial_sequence(
                tenant_id, actor_id, prefix, padding_length, start_number
            )

    # =========================================================================
    # Bulk edit
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
        return self._bulk.bulk_edit(
            tenant_id,
            actor_id,
            item_ids,
            operations,
            confirm_large_operation=confirm_large_operation,
            request_context=request_context,
        )

    def get_bulk_operation(self, tenant_id: UUID, operation_id: UUID) -> BulkOperationInfo:
        return self._bulk.get_bulk_operation(tenant_id, operation_id)

    # =========================================================================
    # Exports
    # =========================================================================

    def initiate_export(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        export_type: ExportType,
        export_format: ExportFormat,
        item_ids: list[UUID] | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        actions: list[str] | None = None,
        request_context: RequestContext | None = None,
    ) -> ExportInfo:
        with self._exports() as exports:
            return exports.initiate_export(
                tenant_id,
                actor_id,
                export_type,
                export_format,
                item_ids=item_ids,
                date_from=date_from,
                date_to=date_to,
                actions=actions,
                request_context=request_context,
            )

    def complete_export(self, tenant_id: UUID, actor_id: UUID, export_id: UUID) -> ExportInfo:
        with self._exports() as exports:
            return exports.complete_export(tenant_id, actor_id, export_id)

    def fail_export(
        self, tenant_id: UUID, actor_id: UUID, export_id: UUID, error_message: str
    ) -> ExportInfo:
        with self._exports() as exports:
            return exports.fail_export(tenant_id, actor_id, export_id, error_message)

    def get_export(self, tenant_id: UUID, export_id: UUID) -> ExportInfo:
        with self._exports() as exports:
            return exports.get_export(tenant_id, export_id)

    def download_export(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        export_id: UUID,
        request_context: RequestContext | None = None,
    ) -> ExportDownload:
        with self._exports() as exports:
            return exports.download_export(tenant_id, actor_id, export_id, request_context)
