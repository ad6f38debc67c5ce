"""
Module: rental_kernel.selectors.inventory_selector
Responsibility: Tenant-scoped reads of inventory items and their status
    history, returned as DTOs.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Every query filters on tenant_id; an item id from another tenant
      behaves exactly like an unknown id.
    - Status history is newest first (created_at DESC, id DESC).
"""

import math
from uuid import UUID

from sqlalchemy import func, select

from rental_kernel.domain.dtos import (
    InventoryItemInfo,
    StatusChangeRecord,
    StatusHistoryPage,
)
from rental_kernel.domain.settings import HistorySettings
from rental_kernel.domain.values import (
    AvailabilityStatus,
    ItemStatus,
    ItemType,
    SerialNumberSource,
    StatusChangeType,
)
from rental_kernel.exceptions import InvalidPaginationError, ItemNotFoundError
from rental_kernel.models.inventory_item import InventoryItem
from rental_kernel.models.status_change import InventoryItemStatusChange
from rental_kernel.selectors.base import BaseSelector


def item_info(item: InventoryItem) -> InventoryItemInfo:
    """Snapshot an ORM item.  Shared by selectors and services."""
    return InventoryItemInfo(
        id=item.id,
        tenant_id=item.tenant_id,
        name=item.name,
        description=item.description,
        category_id=item.category_id,
        item_type=ItemType(item.item_type),
        serial_number=item.serial_number,
        serial_number_source=(
            SerialNumberSource(item.serial_number_source)
            if item.serial_number_source
            else None
        ),
        previous_serial_number=item.previous_serial_number,
        quantity=item.quantity,
        quantity_unit=item.quantity_unit,
        allocated_quantity=item.allocated_quantity if item.quantity is not None else None,
        availability_status=AvailabilityStatus(item.availability_status),
        status=ItemStatus(item.status),
        version=item.version,
        has_rental_history=item.has_rental_history,
        last_status_change_reason=item.last_status_change_reason,
        expected_resolution_date=item.expected_resolution_date,
        condition_notes=item.condition_notes,
        last_maintenance_date=item.last_maintenance_date,
        next_maintenance_due_date=item.next_maintenance_due_date,
        created_at=item.created_at,
        updated_at=item.updated_at,
    )


def status_change_record(row: InventoryItemStatusChange) -> StatusChangeRecord:
    return StatusChangeRecord(
        id=row.id,
        item_id=row.inventory_item_id,
        item_version=row.item_version,
        previous_status=AvailabilityStatus(row.previous_status),
        new_status=AvailabilityStatus(row.new_status),
        change_reason=row.change_reason,
        expected_resolution_date=row.expected_resolution_date,
        change_type=StatusChangeType(row.change_type),
        changed_by=row.changed_by,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
    )


class InventorySelector(BaseSelector[InventoryItem]):

    def __init__(self, session, history_settings: HistorySettings | None = None):
        super().__init__(session)
        self.history_settings = history_settings or HistorySettings()

    def _item_stmt(self, tenant_id: UUID):
        return select(InventoryItem).where(InventoryItem.tenant_id == tenant_id)

    def get_item(self, tenant_id: UUID, item_id: UUID) -> InventoryItemInfo:
        """
        Raises:
            ItemNotFoundError: unknown id or another tenant's item.
        """
        item = self.session.execute(
            self._item_stmt(tenant_id).where(InventoryItem.id == item_id)
        ).scalar_one_or_none()
        if item is None:
            raise ItemNotFoundError(str(item_id))
        return item_info(item)

    def list_items(
        self,
        tenant_id: UUID,
        item_ids: list[UUID] | None = None,
        status: ItemStatus | None = None,
    ) -> list[InventoryItemInfo]:
        stmt = self._item_stmt(tenant_id)
        if item_ids is not None:
            if not item_ids:
                return []
            stmt = stmt.where(InventoryItem.id.in_(item_ids))
        if status is not None:
            stmt = stmt.where(InventoryItem.status == status.value)
        stmt = stmt.order_by(InventoryItem.name)
        return [item_info(i) for i in self.session.execute(stmt).scalars()]

    def existing_item_ids(self, tenant_id: UUID, item_ids: list[UUID]) -> set[UUID]:
        """Subset of ``item_ids`` that exist in the tenant."""
        if not item_ids:
            return set()
        stmt = select(InventoryItem.id).where(
            InventoryItem.tenant_id == tenant_id,
            InventoryItem.id.in_(item_ids),
        )
        return set(self.session.execute(stmt).scalars())

    def active_item_ids(self, tenant_id: UUID) -> list[UUID]:
        stmt = (
            select(InventoryItem.id)
            .where(
                InventoryItem.tenant_id == tenant_id,
                InventoryItem.status == ItemStatus.ACTIVE.value,
            )
            .order_by(InventoryItem.name)
        )
        return list(self.session.execute(stmt).scalars())

    def serial_number_exists(
        self,
        tenant_id: UUID,
        serial_number: str,
        exclude_item_id: UUID | None = None,
    ) -> bool:
        stmt = select(InventoryItem.id).where(
            InventoryItem.tenant_id == tenant_id,
            InventoryItem.serial_number == serial_number,
        )
        if exclude_item_id is not None:
            stmt = stmt.where(InventoryItem.id != exclude_item_id)
        return self.session.execute(stmt.limit(1)).first() is not None

    def name_exists(
        self,
        tenant_id: UUID,
        name: str,
        exclude_item_id: UUID | None = None,
    ) -> bool:
        stmt = select(InventoryItem.id).where(
            InventoryItem.tenant_id == tenant_id,
            InventoryItem.name == name,
        )
        if exclude_item_id is not None:
            stmt = stmt.where(InventoryItem.id != exclude_item_id)
        return self.session.execute(stmt.limit(1)).first() is not None

    def status_history(
        self,
        tenant_id: UUID,
        item_id: UUID,
        page: int = 1,
        limit: int | None = None,
    ) -> StatusHistoryPage:
        """
        One page of an item's availability history, newest first.

        Raises:
            ItemNotFoundError: unknown id or another tenant's item.
            InvalidPaginationError: page < 1, limit < 1 or limit above the
                configured maximum.
        """
        if limit is None:
            limit = self.history_settings.default_page_size
        if page < 1 or limit < 1 or limit > self.history_settings.max_page_size:
            raise InvalidPaginationError(page=page, limit=limit)

        if not self.existing_item_ids(tenant_id, [item_id]):
            raise ItemNotFoundError(str(item_id))

        scope = (
            InventoryItemStatusChange.tenant_id == tenant_id,
            InventoryItemStatusChange.inventory_item_id == item_id,
        )
        total = self.session.execute(
            select(func.count()).select_from(InventoryItemStatusChange).where(*scope)
        ).scalar_one()

        rows = self.session.execute(
            select(InventoryItemStatusChange)
            .where(*scope)
            .order_by(
                InventoryItemStatusChange.item_version.desc(),
            )
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()

        return StatusHistoryPage(
            records=tuple(status_change_record(r) for r in rows),
            current_page=page,
            total_pages=math.ceil(total / limit),
            total_items=total,
            items_per_page=limit,
        )
