"""
Tests for general item edits: versioning, empty diffs, type changes and
the serial/quantity rules that ride along with a patch.
"""

from uuid import uuid4

import pytest
from sqlalchemy import func, select

from rental_kernel.domain.dtos import ItemPatch
from rental_kernel.domain.values import ItemStatus, ItemType
from rental_kernel.exceptions import (
    CategoryNotFoundError,
    DuplicateNameError,
    EditConflictError,
    ItemNotFoundError,
    ItemTypeChangeBlockedError,
    QuantityBelowAllocatedError,
    QuantityRequiredError,
    SerialNumberChangeConfirmationRequiredError,
    SerialNumberExistsError,
)
from rental_kernel.models.audit_log import AuditAction, AuditLogEntry


def _audit_count(session, action: AuditAction) -> int:
    return session.execute(
        select(func.count()).select_from(AuditLogEntry).where(AuditLogEntry.action == action.value)
    ).scalar_one()


class TestUpdateFields:
    def test_update_bumps_version_and_reports_changes(
        self, orchestrator, tenant_id, actor_id, create_bulk_item, other_category
    ):
        item = create_bulk_item(name="Cord A")
        result = orchestrator.update_item(
            tenant_id,
            actor_id,
            item.id,
            ItemPatch(name="Cord B", category_id=other_category.id, description="25m"),
            expected_version=1,
        )
        assert result.item.version == 2
        assert result.item.name == "Cord B"
        assert result.item.category_id == other_category.id
        changes = {c.field: c for c in result.changes}
        assert changes["name"].old_value == "Cord A"
        assert changes["name"].new_value == "Cord B"
        assert changes["category_id"].new_value == str(other_category.id)
        assert changes["description"].old_value is None

    def test_empty_diff_does_not_write(
        self, orchestrator, session, tenant_id, actor_id, create_bulk_item
    ):
        item = create_bulk_item(name="Cord A")
        result = orchestrator.update_item(
            tenant_id, actor_id, item.id, ItemPatch(name="Cord A"), expected_version=1
        )
        assert result.changes == ()
        assert result.item.version == 1
        assert _audit_count(session, AuditAction.INVENTORY_ITEM_UPDATED) == 0

    def test_update_writes_audit_with_versions(
        self, orchestrator, session, tenant_id, actor_id, create_bulk_item
    ):
        item = create_bulk_item()
        orchestrator.update_item(
            tenant_id, actor_id, item.id, ItemPatch(status=ItemStatus.INACTIVE), 1
        )
        entry = session.execute(
            select(AuditLogEntry).where(
                AuditLogEntry.action == AuditAction.INVENTORY_ITEM_UPDATED.value
            )
        ).scalar_one()
        assert entry.details["previous_version"] == 1
        assert entry.details["version"] == 2
        assert entry.details["changes"] == [
            {"field": "status", "old_value": "active", "new_value": "inactive"}
        ]

    def test_stale_version_rejected(
        self, orchestrator, tenant_id, actor_id, create_bulk_item
    ):
        item = create_bulk_item()
        orchestrator.update_item(tenant_id, actor_id, item.id, ItemPatch(description="a"), 1)

        with pytest.raises(EditConflictError) as exc_info:
            orchestrator.update_item(
                tenant_id, actor_id, item.id, ItemPatch(description="b"), 1
            )
        assert exc_info.value.current_version == 2
        assert exc_info.value.submitted_version == 1
        assert orchestrator.get_item(tenant_id, item.id).description == "a"

    def test_unknown_item(self, orchestrator, tenant_id, actor_id, category):
        with pytest.raises(ItemNotFoundError):
            orchestrator.update_item(tenant_id, actor_id, uuid4(), ItemPatch(name="x"), 1)

    def test_other_tenant_cannot_see_item(
        self, orchestrator, other_tenant_id, actor_id, create_bulk_item
    ):
        item = create_bulk_item()
        with pytest.raises(ItemNotFoundError):
            orchestrator.update_item(other_tenant_id, actor_id, item.id, ItemPatch(name="x"), 1)

    def test_duplicate_name(self, orchestrator, tenant_id, actor_id, create_bulk_item):
        create_bulk_item(name="Taken")
        item = create_bulk_item(name="Free")
        with pytest.raises(DuplicateNameError):
            orchestrator.update_item(tenant_id, actor_id, item.id, ItemPatch(name="Taken"), 1)

    def test_inactive_category_rejected(
        self, orchestrator, tenant_id, actor_id, create_bulk_item, other_category
    ):
        item = create_bulk_item()
        orchestrator.deactivate_category(tenant_id, actor_id, other_category.id)
        with pytest.raises(CategoryNotFoundError):
            orchestrator.update_item(
                tenant_id, actor_id, item.id, ItemPatch(category_id=other_category.id), 1
            )


class TestUpdateVariantFields:
    def test_quantity_through_patch(self, orchestrator, tenant_id, actor_id, create_bulk_item):
        item = create_bulk_item(quantity=50)
        orchestrator.set_allocated_quantity(tenant_id, actor_id, item.id, 20)
        with pytest.raises(QuantityBelowAllocatedError):
            orchestrator.update_item(tenant_id, actor_id, item.id, ItemPatch(quantity=10), 2)
        result = orchestrator.update_item(
            tenant_id, actor_id, item.id, ItemPatch(quantity=30, quantity_unit="m"), 2
        )
        assert result.item.quantity == 30
        assert result.item.quantity_unit == "m"

    def test_serial_change_without_history(
        self, orchestrator, tenant_id, actor_id, create_serialized_item
    ):
        item = create_serialized_item(serial_number="OLD-1")
        result = orchestrator.update_item(
            tenant_id, actor_id, item.id, ItemPatch(serial_number="NEW-1"), 1
        )
        assert result.item.serial_number == "NEW-1"
        assert result.item.previous_serial_number == "OLD-1"

    def test_serial_change_with_history_needs_dedicated_path(
        self, orchestrator, tenant_id, actor_id, create_serialized_item, mark_rental_history
    ):
        item = create_serialized_item(serial_number="OLD-1")
        mark_rental_history(item.id)
        with pytest.raises(SerialNumberChangeConfirmationRequiredError):
            orchestrator.update_item(
                tenant_id, actor_id, item.id, ItemPatch(serial_number="NEW-1"), 1
            )

    def test_serial_taken_by_other_item(
        self, orchestrator, tenant_id, actor_id, create_serialized_item
    ):
        create_serialized_item(serial_number="A-1")
        item = create_serialized_item(serial_number="B-1")
        with pytest.raises(SerialNumberExistsError):
            orchestrator.update_item(
                tenant_id, actor_id, item.id, ItemPatch(serial_number="A-1"), 1
            )


class TestTypeChange:
    def test_serialized_to_non_serialized(
        self, orchestrator, tenant_id, actor_id, create_serialized_item
    ):
        item = create_serialized_item(serial_number="S-1")
        result = orchestrator.update_item(
            tenant_id,
            actor_id,
            item.id,
            ItemPatch(item_type=ItemType.NON_SERIALIZED, quantity=5, quantity_unit="pcs"),
            1,
        )
        assert result.item.item_type is ItemType.NON_SERIALIZED
        assert result.item.quantity == 5
        assert result.item.serial_number is None
        assert result.item.previous_serial_number == "S-1"
        assert result.item.version == 2

    def test_non_serialized_to_serialized(
        self, orchestrator, tenant_id, actor_id, create_bulk_item
    ):
        item = create_bulk_item(quantity=3)
        result = orchestrator.update_item(
            tenant_id,
            actor_id,
            item.id,
            ItemPatch(item_type=ItemType.SERIALIZED, auto_generate_serial=True),
            1,
        )
        assert result.item.item_type is ItemType.SERIALIZED
        assert result.item.serial_number == "SN00000001"
        assert result.item.quantity is None

    def test_quantity_required_for_non_serialized(
        self, orchestrator, tenant_id, actor_id, create_serialized_item
    ):
        item = create_serialized_item()
        with pytest.raises(QuantityRequiredError):
            orchestrator.update_item(
                tenant_id, actor_id, item.id, ItemPatch(item_type=ItemType.NON_SERIALIZED), 1
            )

    def test_blocked_by_rental_history(
        self, orchestrator, tenant_id, actor_id, create_bulk_item, mark_rental_history
    ):
        item = create_bulk_item()
        mark_rental_history(item.id)
        with pytest.raises(ItemTypeChangeBlockedError):
            orchestrator.update_item(
                tenant_id,
                actor_id,
                item.id,
                ItemPatch(item_type=ItemType.SERIALIZED, serial_number="S-9"),
                1,
            )

    def test_blocked_by_allocated_units(
        self, orchestrator, tenant_id, actor_id, create_bulk_item
    ):
        item = create_bulk_item(quantity=10)
        orchestrator.set_allocated_quantity(tenant_id, actor_id, item.id, 2)
        with pytest.raises(ItemTypeChangeBlockedError):
            orchestrator.update_item(
                tenant_id,
                actor_id,
                item.id,
                ItemPatch(item_type=ItemType.SERIALIZED, serial_number="S-9"),
                2,
            )
