"""
Tests for item creation and serial number issue.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from rental_kernel.domain.dtos import ItemCreateSpec, RequestContext
from rental_kernel.domain.values import (
    AvailabilityStatus,
    ItemStatus,
    ItemType,
    SerialNumberSource,
)
from rental_kernel.exceptions import (
    CategoryNotFoundError,
    DuplicateNameError,
    DuplicateSerialError,
    InvalidQuantityError,
    PermissionDeniedError,
    QuantityRequiredError,
    SerialNumberRequiredError,
)
from rental_kernel.models.audit_log import AuditAction, AuditLogEntry
from rental_kernel.services.inventory_orchestrator import InventoryOrchestrator


class DenyAll:
    def has_permission(self, tenant_id, user_id, resource, action):
        return False


class TestCreateSerialized:
    def test_manual_serial(self, orchestrator, tenant_id, actor_id, category):
        result = orchestrator.create_item(
            tenant_id,
            actor_id,
            ItemCreateSpec(
                name="Hammer Drill",
                category_id=category.id,
                item_type=ItemType.SERIALIZED,
                serial_number="HD-001",
            ),
        )
        item = result.item
        assert item.serial_number == "HD-001"
        assert item.serial_number_source is SerialNumberSource.MANUAL
        assert item.availability_status is AvailabilityStatus.AVAILABLE
        assert item.status is ItemStatus.ACTIVE
        assert item.version == 1
        assert item.quantity is None
        assert not item.has_rental_history

    def test_generated_serials_follow_default_format(
        self, create_serialized_item
    ):
        first = create_serialized_item()
        second = create_serialized_item()
        assert first.serial_number == "SN00000001"
        assert second.serial_number == "SN00000002"
        assert first.serial_number_source is SerialNumberSource.AUTO_GENERATED

    def test_generation_wins_over_manual_serial(self, create_serialized_item):
        item = create_serialized_item(serial_number="IGNORED", auto_generate_serial=True)
        assert item.serial_number == "SN00000001"

    def test_serial_required(self, orchestrator, tenant_id, actor_id, category):
        with pytest.raises(SerialNumberRequiredError):
            orchestrator.create_item(
                tenant_id,
                actor_id,
                ItemCreateSpec(
                    name="Saw", category_id=category.id, item_type=ItemType.SERIALIZED
                ),
            )

    def test_duplicate_serial_rejected(self, create_serialized_item):
        create_serialized_item(serial_number="DUP-1")
        with pytest.raises(DuplicateSerialError):
            create_serialized_item(serial_number="DUP-1")

    def test_generator_skips_serial_taken_manually(self, create_serialized_item):
        create_serialized_item(serial_number="SN00000001")
        generated = create_serialized_item()
        assert generated.serial_number == "SN00000002"

    def test_same_serial_allowed_in_another_tenant(
        self, orchestrator, actor_id, create_serialized_item, other_tenant_id
    ):
        create_serialized_item(serial_number="SHARED-1")
        other_category = orchestrator.create_category(other_tenant_id, actor_id, "Tools")
        result = orchestrator.create_item(
            other_tenant_id,
            actor_id,
            ItemCreateSpec(
                name="Drill 1",
                category_id=other_category.id,
                item_type=ItemType.SERIALIZED,
                serial_number="SHARED-1",
            ),
        )
        assert result.item.tenant_id == other_tenant_id


class TestCreateNonSerialized:
    def test_quantity_line(self, create_bulk_item):
        item = create_bulk_item(quantity=50)
        assert item.item_type is ItemType.NON_SERIALIZED
        assert item.quantity == 50
        assert item.allocated_quantity == 0
        assert item.available_quantity == 50
        assert item.serial_number is None

    def test_zero_quantity_allowed(self, create_bulk_item):
        assert create_bulk_item(quantity=0).quantity == 0

    def test_quantity_required(self, orchestrator, tenant_id, actor_id, category):
        with pytest.raises(QuantityRequiredError):
            orchestrator.create_item(
                tenant_id,
                actor_id,
                ItemCreateSpec(
                    name="Rope", category_id=category.id, item_type=ItemType.NON_SERIALIZED
                ),
            )

    def test_negative_quantity_rejected(self, create_bulk_item):
        with pytest.raises(InvalidQuantityError):
            create_bulk_item(quantity=-1)


class TestCreateValidation:
    def test_unknown_category(self, orchestrator, tenant_id, actor_id):
        with pytest.raises(CategoryNotFoundError):
            orchestrator.create_item(
                tenant_id,
                actor_id,
                ItemCreateSpec(
                    name="Ladder",
                    category_id=uuid4(),
                    item_type=ItemType.NON_SERIALIZED,
                    quantity=1,
                ),
            )

    def test_inactive_category(self, orchestrator, tenant_id, actor_id, category):
        orchestrator.deactivate_category(tenant_id, actor_id, category.id)
        with pytest.raises(CategoryNotFoundError):
            orchestrator.create_item(
                tenant_id,
                actor_id,
                ItemCreateSpec(
                    name="Ladder",
                    category_id=category.id,
                    item_type=ItemType.NON_SERIALIZED,
                    quantity=1,
                ),
            )

    def test_duplicate_name_in_tenant(self, create_bulk_item):
        create_bulk_item(name="Cable Reel")
        with pytest.raises(DuplicateNameError):
            create_bulk_item(name="Cable Reel")

    def test_permission_denied(self, session_factory, deterministic_clock, tenant_id, actor_id, category):
        orchestrator = InventoryOrchestrator(
            session_factory, clock=deterministic_clock, permission_checker=DenyAll()
        )
        with pytest.raises(PermissionDeniedError):
            orchestrator.create_item(
                tenant_id,
                actor_id,
                ItemCreateSpec(
                    name="Ladder",
                    category_id=category.id,
                    item_type=ItemType.NON_SERIALIZED,
                    quantity=1,
                ),
            )
        assert orchestrator.list_items(tenant_id) == []

    def test_failed_create_does_not_consume_serial(
        self, orchestrator, tenant_id, actor_id, create_serialized_item
    ):
        create_serialized_item(name="Taken")
        with pytest.raises(DuplicateNameError):
            create_serialized_item(name="Taken")
        assert create_serialized_item().serial_number == "SN00000002"


class TestCreateAudit:
    def test_audit_record_written(self, orchestrator, session, tenant_id, actor_id, category):
        result = orchestrator.create_item(
            tenant_id,
            actor_id,
            ItemCreateSpec(
                name="Generator",
                category_id=category.id,
                item_type=ItemType.SERIALIZED,
                serial_number="GEN-1",
            ),
            RequestContext(ip_address="10.0.0.1", user_agent="pytest"),
        )
        entry = session.execute(
            select(AuditLogEntry).where(
                AuditLogEntry.action == AuditAction.INVENTORY_ITEM_CREATED.value
            )
        ).scalar_one()
        assert entry.subject_id == result.item.id
        assert entry.actor_user_id == actor_id
        assert entry.ip_address == "10.0.0.1"
        assert entry.details["serial_number"] == "GEN-1"
        assert entry.details["category_id"] == str(category.id)

    def test_create_logs_lifecycle(self, captured_logs, create_bulk_item):
        create_bulk_item()
        messages = [r["message"] for r in captured_logs()]
        assert "item_create_started" in messages
        assert "item_create_completed" in messages
        assert "item_created" in messages
