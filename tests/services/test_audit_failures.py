"""
Tests for audit write failures.

An audit sink that raises, or an audit row the database rejects, must not
undo the inventory change it describes: the change stays committed, the
caller gets its result and the failure is logged as ``audit_record_failed``.
"""

from __future__ import annotations

import pytest
from sqlalchemy import select

from rental_kernel.domain.dtos import BulkOperations, ItemCreateSpec
from rental_kernel.domain.values import (
    AvailabilityStatus as A,
    BulkOperationStatus,
    ExportFormat,
    ExportStatus,
    ExportType,
    ItemType,
)
from rental_kernel.models.audit_log import AuditAction, AuditLogEntry
from rental_kernel.models.category import Category
from rental_kernel.models.inventory_export import InventoryExport
from rental_kernel.models.inventory_item import InventoryItem
from rental_kernel.models.status_change import InventoryItemStatusChange
from rental_kernel.services.audit_log_service import AuditLogService, record_audit
from rental_kernel.services.category_service import CategoryService
from rental_kernel.services.inventory_orchestrator import InventoryOrchestrator


class UnavailableAuditStore:
    """Audit sink whose backing store is down."""

    def __init__(self):
        self.calls = 0

    def record(self, tenant_id, actor_id, action, subject_id, details, ip_address=None, user_agent=None):
        self.calls += 1
        raise ConnectionError("audit store unavailable")


@pytest.fixture
def audit_store():
    return UnavailableAuditStore()


@pytest.fixture
def degraded(session_factory, deterministic_clock, audit_store):
    """Orchestrator wired to an audit sink that always raises."""
    return InventoryOrchestrator(
        session_factory,
        clock=deterministic_clock,
        audit_sink_factory=lambda session: audit_store,
    )


def _audit_failures(captured_logs):
    return [r for r in captured_logs() if r["message"] == "audit_record_failed"]


class TestSinkFailureKeepsBusinessChange:
    def test_create_item(
        self, captured_logs, degraded, audit_store, session, tenant_id, actor_id, category
    ):
        result = degraded.create_item(
            tenant_id,
            actor_id,
            ItemCreateSpec(
                name="Generator",
                category_id=category.id,
                item_type=ItemType.SERIALIZED,
                serial_number="GEN-001",
            ),
        )

        assert result.item.name == "Generator"
        stored = session.get(InventoryItem, result.item.id)
        assert stored is not None
        assert stored.serial_number == "GEN-001"
        assert audit_store.calls == 1
        [failure] = _audit_failures(captured_logs)
        assert failure["level"] == "WARNING"
        assert failure["exc_type"] == "ConnectionError"

    def test_change_status(
        self, captured_logs, degraded, audit_store, session, tenant_id, actor_id,
        create_serialized_item,
    ):
        item = create_serialized_item()

        result = degraded.change_status(tenant_id, actor_id, item.id, A.RENTED)

        assert result.version == 2
        assert session.get(InventoryItem, item.id).availability_status == "rented"
        history = session.execute(
            select(InventoryItemStatusChange).where(
                InventoryItemStatusChange.inventory_item_id == item.id
            )
        ).scalar_one()
        assert history.id == result.change_id
        assert audit_store.calls == 1
        assert len(_audit_failures(captured_logs)) == 1

    def test_bulk_edit(
        self, captured_logs, degraded, audit_store, session, tenant_id, actor_id,
        create_serialized_item, other_category,
    ):
        items = [create_serialized_item() for _ in range(3)]

        result = degraded.bulk_edit(
            tenant_id,
            actor_id,
            [i.id for i in items],
            BulkOperations(category_id=other_category.id),
        )

        assert result.summary.successful_items == 3
        for item in items:
            assert session.get(InventoryItem, item.id).category_id == other_category.id
        operation = degraded.get_bulk_operation(tenant_id, result.operation_id)
        assert operation.status is BulkOperationStatus.COMPLETED
        assert operation.successful_items == 3
        assert operation.completed_at is not None
        assert audit_store.calls == 1
        assert len(_audit_failures(captured_logs)) == 1

    def test_initiate_export(
        self, captured_logs, degraded, audit_store, session, tenant_id, actor_id,
        create_serialized_item,
    ):
        items = [create_serialized_item() for _ in range(2)]

        export = degraded.initiate_export(
            tenant_id,
            actor_id,
            ExportType.MULTIPLE_ITEMS,
            ExportFormat.CSV,
            item_ids=[i.id for i in items],
        )

        assert export.status is ExportStatus.COMPLETED
        assert session.get(InventoryExport, export.id) is not None
        assert audit_store.calls >= 1
        assert len(_audit_failures(captured_logs)) == audit_store.calls

    def test_no_audit_row_for_failed_sink(
        self, degraded, session, tenant_id, actor_id, create_serialized_item
    ):
        item = create_serialized_item()
        degraded.change_status(tenant_id, actor_id, item.id, A.DAMAGED, reason="bent")
        rows = session.execute(
            select(AuditLogEntry).where(
                AuditLogEntry.action == AuditAction.INVENTORY_STATUS_CHANGED.value
            )
        ).all()
        assert rows == []


class TestRecordAudit:
    def test_returns_false_and_keeps_pending_write(
        self, captured_logs, session, deterministic_clock, tenant_id, actor_id, audit_store
    ):
        category = CategoryService(session, deterministic_clock).create_category(
            tenant_id, "Staging", actor_id
        )

        accepted = record_audit(
            session, audit_store, tenant_id, actor_id, "CUSTOM_ACTION", category.id, {}
        )
        session.commit()

        assert accepted is False
        assert session.get(Category, category.id) is not None
        [failure] = _audit_failures(captured_logs)
        assert failure["action"] == "CUSTOM_ACTION"
        assert failure["sink"] == "UnavailableAuditStore"

    def test_returns_true_for_working_sink(
        self, session, deterministic_clock, tenant_id, actor_id
    ):
        category = CategoryService(session, deterministic_clock).create_category(
            tenant_id, "Staging", actor_id
        )
        accepted = record_audit(
            session,
            AuditLogService(session, deterministic_clock),
            tenant_id,
            actor_id,
            "CUSTOM_ACTION",
            category.id,
            {"n": 1},
        )
        session.commit()

        assert accepted is True
        assert session.execute(select(AuditLogEntry)).scalar_one().subject_id == category.id


class TestAuditLogServiceSavepoint:
    def test_rejected_row_rolls_back_only_the_savepoint(
        self, captured_logs, session, session_factory, deterministic_clock, tenant_id, actor_id
    ):
        category = CategoryService(session, deterministic_clock).create_category(
            tenant_id, "Audio", actor_id
        )

        # action is NOT NULL, so the savepoint flush fails with IntegrityError
        AuditLogService(session, deterministic_clock).record(
            tenant_id, actor_id, None, category.id, {"n": 1}
        )
        session.commit()

        other = session_factory()
        try:
            assert other.get(Category, category.id) is not None
            assert other.execute(select(AuditLogEntry)).first() is None
        finally:
            other.close()
        [failure] = _audit_failures(captured_logs)
        assert failure["exc_type"] == "IntegrityError"
