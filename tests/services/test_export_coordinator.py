"""
Tests for export routing, completion, expiry and downloads.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from rental_kernel.domain.settings import ExportSettings, KernelSettings
from rental_kernel.domain.values import (
    ExportFormat,
    ExportStatus,
    ExportType,
    AvailabilityStatus as A,
    ItemStatus,
)
from rental_kernel.domain.dtos import ItemPatch
from rental_kernel.exceptions import (
    ExportExpiredError,
    ExportInvalidItemsError,
    ExportNotFoundError,
    ExportNotReadyError,
    ExportTooLargeError,
    InvalidDateRangeError,
    InvalidItemSelectionError,
    PermissionDeniedError,
)
from rental_kernel.models.audit_log import AuditAction
from rental_kernel.services.inventory_orchestrator import InventoryOrchestrator


class InventoryOnly:
    def has_permission(self, tenant_id, user_id, resource, action):
        return resource == "inventory"


@pytest.fixture
def small_limits(session_factory, deterministic_clock):
    """Orchestrator that completes up to 2 records inline and queues up to 4."""
    return InventoryOrchestrator(
        session_factory,
        clock=deterministic_clock,
        settings=KernelSettings(
            exports=ExportSettings(immediate_max_records=2, async_max_records=4)
        ),
    )


class TestInitiate:
    def test_small_export_completes_immediately(
        self, orchestrator, deterministic_clock, tenant_id, actor_id, create_serialized_item
    ):
        items = [create_serialized_item() for _ in range(3)]
        export = orchestrator.initiate_export(
            tenant_id,
            actor_id,
            ExportType.MULTIPLE_ITEMS,
            ExportFormat.CSV,
            item_ids=[i.id for i in items],
        )
        assert export.status is ExportStatus.COMPLETED
        assert export.is_immediate
        assert export.record_count == 3
        assert export.download_url == f"/api/inventory/export/{export.id}/download"
        assert export.expires_at == deterministic_clock.now() + timedelta(hours=24)
        assert export.item_ids == tuple(i.id for i in items)

    def test_medium_export_is_queued(
        self, small_limits, tenant_id, actor_id, create_serialized_item
    ):
        items = [create_serialized_item() for _ in range(3)]
        export = small_limits.initiate_export(
            tenant_id, actor_id, ExportType.MULTIPLE_ITEMS, ExportFormat.JSON,
            item_ids=[i.id for i in items],
        )
        assert export.status is ExportStatus.INITIATED
        assert export.download_url is None

    def test_oversized_export_rejected(
        self, small_limits, tenant_id, actor_id, create_serialized_item
    ):
        items = [create_serialized_item() for _ in range(5)]
        with pytest.raises(ExportTooLargeError) as exc_info:
            small_limits.initiate_export(
                tenant_id, actor_id, ExportType.FULL_INVENTORY, ExportFormat.CSV
            )
        assert exc_info.value.record_count == len(items)
        assert exc_info.value.max_records == 4

    def test_full_inventory_takes_active_items(
        self, orchestrator, tenant_id, actor_id, create_serialized_item
    ):
        keep = create_serialized_item()
        retired = create_serialized_item()
        orchestrator.update_item(
            tenant_id, actor_id, retired.id, ItemPatch(status=ItemStatus.ARCHIVED), 1
        )
        export = orchestrator.initiate_export(
            tenant_id, actor_id, ExportType.FULL_INVENTORY, ExportFormat.PDF
        )
        assert export.item_ids == (keep.id,)

    def test_single_item_takes_exactly_one(
        self, orchestrator, tenant_id, actor_id, create_serialized_item
    ):
        a, b = create_serialized_item(), create_serialized_item()
        with pytest.raises(InvalidItemSelectionError):
            orchestrator.initiate_export(
                tenant_id, actor_id, ExportType.SINGLE_ITEM, ExportFormat.CSV,
                item_ids=[a.id, b.id],
            )
        export = orchestrator.initiate_export(
            tenant_id, actor_id, ExportType.SINGLE_ITEM, ExportFormat.CSV, item_ids=[a.id]
        )
        assert export.record_count == 1

    def test_selection_required(self, orchestrator, tenant_id, actor_id, category):
        with pytest.raises(InvalidItemSelectionError):
            orchestrator.initiate_export(
                tenant_id, actor_id, ExportType.MULTIPLE_ITEMS, ExportFormat.CSV, item_ids=[]
            )

    def test_unknown_items_rejected(
        self, orchestrator, tenant_id, actor_id, create_serialized_item
    ):
        item = create_serialized_item()
        missing = uuid4()
        with pytest.raises(ExportInvalidItemsError) as exc_info:
            orchestrator.initiate_export(
                tenant_id, actor_id, ExportType.MULTIPLE_ITEMS, ExportFormat.CSV,
                item_ids=[item.id, missing],
            )
        assert exc_info.value.missing_item_ids == [str(missing)]

    def test_audit_export_range_checked(self, orchestrator, tenant_id, actor_id, category):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        with pytest.raises(InvalidDateRangeError):
            orchestrator.initiate_export(
                tenant_id, actor_id, ExportType.AUDIT_LOG, ExportFormat.CSV,
                date_from=now, date_to=now - timedelta(days=1),
            )

    def test_audit_export_uses_audit_url_and_expiry(
        self, orchestrator, deterministic_clock, tenant_id, actor_id, category
    ):
        export = orchestrator.initiate_export(
            tenant_id, actor_id, ExportType.AUDIT_LOG, ExportFormat.JSON
        )
        assert export.download_url == f"/api/audit/export/{export.id}/download"
        assert export.expires_at == deterministic_clock.now() + timedelta(days=7)
        assert export.item_ids is None

    def test_audit_export_needs_audit_permission(
        self, session_factory, deterministic_clock, tenant_id, actor_id, category
    ):
        restricted = InventoryOrchestrator(
            session_factory, clock=deterministic_clock, permission_checker=InventoryOnly()
        )
        with pytest.raises(PermissionDeniedError):
            restricted.initiate_export(
                tenant_id, actor_id, ExportType.AUDIT_LOG, ExportFormat.CSV
            )


class TestCompletion:
    def test_complete_queued_export(
        self, small_limits, tenant_id, actor_id, create_serialized_item
    ):
        items = [create_serialized_item() for _ in range(3)]
        export = small_limits.initiate_export(
            tenant_id, actor_id, ExportType.MULTIPLE_ITEMS, ExportFormat.CSV,
            item_ids=[i.id for i in items],
        )
        done = small_limits.complete_export(tenant_id, actor_id, export.id)
        assert done.status is ExportStatus.COMPLETED
        assert done.download_url.endswith(f"{export.id}/download")

        with pytest.raises(ExportNotReadyError):
            small_limits.complete_export(tenant_id, actor_id, export.id)

    def test_fail_queued_export(self, small_limits, tenant_id, actor_id, create_serialized_item):
        items = [create_serialized_item() for _ in range(3)]
        export = small_limits.initiate_export(
            tenant_id, actor_id, ExportType.MULTIPLE_ITEMS, ExportFormat.CSV,
            item_ids=[i.id for i in items],
        )
        failed = small_limits.fail_export(tenant_id, actor_id, export.id, "renderer crashed")
        assert failed.status is ExportStatus.FAILED
        assert failed.error_message == "renderer crashed"
        with pytest.raises(ExportNotReadyError):
            small_limits.download_export(tenant_id, actor_id, export.id)


class TestDownload:
    def test_download_counts_and_returns_items(
        self, orchestrator, tenant_id, actor_id, create_serialized_item
    ):
        item = create_serialized_item()
        export = orchestrator.initiate_export(
            tenant_id, actor_id, ExportType.SINGLE_ITEM, ExportFormat.CSV, item_ids=[item.id]
        )
        first = orchestrator.download_export(tenant_id, actor_id, export.id)
        assert [i.id for i in first.items] == [item.id]
        assert first.export.download_count == 1

        second = orchestrator.download_export(tenant_id, actor_id, export.id)
        assert second.export.download_count == 2
        assert orchestrator.get_export(tenant_id, export.id).download_count == 2

    def test_download_reflects_current_item_state(
        self, orchestrator, tenant_id, actor_id, create_serialized_item
    ):
        item = create_serialized_item()
        export = orchestrator.initiate_export(
            tenant_id, actor_id, ExportType.SINGLE_ITEM, ExportFormat.JSON, item_ids=[item.id]
        )
        orchestrator.change_status(tenant_id, actor_id, item.id, A.RENTED)
        content = orchestrator.download_export(tenant_id, actor_id, export.id)
        assert content.items[0].availability_status is A.RENTED

    def test_queued_export_not_ready(
        self, small_limits, tenant_id, actor_id, create_serialized_item
    ):
        items = [create_serialized_item() for _ in range(3)]
        export = small_limits.initiate_export(
            tenant_id, actor_id, ExportType.MULTIPLE_ITEMS, ExportFormat.CSV,
            item_ids=[i.id for i in items],
        )
        with pytest.raises(ExportNotReadyError):
            small_limits.download_export(tenant_id, actor_id, export.id)

    def test_expired_export(
        self, orchestrator, deterministic_clock, tenant_id, actor_id, create_serialized_item
    ):
        item = create_serialized_item()
        export = orchestrator.initiate_export(
            tenant_id, actor_id, ExportType.SINGLE_ITEM, ExportFormat.CSV, item_ids=[item.id]
        )
        deterministic_clock.advance(24 * 3600 - 1)
        orchestrator.download_export(tenant_id, actor_id, export.id)

        deterministic_clock.advance(1)
        with pytest.raises(ExportExpiredError):
            orchestrator.download_export(tenant_id, actor_id, export.id)

    def test_unknown_or_foreign_export(
        self, orchestrator, tenant_id, other_tenant_id, actor_id, create_serialized_item
    ):
        item = create_serialized_item()
        export = orchestrator.initiate_export(
            tenant_id, actor_id, ExportType.SINGLE_ITEM, ExportFormat.CSV, item_ids=[item.id]
        )
        with pytest.raises(ExportNotFoundError):
            orchestrator.download_export(other_tenant_id, actor_id, export.id)
        with pytest.raises(ExportNotFoundError):
            orchestrator.download_export(tenant_id, actor_id, uuid4())

    def test_audit_download_filters_by_action(
        self, orchestrator, tenant_id, actor_id, create_serialized_item
    ):
        item = create_serialized_item()
        orchestrator.change_status(tenant_id, actor_id, item.id, A.RENTED)
        export = orchestrator.initiate_export(
            tenant_id,
            actor_id,
            ExportType.AUDIT_LOG,
            ExportFormat.CSV,
            actions=[AuditAction.INVENTORY_STATUS_CHANGED.value],
        )
        assert export.record_count == 1

        content = orchestrator.download_export(tenant_id, actor_id, export.id)
        assert [r.action for r in content.audit_records] == [
            AuditAction.INVENTORY_STATUS_CHANGED.value
        ]
        assert content.audit_records[0].subject_id == item.id
        assert content.items == ()
