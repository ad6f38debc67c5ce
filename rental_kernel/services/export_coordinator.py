"""
ExportCoordinator -- export job records, size routing and download checks.

Responsibility:
    Decides how an export request is served and tracks it until download.
    Formatting the file (CSV, JSON, PDF, Excel) is not done here; downloads
    return item or audit snapshots for an external formatter.

Routing by record count:

    count <= immediate_max_records (1000)    -> completed, URL at once
    count <= async_max_records (10000)       -> initiated, finished later
                                                by complete_export/fail_export
    count >  async_max_records               -> ExportTooLargeError, no row

Expiry:
    expires_at = created_at + 24h (inventory exports) or 7 days (audit log
    exports).  Checked against the clock at download time; expired rows are
    never deleted here.

Download checks, in order:
    ExportNotFoundError -> ExportNotReadyError -> ExportExpiredError
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Iterator
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from rental_kernel.domain.clock import Clock, SystemClock
from rental_kernel.domain.collaborators import AuditSink, PermissionChecker
from rental_kernel.domain.dtos import ExportDownload, ExportInfo, RequestContext
from rental_kernel.domain.settings import DEFAULT_SETTINGS, KernelSettings
from rental_kernel.domain.values import ExportFormat, ExportStatus, ExportType
from rental_kernel.exceptions import (
    ExportExpiredError,
    ExportInvalidItemsError,
    ExportNotFoundError,
    ExportNotReadyError,
    ExportTooLargeError,
    InvalidDateRangeError,
    InvalidItemSelectionError,
    PermissionDeniedError,
    RentalKernelError,
)
from rental_kernel.logging_config import LogContext, get_logger
from rental_kernel.models.audit_log import AuditAction
from rental_kernel.models.inventory_export import InventoryExport
from rental_kernel.selectors.audit_log_selector import AuditLogSelector
from rental_kernel.selectors.inventory_selector import InventorySelector
from rental_kernel.services.audit_log_service import AuditLogService, record_audit
from rental_kernel.services.base import BaseService

logger = get_logger("services.export")

_FINISHABLE = frozenset({ExportStatus.INITIATED.value, ExportStatus.PROCESSING.value})


def export_info(export: InventoryExport) -> ExportInfo:
    return ExportInfo(
        id=export.id,
        tenant_id=export.tenant_id,
        export_type=ExportType(export.export_type),
        export_format=ExportFormat(export.export_format),
        status=ExportStatus(export.status),
        record_count=export.record_count,
        item_ids=(
            tuple(UUID(i) for i in export.item_ids) if export.item_ids is not None else None
        ),
        download_url=export.download_url,
        expires_at=export.expires_at,
        download_count=export.download_count,
        error_message=export.error_message,
        created_at=export.created_at,
    )


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class ExportCoordinator(BaseService[InventoryExport]):
    """
    Export lifecycle: initiate, complete or fail, download.

    Uses the caller's session; commits per call when ``auto_commit=True``.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: KernelSettings | None = None,
        audit_sink: AuditSink | None = None,
        permission_checker: PermissionChecker | None = None,
        auto_commit: bool = True,
    ):
        super().__init__(session)
        self.clock = clock or SystemClock()
        self.settings = settings or DEFAULT_SETTINGS
        self.audit_sink = audit_sink or AuditLogService(session, self.clock)
        self.permission_checker = permission_checker
        self.items = InventorySelector(session, self.settings.history)
        self.audit_records = AuditLogSelector(session)
        self._auto_commit = auto_commit

    @contextmanager
    def _unit_of_work(
        self,
        operation: str,
        tenant_id: UUID,
        actor_id: UUID,
        **fields: Any,
    ) -> Iterator[None]:
        with LogContext.bind(correlation_id=uuid4(), tenant_id=tenant_id, actor_id=actor_id):
            logger.info(f"{operation}_started", extra=fields)
            t0 = time.monotonic()
            try:
                yield
                self.session.flush()
                if self._auto_commit:
                    self.session.commit()
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

    def _authorize(self, tenant_id: UUID, actor_id: UUID, resource: str, action: str) -> None:
        if self.permission_checker is None:
            return
        if not self.permission_checker.has_permission(tenant_id, actor_id, resource, action):
            raise PermissionDeniedError(str(actor_id), resource, action)

    def _audit(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        action: AuditAction,
        export: InventoryExport,
        details: dict[str, Any],
        request_context: RequestContext | None,
    ) -> None:
        record_audit(
            self.session,
            self.audit_sink,
            tenant_id,
            actor_id,
            action.value,
            export.id,
            {"export_id": export.id, "export_type": export.export_type, **details},
            ip_address=request_context.ip_address if request_context else None,
            user_agent=request_context.user_agent if request_context else None,
        )

    def _get(self, tenant_id: UUID, export_id: UUID) -> InventoryExport:
        export = self.session.execute(
            select(InventoryExport)
            .where(
                InventoryExport.id == export_id,
                InventoryExport.tenant_id == tenant_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if export is None:
            raise ExportNotFoundError(str(export_id))
        return export

    def _download_url(self, export_type: ExportType, export_id: UUID) -> str:
        template = (
            self.settings.exports.audit_download_url
            if export_type.is_audit
            else self.settings.exports.inventory_download_url
        )
        return template.format(export_id=export_id)

    def _expiry(self, export_type: ExportType, now: datetime) -> datetime:
        if export_type.is_audit:
            return now + timedelta(days=self.settings.exports.audit_expiry_days)
        return now + timedelta(hours=self.settings.exports.inventory_expiry_hours)

    # =========================================================================
    # Initiate
    # =========================================================================

    def _resolve_item_ids(
        self,
        tenant_id: UUID,
        export_type: ExportType,
        item_ids: list[UUID] | None,
    ) -> list[UUID]:
        if export_type is ExportType.FULL_INVENTORY:
            return self.items.active_item_ids(tenant_id)

        ids = list(dict.fromkeys(item_ids or []))
        if not ids:
            raise InvalidItemSelectionError("at least one item id is required")
        if export_type is ExportType.SINGLE_ITEM and len(ids) != 1:
            raise InvalidItemSelectionError("a single item export takes exactly one item id")

        existing = self.items.existing_item_ids(tenant_id, ids)
        missing = [str(i) for i in ids if i not in existing]
        if missing:
            raise ExportInvalidItemsError(missing)
        return ids

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
        """
        Record an export request and route it by size.

        ``item_ids`` is used by single_item / multiple_items exports;
        ``date_from``, ``date_to`` and ``actions`` filter audit_log exports.
        A full_inventory export snapshots the ids of all active items.

        Raises:
            InvalidItemSelectionError, ExportInvalidItemsError,
            InvalidDateRangeError, ExportTooLargeError, PermissionDeniedError.
        """
        export_type = ExportType(export_type)
        export_format = ExportFormat(export_format)
        resource = "audit" if export_type.is_audit else "inventory"

        with self._unit_of_work(
            "export_initiate",
            tenant_id,
            actor_id,
            export_type=export_type.value,
            export_format=export_format.value,
        ):
            self._authorize(tenant_id, actor_id, resource, "export")

            options: dict[str, Any] | None = None
            stored_ids: list[str] | None = None
            if export_type.is_audit:
                if date_from is not None and date_to is not None and date_from > date_to:
                    raise InvalidDateRangeError(date_from, date_to)
                record_count = self.audit_records.count(tenant_id, date_from, date_to, actions)
                options = {
                    "date_from": date_from.isoformat() if date_from else None,
                    "date_to": date_to.isoformat() if date_to else None,
                    "actions": list(actions) if actions else None,
                }
            else:
                ids = self._resolve_item_ids(tenant_id, export_type, item_ids)
                record_count = len(ids)
                stored_ids = [str(i) for i in ids]

            limits = self.settings.exports
            if record_count > limits.async_max_records:
                raise ExportTooLargeError(record_count, limits.async_max_records)

            now = self.clock.now()
            export = InventoryExport(
                id=uuid4(),
                tenant_id=tenant_id,
                exported_by=actor_id,
                export_format=export_format.value,
                export_type=export_type.value,
                item_ids=stored_ids,
                export_options=options,
                record_count=record_count,
                expires_at=self._expiry(export_type, now),
                download_count=0,
                ip_address=request_context.ip_address if request_context else None,
                user_agent=request_context.user_agent if request_context else None,
                created_at=now,
            )
            if record_count <= limits.immediate_max_records:
                export.status = ExportStatus.COMPLETED.value
                export.download_url = self._download_url(export_type, export.id)
                export.completed_at = now
            else:
                export.status = ExportStatus.INITIATED.value
            self.session.add(export)
            self.session.flush()

            self._audit(
                tenant_id,
                actor_id,
                AuditAction.INVENTORY_EXPORT_INITIATED,
                export,
                {
                    "export_format": export.export_format,
                    "record_count": record_count,
                    "status": export.status,
                },
                request_context,
            )
            info = export_info(export)

        logger.info(
            "export_routed",
            extra={
                "export_id": str(info.id),
                "record_count": info.record_count,
                "immediate": info.is_immediate,
            },
        )
        return info

    # =========================================================================
    # Asynchronous completion
    # =========================================================================

    def complete_export(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        export_id: UUID,
        request_context: RequestContext | None = None,
    ) -> ExportInfo:
        """
        Mark an initiated export as materialized and publish its URL.

        Raises:
            ExportNotFoundError
            ExportNotReadyError: the export is already completed or failed.
        """
        with self._unit_of_work("export_complete", tenant_id, actor_id, export_id=str(export_id)):
            export = self._get(tenant_id, export_id)
            if export.status not in _FINISHABLE:
                raise ExportNotReadyError(str(export_id), export.status)
            export.status = ExportStatus.COMPLETED.value
            export.download_url = self._download_url(ExportType(export.export_type), export.id)
            export.completed_at = self.clock.now()
            self.session.flush()
            self._audit(
                tenant_id,
                actor_id,
                AuditAction.INVENTORY_EXPORT_COMPLETED,
                export,
                {"record_count": export.record_count},
                request_context,
            )
            info = export_info(export)
        return info

    def fail_export(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        export_id: UUID,
        error_message: str,
        request_context: RequestContext | None = None,
    ) -> ExportInfo:
        with self._unit_of_work("export_fail", tenant_id, actor_id, export_id=str(export_id)):
            export = self._get(tenant_id, export_id)
            if export.status not in _FINISHABLE:
                raise ExportNotReadyError(str(export_id), export.status)
            export.status = ExportStatus.FAILED.value
            export.error_message = error_message
            export.completed_at = self.clock.now()
            self.session.flush()
            self._audit(
                tenant_id,
                actor_id,
                AuditAction.INVENTORY_EXPORT_FAILED,
                export,
                {"error_message": error_message},
                request_context,
            )
            info = export_info(export)
        return info

    # =========================================================================
    # Reads and downloads
    # =========================================================================

    def get_export(self, tenant_id: UUID, export_id: UUID) -> ExportInfo:
        return export_info(self._get(tenant_id, export_id))

    def download_export(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        export_id: UUID,
        request_context: RequestContext | None = None,
    ) -> ExportDownload:
        """
        Hand out a completed, unexpired export.

        Postconditions:
            - download_count incremented, last_downloaded_at stamped.

        Raises:
            ExportNotFoundError, ExportNotReadyError, ExportExpiredError.
        """
        with self._unit_of_work("export_download", tenant_id, actor_id, export_id=str(export_id)):
            export = self._get(tenant_id, export_id)
            if export.status != ExportStatus.COMPLETED.value:
                raise ExportNotReadyError(str(export_id), export.status)
            now = self.clock.now()
            if now >= export.expires_at:
                raise ExportExpiredError(str(export_id), export.expires_at)

            export_type = ExportType(export.export_type)
            self._authorize(
                tenant_id, actor_id, "audit" if export_type.is_audit else "inventory", "export"
            )

            export.download_count = export.download_count + 1
            export.last_downloaded_at = now
            self.session.flush()

            if export_type.is_audit:
                options = export.export_options or {}
                content = ExportDownload(
                    export=export_info(export),
                    audit_records=tuple(
                        self.audit_records.list_records(
                            tenant_id,
                            date_from=_parse_datetime(options.get("date_from")),
                            date_to=_parse_datetime(options.get("date_to")),
                            actions=options.get("actions"),
                        )
                    ),
                )
            else:
                content = ExportDownload(
                    export=export_info(export),
                    items=tuple(
                        self.items.list_items(
                            tenant_id, item_ids=[UUID(i) for i in export.item_ids or []]
                        )
                    ),
                )

            self._audit(
                tenant_id,
                actor_id,
                AuditAction.INVENTORY_EXPORT_DOWNLOADED,
                export,
                {"download_count": export.download_count},
                request_context,
            )

        return content
