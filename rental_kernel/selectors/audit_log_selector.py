"""
Module: rental_kernel.selectors.audit_log_selector
Responsibility: Tenant-scoped reads of audit records, used to size and
    materialize audit exports.
Architecture position: Kernel > Selectors.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select

from rental_kernel.domain.dtos import AuditRecordInfo
from rental_kernel.models.audit_log import AuditLogEntry
from rental_kernel.selectors.base import BaseSelector


def audit_record_info(entry: AuditLogEntry) -> AuditRecordInfo:
    return AuditRecordInfo(
        id=entry.id,
        tenant_id=entry.tenant_id,
        actor_user_id=entry.actor_user_id,
        action=entry.action,
        subject_id=entry.subject_id,
        details=dict(entry.details or {}),
        created_at=entry.created_at,
    )


class AuditLogSelector(BaseSelector[AuditLogEntry]):

    def _filters(
        self,
        tenant_id: UUID,
        date_from: datetime | None,
        date_to: datetime | None,
        actions: list[str] | None,
    ) -> list:
        clauses = [AuditLogEntry.tenant_id == tenant_id]
        if date_from is not None:
            clauses.append(AuditLogEntry.created_at >= date_from)
        if date_to is not None:
            clauses.append(AuditLogEntry.created_at <= date_to)
        if actions:
            clauses.append(AuditLogEntry.action.in_(actions))
        return clauses

    def count(
        self,
        tenant_id: UUID,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        actions: list[str] | None = None,
    ) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(AuditLogEntry)
            .where(*self._filters(tenant_id, date_from, date_to, actions))
        ).scalar_one()

    def list_records(
        self,
        tenant_id: UUID,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        actions: list[str] | None = None,
        subject_id: UUID | None = None,
    ) -> list[AuditRecordInfo]:
        clauses = self._filters(tenant_id, date_from, date_to, actions)
        if subject_id is not None:
            clauses.append(AuditLogEntry.subject_id == subject_id)
        stmt = (
            select(AuditLogEntry)
            .where(*clauses)
            .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id)
        )
        return [audit_record_info(e) for e in self.session.execute(stmt).scalars()]
