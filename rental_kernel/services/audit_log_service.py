"""
AuditLogService -- default append-only audit sink.

Responsibility:
    Writes one ``audit_logs`` row per call, inside a SAVEPOINT of the
    caller's transaction.  The row commits or rolls back with the business
    change it describes.

Failure modes:
    - Any error writing the row is logged as ``audit_record_failed`` and
      swallowed; the savepoint is rolled back and the business operation
      carries on.  Errors from flushing the caller's own pending changes
      are NOT swallowed; they are raised before the savepoint opens.

``record_audit`` gives the same guarantee for any injected AuditSink:
services call sinks only through it.
"""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from rental_kernel.domain.clock import Clock, SystemClock
from rental_kernel.domain.collaborators import AuditSink
from rental_kernel.logging_config import get_logger
from rental_kernel.models.audit_log import AuditLogEntry
from rental_kernel.services.base import BaseService
from rental_kernel.utils.hashing import hash_payload, to_json_safe

logger = get_logger("services.audit_log")


class AuditLogService(BaseService[AuditLogEntry]):

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self.clock = clock or SystemClock()

    def record(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        action: str,
        subject_id: UUID | None,
        details: dict[str, Any],
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        action_value = getattr(action, "value", action)

        # Business changes must hit the database (and fail loudly) first.
        self.session.flush()

        try:
            payload = to_json_safe(details)
            with self.session.begin_nested():
                self.session.add(
                    AuditLogEntry(
                        tenant_id=tenant_id,
                        actor_user_id=actor_id,
                        action=action_value,
                        subject_id=subject_id,
                        status="success",
                        details=payload,
                        payload_hash=hash_payload(payload),
                        ip_address=ip_address,
                        user_agent=user_agent,
                        created_at=self.clock.now(),
                    )
                )
        except Exception:
            logger.warning(
                "audit_record_failed",
                exc_info=True,
                extra={
                    "action": action_value,
                    "subject_id": str(subject_id) if subject_id else None,
                },
            )
            return

        logger.debug(
            "audit_recorded",
            extra={"action": action_value, "subject_id": str(subject_id) if subject_id else None},
        )


def record_audit(
    session: Session,
    sink: AuditSink,
    tenant_id: UUID,
    actor_id: UUID,
    action: str,
    subject_id: UUID | None,
    details: dict[str, Any],
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> bool:
    """
    Hand one record to ``sink`` without letting the sink fail the caller.

    The caller's pending changes are flushed first, outside the guard, so
    their errors still propagate.  The sink then runs inside a SAVEPOINT:
    if it raises, anything it wrote through the session is rolled back,
    the failure is logged as ``audit_record_failed`` and the caller's
    transaction carries on.

    Returns:
        True when the sink accepted the record.
    """
    action_value = getattr(action, "value", action)
    session.flush()
    try:
        with session.begin_nested():
            sink.record(
                tenant_id,
                actor_id,
                action_value,
                subject_id,
                details,
                ip_address=ip_address,
                user_agent=user_agent,
            )
    except Exception:
        logger.warning(
            "audit_record_failed",
            exc_info=True,
            extra={
                "action": action_value,
                "subject_id": str(subject_id) if subject_id else None,
                "sink": type(sink).__name__,
            },
        )
        return False
    return True
