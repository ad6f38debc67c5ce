"""
Module: rental_kernel.models.audit_log
Responsibility: Append-only audit records written by the default AuditSink.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Rows are immutable from creation (db/immutability.py).
    - payload_hash is the SHA-256 of the canonical JSON of details, so a
      later edit of the row through raw SQL is detectable.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import Base, UTCDateTime


class AuditAction(str, Enum):
    """Actions the kernel records."""

    CATEGORY_CREATED = "CATEGORY_CREATED"
    CATEGORY_DEACTIVATED = "CATEGORY_DEACTIVATED"
    INVENTORY_ITEM_CREATED = "INVENTORY_ITEM_CREATED"
    INVENTORY_ITEM_UPDATED = "INVENTORY_ITEM_UPDATED"
    INVENTORY_STATUS_CHANGED = "INVENTORY_STATUS_CHANGED"
    INVENTORY_ITEM_SERIALIZED_UPDATED = "INVENTORY_ITEM_SERIALIZED_UPDATED"
    INVENTORY_ITEM_QUANTITY_UPDATED = "INVENTORY_ITEM_QUANTITY_UPDATED"
    INVENTORY_ITEM_ALLOCATION_UPDATED = "INVENTORY_ITEM_ALLOCATION_UPDATED"
    INVENTORY_ITEMS_BULK_UPDATED = "INVENTORY_ITEMS_BULK_UPDATED"
    SERIAL_SEQUENCE_CONFIGURED = "SERIAL_SEQUENCE_CONFIGURED"
    INVENTORY_EXPORT_INITIATED = "INVENTORY_EXPORT_INITIATED"
    INVENTORY_EXPORT_COMPLETED = "INVENTORY_EXPORT_COMPLETED"
    INVENTORY_EXPORT_FAILED = "INVENTORY_EXPORT_FAILED"
    INVENTORY_EXPORT_DOWNLOADED = "INVENTORY_EXPORT_DOWNLOADED"


class AuditLogEntry(Base):
    __tablename__ = "audit_logs"

    __table_args__ = (
        Index("idx_audit_log_tenant_created", "tenant_id", "created_at"),
        Index("idx_audit_log_subject", "subject_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    actor_user_id: Mapped[UUID] = mapped_column(nullable=False)

    action: Mapped[str] = mapped_column(String(60), nullable=False)

    subject_id: Mapped[UUID | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="success")

    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)

    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditLogEntry {self.action} subject={self.subject_id}>"
