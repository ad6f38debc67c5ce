"""
Module: rental_kernel.models.bulk_operation
Responsibility: One row per accepted bulk edit batch, tracking progress and
    the final per-item failure details.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - successful_items + failed_items + partially_successful
      == processed_items <= total_items.
    - completed_at is set exactly when status leaves processing.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import Base, UTCDateTime


class InventoryBulkOperation(Base):
    __tablename__ = "inventory_bulk_operations"

    __table_args__ = (
        Index("idx_bulk_operation_tenant_created", "tenant_id", "created_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    initiated_by: Mapped[UUID] = mapped_column(nullable=False)

    operation_type: Mapped[str] = mapped_column(String(30), nullable=False)

    target_item_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False)

    operation_parameters: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(String(30), nullable=False)

    total_items: Mapped[int] = mapped_column(Integer, nullable=False)

    processed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    successful_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    failed_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    partially_successful: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    failure_details: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)

    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
