"""
Module: rental_kernel.models.inventory_export
Responsibility: Export job records: what was requested, how many records
    it covers, where it is in its lifecycle, and when it expires.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - expires_at is fixed at creation; downloads compare it to the clock.
      Nothing deletes expired rows.
    - download_count only grows.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import Base, UTCDateTime


class InventoryExport(Base):
    __tablename__ = "inventory_exports"

    __table_args__ = (
        Index("idx_export_tenant_created", "tenant_id", "created_at"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    exported_by: Mapped[UUID] = mapped_column(nullable=False)

    export_format: Mapped[str] = mapped_column(String(20), nullable=False)

    export_type: Mapped[str] = mapped_column(String(30), nullable=False)

    # None for full inventory and audit exports
    item_ids: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    export_options: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    record_count: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)

    download_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_downloaded_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)

    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<InventoryExport {self.export_type} {self.status} n={self.record_count}>"
