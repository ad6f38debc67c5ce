"""
Module: rental_kernel.models.status_change
Responsibility: Append-only history of availability transitions, one row
    per successful transition.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Rows are immutable from creation (db/immutability.py rejects UPDATE
      and DELETE at the ORM layer).
    - tenant_id is denormalized from the item so history reads are
      tenant-scoped without a join.
    - item_version is the item version this transition produced.  It rises
      strictly per item, so it orders history even when two transitions
      share a timestamp.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import Base, UTCDateTime


class InventoryItemStatusChange(Base):
    __tablename__ = "inventory_item_status_changes"

    __table_args__ = (
        Index(
            "idx_status_change_item_created",
            "tenant_id",
            "inventory_item_id",
            "created_at",
        ),
        Index(
            "idx_status_change_item_version",
            "tenant_id",
            "inventory_item_id",
            "item_version",
            unique=True,
        ),
    )

    inventory_item_id: Mapped[UUID] = mapped_column(nullable=False)

    item_version: Mapped[int] = mapped_column(Integer, nullable=False)

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    changed_by: Mapped[UUID] = mapped_column(nullable=False)

    previous_status: Mapped[str] = mapped_column(String(30), nullable=False)

    new_status: Mapped[str] = mapped_column(String(30), nullable=False)

    change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    expected_resolution_date: Mapped[date | None] = mapped_column(nullable=True)

    change_type: Mapped[str] = mapped_column(String(20), nullable=False)

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)

    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<InventoryItemStatusChange {self.inventory_item_id} "
            f"{self.previous_status}->{self.new_status}>"
        )
