"""
Module: rental_kernel.models.serial_sequence
Responsibility: Per-tenant counter rows for auto-generated serial numbers.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - At most one active sequence per tenant (partial unique index
      uq_serial_sequence_active_tenant, on PostgreSQL and SQLite).
    - current_number is the NEXT number to issue.  It is only ever advanced
      by a single atomic UPDATE (services/serial_number_service.py), never
      read-then-written from Python.

Failure modes:
    - IntegrityError when two creators lazily insert the first active row
      for a tenant at the same time; the loser retries the increment.
"""

from uuid import UUID

from sqlalchemy import BigInteger, Boolean, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import TrackedBase


class SerialNumberSequence(TrackedBase):
    __tablename__ = "serial_number_sequences"

    __table_args__ = (
        Index(
            "uq_serial_sequence_active_tenant",
            "tenant_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    prefix: Mapped[str] = mapped_column(String(20), nullable=False, default="SN")

    current_number: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    padding_length: Mapped[int] = mapped_column(Integer, nullable=False, default=8)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def format(self, number: int) -> str:
        return format_serial(self.prefix, number, self.padding_length)

    def __repr__(self) -> str:
        return f"<SerialNumberSequence {self.prefix} next={self.current_number}>"


def format_serial(prefix: str, number: int, padding_length: int) -> str:
    """``format_serial("SN", 42, 8) == "SN00000042"``."""
    return f"{prefix}{number:0{padding_length}d}"
