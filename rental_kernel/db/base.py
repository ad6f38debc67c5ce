"""
Module: rental_kernel.db.base
Responsibility: the declarative base every inventory table maps onto, and
    the two column types that keep ids and timestamps identical on
    PostgreSQL and SQLite.
Architecture position: Kernel > DB.  Lowest import target in the kernel;
    every model imports from here and this module imports nothing from
    the kernel.

Invariants enforced:
    - Ids are uuid4 values stored as 36-character strings and read back as
      ``uuid.UUID``; tenant, actor, item and export ids all use this type.
    - Datetimes go in and come out timezone-aware in UTC.  SQLite drops the
      offset on storage, so values read from it are re-tagged as UTC; that
      keeps ``now >= expires_at`` comparisons valid on both backends.
    - TrackedBase rows record who created and last touched them and when.

Failure modes:
    - ValueError when a naive datetime is bound to a UTCDateTime column.
"""

from datetime import date, datetime, timezone
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as String(36)."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, PyUUID):
            return value
        return PyUUID(value)


class UTCDateTime(TypeDecorator):
    """
    Aware datetime, normalized to UTC.

    Naive values are refused on the way in since their offset cannot be
    known; naive values on the way out (SQLite) are UTC by construction.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base: uuid4 ``id`` primary key on every table."""

    type_annotation_map: ClassVar[dict] = {
        PyUUID: UUIDString(),
        datetime: UTCDateTime(),
        date: Date(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Creation and last-change stamps.

    Services set ``created_at``/``updated_at`` from their Clock and the
    actor ids from the caller; the server defaults only cover rows written
    by hand.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[PyUUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[PyUUID | None] = mapped_column(UUIDString(), nullable=True)


UUID = PyUUID
