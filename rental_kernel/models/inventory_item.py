"""
Module: rental_kernel.models.inventory_item
Responsibility: ORM persistence for the InventoryItem aggregate: one
    rentable serialized unit or one bulk-quantity line.
Architecture position: Kernel > Models.  May import from db/ and
    domain/values.py only.

Invariants enforced:
    - Exactly one of {serial_number, quantity} is present, matching
      item_type (ck_item_variant).
    - quantity >= 0, allocated_quantity >= 0, allocated_quantity <= quantity
      (ck_item_quantity_*).
    - name and serial_number are unique within a tenant.
    - version is the mapper's version_id_col: every flushed UPDATE is
      ``UPDATE ... WHERE id = ? AND version = ?`` and increments it.  A
      zero-row update raises StaleDataError, which services translate to
      EditConflictError.  Status changes share the same counter.
    - has_rental_history is sticky: once true it never goes back.
    - Items are never physically deleted (db/immutability.py); retirement
      is status = archived.

Failure modes:
    - IntegrityError on duplicate (tenant_id, name) or (tenant_id,
      serial_number) when two creators race past the service's checks.
    - StaleDataError on a concurrent write between read and flush.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import TrackedBase
from rental_kernel.domain.values import (
    AvailabilityStatus,
    ItemStatus,
    ItemType,
    SerialNumberSource,
)


class InventoryItem(TrackedBase):
    """
    A rentable inventory item.

    Enum-valued columns are plain strings on load; compare with ``==`` or
    wrap in the enum before identity checks.
    """

    __tablename__ = "inventory_items"

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_item_tenant_name"),
        UniqueConstraint("tenant_id", "serial_number", name="uq_item_tenant_serial"),
        CheckConstraint(
            "(item_type = 'serialized' AND serial_number IS NOT NULL AND quantity IS NULL)"
            " OR (item_type = 'non_serialized' AND quantity IS NOT NULL"
            " AND serial_number IS NULL)",
            name="ck_item_variant",
        ),
        CheckConstraint(
            "quantity IS NULL OR quantity >= 0",
            name="ck_item_quantity_non_negative",
        ),
        CheckConstraint(
            "allocated_quantity >= 0",
            name="ck_item_quantity_allocated_non_negative",
        ),
        CheckConstraint(
            "quantity IS NULL OR allocated_quantity <= quantity",
            name="ck_item_quantity_allocated_within",
        ),
        Index("idx_item_tenant", "tenant_id"),
        Index("idx_item_tenant_category", "tenant_id", "category_id"),
        Index("idx_item_tenant_availability", "tenant_id", "availability_status"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    category_id: Mapped[UUID] = mapped_column(nullable=False)

    item_type: Mapped[str] = mapped_column(String(30), nullable=False)

    # Serialized variant
    serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    serial_number_source: Mapped[str | None] = mapped_column(String(30), nullable=True)
    previous_serial_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Non-serialized variant
    quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    quantity_unit: Mapped[str | None] = mapped_column(String(30), nullable=True)
    allocated_quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # Lifecycle
    availability_status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=AvailabilityStatus.AVAILABLE.value,
    )
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=ItemStatus.ACTIVE.value,
    )
    last_status_change_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    expected_resolution_date: Mapped[date | None] = mapped_column(nullable=True)

    # Provenance
    has_rental_history: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )
    condition_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_maintenance_date: Mapped[date | None] = mapped_column(nullable=True)
    next_maintenance_due_date: Mapped[date | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def type(self) -> ItemType:
        return ItemType(self.item_type)

    @property
    def is_serialized(self) -> bool:
        return self.type is ItemType.SERIALIZED

    @property
    def availability(self) -> AvailabilityStatus:
        return AvailabilityStatus(self.availability_status)

    @property
    def lifecycle_status(self) -> ItemStatus:
        return ItemStatus(self.status)

    @property
    def serial_source(self) -> SerialNumberSource | None:
        if self.serial_number_source is None:
            return None
        return SerialNumberSource(self.serial_number_source)

    @property
    def available_quantity(self) -> int | None:
        """quantity - allocated_quantity, or None for serialized items."""
        if self.quantity is None:
            return None
        return self.quantity - (self.allocated_quantity or 0)

    def apply_availability(
        self,
        new_status: AvailabilityStatus,
        reason: str | None,
        resolution_date: date | None,
    ) -> None:
        """
        Move to ``new_status``.  Caller has already validated the transition.

        Postconditions:
            - last_status_change_reason and expected_resolution_date hold the
              values of this transition (the date is cleared when omitted).
            - has_rental_history is true if the item was ever rented.
        """
        self.availability_status = new_status.value
        self.last_status_change_reason = reason
        self.expected_resolution_date = resolution_date
        if new_status is AvailabilityStatus.RENTED:
            self.has_rental_history = True

    def appended_condition_notes(self, notes: str) -> str:
        """Condition notes with ``notes`` appended on a new line."""
        if self.condition_notes:
            return f"{self.condition_notes}\n{notes}"
        return notes

    def __repr__(self) -> str:
        return f"<InventoryItem {self.name} v{self.version} {self.availability_status}>"
