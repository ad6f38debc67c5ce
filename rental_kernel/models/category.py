"""
Module: rental_kernel.models.category
Responsibility: ORM persistence for tenant-scoped item categories, the
    foreign-key target items are validated against.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Category names are unique within a tenant (uq_category_tenant_name).
    - Categories are deactivated, never deleted; an inactive category is
      invisible to the catalog lookup.
"""

from uuid import UUID

from sqlalchemy import Boolean, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rental_kernel.db.base import TrackedBase


class Category(TrackedBase):
    __tablename__ = "categories"

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_category_tenant_name"),
        Index("idx_category_tenant", "tenant_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    def __repr__(self) -> str:
        return f"<Category {self.name} tenant={self.tenant_id}>"
