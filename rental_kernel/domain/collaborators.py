"""
Injected collaborator protocols.

The kernel depends on four capabilities it does not own.  Each is a
runtime-checkable Protocol so services accept any object with the right
shape; defaults live in services/ (catalog, audit sink) or here
(allocation checker).
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from rental_kernel.domain.dtos import CategoryInfo


@runtime_checkable
class CategoryCatalog(Protocol):
    """Tenant-scoped category lookup.  Returns None for unknown or inactive ids."""

    def get_category(self, tenant_id: UUID, category_id: UUID) -> CategoryInfo | None:
        ...


@runtime_checkable
class AuditSink(Protocol):
    """
    Append-only audit target.

    Services call sinks through ``record_audit``, which runs ``record``
    inside a savepoint and logs ``audit_record_failed`` if it raises.  A
    failing sink therefore never undoes the business change it describes.
    """

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
        ...


@runtime_checkable
class PermissionChecker(Protocol):
    def has_permission(
        self, tenant_id: UUID, user_id: UUID, resource: str, action: str
    ) -> bool:
        ...


@runtime_checkable
class AllocationChecker(Protocol):
    """Answers whether the rental subsystem currently holds an item."""

    def is_currently_allocated(self, tenant_id: UUID, item_id: UUID) -> bool:
        ...


class ConservativeAllocationChecker:
    """
    Treats every item as allocated.

    With no rental subsystem wired in, an item in ``rented`` can only go
    back to ``available``.
    """

    def is_currently_allocated(self, tenant_id: UUID, item_id: UUID) -> bool:
        return True


class NoAllocationChecker:
    """Treats no item as allocated.  For deployments without rentals."""

    def is_currently_allocated(self, tenant_id: UUID, item_id: UUID) -> bool:
        return False
