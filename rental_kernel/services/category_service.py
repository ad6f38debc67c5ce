"""
CategoryService -- tenant-scoped category catalog.

Default ``CategoryCatalog`` implementation.  Lookups run in the caller's
session, so a category created earlier in the same transaction is visible
and one deactivated concurrently is seen as soon as that commits.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select

from rental_kernel.domain.clock import Clock, SystemClock
from rental_kernel.domain.collaborators import AuditSink
from rental_kernel.domain.dtos import CategoryInfo
from rental_kernel.exceptions import CategoryNotFoundError, DuplicateNameError
from rental_kernel.logging_config import get_logger
from rental_kernel.models.audit_log import AuditAction
from rental_kernel.models.category import Category
from rental_kernel.services.audit_log_service import record_audit
from rental_kernel.services.base import BaseService

logger = get_logger("services.category")


class CategoryService(BaseService[Category]):
    """Create, look up and deactivate categories."""

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        audit_sink: AuditSink | None = None,
    ):
        super().__init__(session)
        self.clock = clock or SystemClock()
        self.audit_sink = audit_sink

    def _to_dto(self, category: Category) -> CategoryInfo:
        return CategoryInfo(
            id=category.id,
            tenant_id=category.tenant_id,
            name=category.name,
            description=category.description,
            is_active=category.is_active,
        )

    def _get(self, tenant_id: UUID, category_id: UUID) -> Category | None:
        stmt = select(Category).where(
            Category.id == category_id,
            Category.tenant_id == tenant_id,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get_category(self, tenant_id: UUID, category_id: UUID) -> CategoryInfo | None:
        """Active category in the tenant, or None."""
        category = self._get(tenant_id, category_id)
        if category is None or not category.is_active:
            return None
        return self._to_dto(category)

    def require_category(self, tenant_id: UUID, category_id: UUID) -> CategoryInfo:
        """
        Raises:
            CategoryNotFoundError: unknown, foreign-tenant or inactive id.
        """
        info = self.get_category(tenant_id, category_id)
        if info is None:
            raise CategoryNotFoundError(str(category_id))
        return info

    def list_categories(self, tenant_id: UUID, active_only: bool = True) -> list[CategoryInfo]:
        stmt = select(Category).where(Category.tenant_id == tenant_id)
        if active_only:
            stmt = stmt.where(Category.is_active == True)
        stmt = stmt.order_by(Category.name)
        return [self._to_dto(c) for c in self.session.execute(stmt).scalars()]

    def create_category(
        self,
        tenant_id: UUID,
        name: str,
        actor_id: UUID,
        description: str | None = None,
    ) -> CategoryInfo:
        """
        Raises:
            DuplicateNameError: name already used in the tenant.
        """
        existing = self.session.execute(
            select(Category.id).where(
                Category.tenant_id == tenant_id,
                Category.name == name,
            )
        ).first()
        if existing is not None:
            raise DuplicateNameError(name)

        now = self.clock.now()
        category = Category(
            tenant_id=tenant_id,
            name=name,
            description=description,
            is_active=True,
            created_by_id=actor_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(category)
        self.session.flush()

        if self.audit_sink is not None:
            record_audit(
                self.session,
                self.audit_sink,
                tenant_id,
                actor_id,
                AuditAction.CATEGORY_CREATED.value,
                category.id,
                {"name": name},
            )
        logger.info(
            "category_created",
            extra={"category_id": str(category.id), "tenant_id": str(tenant_id)},
        )
        return self._to_dto(category)

    def deactivate_category(
        self, tenant_id: UUID, category_id: UUID, actor_id: UUID
    ) -> CategoryInfo:
        """
        Hide a category from the catalog.  Items keep their category_id.

        Raises:
            CategoryNotFoundError: unknown or foreign-tenant id.
        """
        category = self._get(tenant_id, category_id)
        if category is None:
            raise CategoryNotFoundError(str(category_id))

        category.is_active = False
        category.updated_by_id = actor_id
        category.updated_at = self.clock.now()
        self.session.flush()

        if self.audit_sink is not None:
            record_audit(
                self.session,
                self.audit_sink,
                tenant_id,
                actor_id,
                AuditAction.CATEGORY_DEACTIVATED.value,
                category.id,
                {"name": category.name},
            )
        logger.info(
            "category_deactivated",
            extra={"category_id": str(category_id), "tenant_id": str(tenant_id)},
        )
        return self._to_dto(category)
