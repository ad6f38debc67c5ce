"""
Module: rental_kernel.selectors.bulk_operation_selector
Responsibility: Read bulk edit batch records (status and progress).
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import select

from rental_kernel.domain.dtos import BulkOperationInfo
from rental_kernel.domain.values import BulkOperationStatus
from rental_kernel.exceptions import BulkOperationNotFoundError
from rental_kernel.models.bulk_operation import InventoryBulkOperation
from rental_kernel.selectors.base import BaseSelector


def bulk_operation_info(op: InventoryBulkOperation) -> BulkOperationInfo:
    return BulkOperationInfo(
        id=op.id,
        tenant_id=op.tenant_id,
        status=BulkOperationStatus(op.status),
        total_items=op.total_items,
        processed_items=op.processed_items,
        successful_items=op.successful_items,
        failed_items=op.failed_items,
        partially_successful=op.partially_successful,
        operation_parameters=dict(op.operation_parameters or {}),
        failure_details=list(op.failure_details) if op.failure_details is not None else None,
        created_at=op.created_at,
        completed_at=op.completed_at,
    )


class BulkOperationSelector(BaseSelector[InventoryBulkOperation]):

    def get_operation(self, tenant_id: UUID, operation_id: UUID) -> BulkOperationInfo:
        """
        Raises:
            BulkOperationNotFoundError: unknown id or another tenant's batch.
        """
        op = self.session.execute(
            select(InventoryBulkOperation).where(
                InventoryBulkOperation.id == operation_id,
                InventoryBulkOperation.tenant_id == tenant_id,
            )
        ).scalar_one_or_none()
        if op is None:
            raise BulkOperationNotFoundError(str(operation_id))
        return bulk_operation_info(op)
