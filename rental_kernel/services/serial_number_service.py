"""
SerialNumberService -- per-tenant serial number sequences.

Responsibility:
    Issues human-readable serials (``prefix`` + zero-padded counter) from
    the tenant's single active ``serial_number_sequences`` row, lazily
    creating that row on first use.

Architecture position:
    Kernel > Services.  Called by ItemMutationService during create (and
    item type changes) and directly for ``generate_serial_number``.

Invariants enforced:
    - Strictly serialized per tenant: the counter is advanced by ONE
      atomic statement,

          UPDATE serial_number_sequences
             SET current_number = current_number + 1
           WHERE tenant_id = :tenant AND is_active
       RETURNING prefix, current_number, padding_length

      so the increment and the read happen under the row's write lock.
      Concurrent creators in the same tenant queue on that row (PostgreSQL
      row lock, SQLite database write lock); creators in other tenants
      touch other rows.  The issued number is the returned value minus one.
    - No read-then-write of current_number from Python, and no MAX()+1.
    - At most one active row per tenant (partial unique index).  Two
      creators racing to insert the first row are resolved with a
      SAVEPOINT: the loser's insert fails with IntegrityError, its
      savepoint rolls back, and it retries the increment.

Failure modes:
    - RuntimeError if no active row exists even after creation was
      attempted twice (indicates the row was deactivated concurrently).
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rental_kernel.domain.clock import Clock, SystemClock
from rental_kernel.domain.dtos import SerialSequenceInfo
from rental_kernel.domain.settings import SerialSettings
from rental_kernel.logging_config import get_logger
from rental_kernel.models.serial_sequence import SerialNumberSequence, format_serial
from rental_kernel.services.base import BaseService

logger = get_logger("services.serial_number")

_MAX_CREATE_ATTEMPTS = 2


class SerialNumberService(BaseService[SerialNumberSequence]):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: SerialSettings | None = None,
    ):
        super().__init__(session)
        self.clock = clock or SystemClock()
        self.settings = settings or SerialSettings()

    def next_serial(self, tenant_id: UUID, actor_id: UUID) -> str:
        """
        Issue the next serial for the tenant.

        The increment is part of the caller's transaction: if the caller
        rolls back, the number is released for the next creator.
        """
        for _ in range(_MAX_CREATE_ATTEMPTS):
            row = self._advance(tenant_id)
            if row is not None:
                prefix, next_number, padding_length = row
                serial = format_serial(prefix, next_number - 1, padding_length)
                logger.debug(
                    "serial_number_allocated",
                    extra={"tenant_id": str(tenant_id), "serial_number": serial},
                )
                return serial
            self._create_default(tenant_id, actor_id)

        raise RuntimeError(f"No active serial number sequence for tenant {tenant_id}")

    def _advance(self, tenant_id: UUID) -> tuple[str, int, int] | None:
        stmt = (
            update(SerialNumberSequence)
            .where(
                SerialNumberSequence.tenant_id == tenant_id,
                SerialNumberSequence.is_active == True,
            )
            .values(
                current_number=SerialNumberSequence.current_number + 1,
                updated_at=self.clock.now(),
            )
            .returning(
                SerialNumberSequence.prefix,
                SerialNumberSequence.current_number,
                SerialNumberSequence.padding_length,
            )
            .execution_options(synchronize_session=False)
        )
        row = self.session.execute(stmt).one_or_none()
        if row is None:
            return None
        return row[0], row[1], row[2]

    def _create_default(self, tenant_id: UUID, actor_id: UUID) -> None:
        now = self.clock.now()
        try:
            with self.session.begin_nested():
                self.session.add(
                    SerialNumberSequence(
                        tenant_id=tenant_id,
                        prefix=self.settings.prefix,
                        current_number=self.settings.start_number,
                        padding_length=self.settings.padding_length,
                        is_active=True,
                        created_by_id=actor_id,
                        created_at=now,
                        updated_at=now,
                    )
                )
            logger.info(
                "serial_sequence_created",
                extra={"tenant_id": str(tenant_id), "prefix": self.settings.prefix},
            )
        except IntegrityError:
            # Another creator inserted the tenant's row first.
            logger.debug(
                "serial_sequence_create_race",
                extra={"tenant_id": str(tenant_id)},
            )

    def current_sequence(self, tenant_id: UUID) -> SerialSequenceInfo | None:
        """The active sequence without advancing it."""
        seq = self.session.execute(
            select(SerialNumberSequence).where(
                SerialNumberSequence.tenant_id == tenant_id,
                SerialNumberSequence.is_active == True,
            )
        ).scalar_one_or_none()
        if seq is None:
            return None
        # Refresh: the counter moves through Core UPDATEs the identity map never sees
        self.session.refresh(seq)
        return SerialSequenceInfo(
            tenant_id=seq.tenant_id,
            prefix=seq.prefix,
            next_number=seq.current_number,
            padding_length=seq.padding_length,
        )

    def configure_sequence(
        self,
        tenant_id: UUID,
        actor_id: UUID,
        prefix: str,
        padding_length: int,
        start_number: int = 1,
    ) -> SerialSequenceInfo:
        """
        Retire the tenant's active sequence and install a new one.

        Serials already issued are untouched; uniqueness against them is
        still checked per item at create time.
        """
        if not prefix:
            raise ValueError("prefix must not be empty")
        if padding_length < 1:
            raise ValueError("padding_length must be at least 1")
        if start_number < 1:
            raise ValueError("start_number must be at least 1")

        now = self.clock.now()
        self.session.execute(
            update(SerialNumberSequence)
            .where(
                SerialNumberSequence.tenant_id == tenant_id,
                SerialNumberSequence.is_active == True,
            )
            .values(is_active=False, updated_at=now, updated_by_id=actor_id)
            .execution_options(synchronize_session=False)
        )
        seq = SerialNumberSequence(
            tenant_id=tenant_id,
            prefix=prefix,
            current_number=start_number,
            padding_length=padding_length,
            is_active=True,
            created_by_id=actor_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(seq)
        self.session.flush()

        logger.info(
            "serial_sequence_configured",
            extra={
                "tenant_id": str(tenant_id),
                "prefix": prefix,
                "padding_length": padding_length,
                "start_number": start_number,
            },
        )
        return SerialSequenceInfo(
            tenant_id=tenant_id,
            prefix=prefix,
            next_number=start_number,
            padding_length=padding_length,
        )
