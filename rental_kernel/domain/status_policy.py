"""
StatusTransitionPolicy -- availability state machine rules.

Responsibility:
    The single source of truth for which availability transitions are
    legal and which inputs each target status needs.  Both single-item
    status changes and bulk edits go through ``validate_transition``.

Architecture position:
    Kernel > Domain -- pure functions, no I/O.  Whether an item is held by
    an allocation is decided by the caller (an injected AllocationChecker)
    and passed in as a bool.

Transition table:

    available   -> rented, maintenance, damaged, lost
    rented      -> available, damaged, lost
    maintenance -> available, damaged, lost
    damaged     -> available, maintenance, lost
    lost        -> available

    A reason is required entering maintenance, damaged, lost.
    An expected resolution date may only be given entering maintenance or
    damaged (it is optional there).
    Leaving rented for anything but available is blocked while the item is
    allocated.
"""

from __future__ import annotations

from datetime import date

from rental_kernel.domain.dtos import (
    StatusOptions,
    StatusRestriction,
    StatusTransitionOption,
)
from rental_kernel.domain.values import AvailabilityStatus
from rental_kernel.exceptions import (
    InvalidStatusTransitionError,
    ItemAllocatedError,
    ResolutionDateNotAllowedError,
    StatusReasonRequiredError,
)

A = AvailabilityStatus

VALID_TRANSITIONS: dict[AvailabilityStatus, tuple[AvailabilityStatus, ...]] = {
    A.AVAILABLE: (A.RENTED, A.MAINTENANCE, A.DAMAGED, A.LOST),
    A.RENTED: (A.AVAILABLE, A.DAMAGED, A.LOST),
    A.MAINTENANCE: (A.AVAILABLE, A.DAMAGED, A.LOST),
    A.DAMAGED: (A.AVAILABLE, A.MAINTENANCE, A.LOST),
    A.LOST: (A.AVAILABLE,),
}

STATUS_LABELS: dict[AvailabilityStatus, str] = {
    A.AVAILABLE: "Available",
    A.RENTED: "Rented",
    A.MAINTENANCE: "Under Maintenance",
    A.DAMAGED: "Damaged",
    A.LOST: "Lost",
}

REASON_REQUIRED: frozenset[AvailabilityStatus] = frozenset(
    {A.MAINTENANCE, A.DAMAGED, A.LOST}
)

RESOLUTION_DATE_STATUSES: frozenset[AvailabilityStatus] = frozenset(
    {A.MAINTENANCE, A.DAMAGED}
)

ALLOCATION_RESTRICTION = (
    "Item is currently allocated to a rental and must be returned first"
)


def valid_transitions(current: AvailabilityStatus) -> tuple[AvailabilityStatus, ...]:
    return VALID_TRANSITIONS[current]


def is_valid_transition(current: AvailabilityStatus, requested: AvailabilityStatus) -> bool:
    return requested in VALID_TRANSITIONS[current]


def requires_reason(status: AvailabilityStatus) -> bool:
    return status in REASON_REQUIRED


def requires_resolution_date(status: AvailabilityStatus) -> bool:
    """True where a resolution date is meaningful.  It is still optional."""
    return status in RESOLUTION_DATE_STATUSES


def status_label(status: AvailabilityStatus) -> str:
    return STATUS_LABELS[status]


def is_blocked_by_allocation(
    current: AvailabilityStatus,
    requested: AvailabilityStatus,
    is_allocated: bool,
) -> bool:
    return current == A.RENTED and requested != A.AVAILABLE and is_allocated


def validate_transition(
    current: AvailabilityStatus,
    requested: AvailabilityStatus,
    *,
    reason: str | None = None,
    resolution_date: date | None = None,
    is_allocated: bool = False,
    item_id: str = "",
) -> None:
    """
    Check a requested transition.

    Raises, in this order:
        InvalidStatusTransitionError: pair not in the table (includes
            same-status requests).
        ItemAllocatedError: leaving rented for a non-available status while
            allocated.
        StatusReasonRequiredError: blank or missing reason where required.
        ResolutionDateNotAllowedError: date given for a status that takes none.
    """
    current = AvailabilityStatus(current)
    requested = AvailabilityStatus(requested)
    if not is_valid_transition(current, requested):
        raise InvalidStatusTransitionError(
            current_status=current.value,
            requested_status=requested.value,
            valid_transitions=[s.value for s in VALID_TRANSITIONS[current]],
        )

    if is_blocked_by_allocation(current, requested, is_allocated):
        raise ItemAllocatedError(item_id=item_id, requested_status=requested.value)

    if requires_reason(requested) and not (reason and reason.strip()):
        raise StatusReasonRequiredError(requested_status=requested.value)

    if resolution_date is not None and not requires_resolution_date(requested):
        raise ResolutionDateNotAllowedError(requested_status=requested.value)


def status_options(current: AvailabilityStatus, *, is_allocated: bool) -> StatusOptions:
    """
    Transitions the UI may offer from ``current``.

    Targets blocked by an active allocation are moved from
    ``valid_transitions`` into ``restrictions``.
    """
    current = AvailabilityStatus(current)
    options: list[StatusTransitionOption] = []
    restrictions: list[StatusRestriction] = []
    for target in VALID_TRANSITIONS[current]:
        if is_blocked_by_allocation(current, target, is_allocated):
            restrictions.append(
                StatusRestriction(status=target, reason=ALLOCATION_RESTRICTION)
            )
            continue
        options.append(
            StatusTransitionOption(
                status=target,
                label=status_label(target),
                requires_reason=requires_reason(target),
                requires_resolution_date=requires_resolution_date(target),
            )
        )
    return StatusOptions(
        current_status=current,
        valid_transitions=tuple(options),
        restrictions=tuple(restrictions),
    )
