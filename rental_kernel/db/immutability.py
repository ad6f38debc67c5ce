"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Two record kinds in the inventory kernel are evidence, not state:

  InventoryItemStatusChange   one row per availability transition
  AuditLogEntry               one row per audited mutation

Rewriting either would falsify an item's history.  Inventory items
themselves are state and are freely updated, but they are never deleted:
retirement is ``status = archived``, and history rows keep pointing at
the item id.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements are sent:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_*_delete() --------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

The exception aborts the flush; the caller's unit of work rolls back.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                      | UPDATE      | DELETE
----------------------------|-------------|------------
InventoryItemStatusChange   | blocked     | blocked
AuditLogEntry               | blocked     | blocked
InventoryItem               | allowed     | blocked

Bulk ``session.execute(update(...))`` statements bypass mapper events.
The kernel only issues those against serial_number_sequences.

To temporarily disable (TESTS ONLY):

    from rental_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
"""

from sqlalchemy import event

from rental_kernel.exceptions import ImmutabilityViolationError
from rental_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, entity_id: str, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_status_change_immutability(mapper, connection, target):
    """Status history rows are immutable from creation."""
    _block(
        "InventoryItemStatusChange",
        str(target.id),
        "UPDATE",
        "Status history rows cannot be modified",
    )


def _check_status_change_delete(mapper, connection, target):
    _block(
        "InventoryItemStatusChange",
        str(target.id),
        "DELETE",
        "Status history rows cannot be deleted",
    )


def _check_audit_log_immutability(mapper, connection, target):
    """Audit rows are immutable from creation."""
    _block(
        "AuditLogEntry",
        str(target.id),
        "UPDATE",
        "Audit records cannot be modified",
    )


def _check_audit_log_delete(mapper, connection, target):
    _block(
        "AuditLogEntry",
        str(target.id),
        "DELETE",
        "Audit records cannot be deleted",
    )


def _check_inventory_item_delete(mapper, connection, target):
    """Items are archived, never deleted."""
    _block(
        "InventoryItem",
        str(target.id),
        "DELETE",
        "Inventory items are archived, not deleted",
    )


def _listeners():
    from rental_kernel.models.audit_log import AuditLogEntry
    from rental_kernel.models.inventory_item import InventoryItem
    from rental_kernel.models.status_change import InventoryItemStatusChange

    return (
        (InventoryItemStatusChange, "before_update", _check_status_change_immutability),
        (InventoryItemStatusChange, "before_delete", _check_status_change_delete),
        (AuditLogEntry, "before_update", _check_audit_log_immutability),
        (AuditLogEntry, "before_delete", _check_audit_log_delete),
        (InventoryItem, "before_delete", _check_inventory_item_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Call once after models are imported and before any database work.
    Calling it again is harmless.
    """
    for target, identifier, fn in _listeners():
        if not event.contains(target, identifier, fn):
            event.listen(target, identifier, fn)
    logger.debug("immutability_listeners_registered")


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that must violate the rules on purpose.
    """
    for target, identifier, fn in _listeners():
        if event.contains(target, identifier, fn):
            event.remove(target, identifier, fn)
