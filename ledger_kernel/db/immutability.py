"""
ORM-level immutability for persisted GL lines.

Submitted GL lines are never edited or deleted; a cancelled voucher gets
reversing lines instead (see ledger_kernel.domain.reversal). These mapper
listeners fire before SQLAlchemy sends an UPDATE or DELETE for a GLEntryRow
and raise ImmutabilityViolationError.

Raw SQL and bulk statements bypass ORM events; database-level triggers for
those are part of schema migration and are not installed from here.
"""

from sqlalchemy import event

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_gl_entry_update(mapper, connection, target):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "GLEntryRow",
            "entity_id": str(target.id),
            "voucher_no": target.voucher_no,
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="GLEntryRow",
        entity_id=str(target.id),
        reason="GL lines cannot be modified once persisted; post a reversal",
    )


def _check_gl_entry_delete(mapper, connection, target):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "GLEntryRow",
            "entity_id": str(target.id),
            "voucher_no": target.voucher_no,
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="GLEntryRow",
        entity_id=str(target.id),
        reason="GL lines cannot be deleted; post a reversal",
    )


_LISTENERS = (
    ("before_update", _check_gl_entry_update),
    ("before_delete", _check_gl_entry_delete),
)


def register_immutability_listeners() -> None:
    """Install the GL line listeners. Safe to call more than once."""
    from ledger_kernel.models.gl_entry import GLEntryRow

    for identifier, fn in _LISTENERS:
        if not event.contains(GLEntryRow, identifier, fn):
            event.listen(GLEntryRow, identifier, fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the GL line listeners.

    WARNING: only for tests that need to bypass the guard on purpose.
    """
    from ledger_kernel.models.gl_entry import GLEntryRow

    for identifier, fn in _LISTENERS:
        if event.contains(GLEntryRow, identifier, fn):
            event.remove(GLEntryRow, identifier, fn)
