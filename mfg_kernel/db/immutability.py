"""
ORM-level append-only enforcement.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  Listeners registered here intercept them for append-only entities
and raise ImmutabilityViolationError, which aborts the flush:

    session.flush()
         |
         v
    [before_update] --> _reject_update() --> ImmutabilityViolationError
    [before_delete] --> _reject_delete() --> ImmutabilityViolationError

Protected entities
------------------
StockLedgerEntry    always    Corrections are reversing entries.
(module entities)   always    Modules pass their own classes to
                              ``protect_append_only``.

Bulk ``session.execute(update(...))`` statements bypass mapper events; the
kernel never issues them against protected tables.
"""

from sqlalchemy import event

from mfg_kernel.exceptions import ImmutabilityViolationError
from mfg_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _reject(operation: str, target) -> None:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} rows are append-only; {operation} is not permitted",
    )


def _reject_update(mapper, connection, target):
    _reject("UPDATE", target)


def _reject_delete(mapper, connection, target):
    _reject("DELETE", target)


def protect_append_only(*model_classes) -> None:
    """Install UPDATE/DELETE guards on the given classes (idempotent)."""
    for cls in model_classes:
        if not event.contains(cls, "before_update", _reject_update):
            event.listen(cls, "before_update", _reject_update)
        if not event.contains(cls, "before_delete", _reject_delete):
            event.listen(cls, "before_delete", _reject_delete)


def register_immutability_listeners() -> None:
    """
    Register kernel immutability listeners.

    Call during application initialization, after models are imported and
    before any postings.
    """
    from mfg_kernel.models.ledger import StockLedgerEntry

    protect_append_only(StockLedgerEntry)
