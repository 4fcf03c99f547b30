"""
ORM-Level Append-Only Enforcement for materialized billing records.

===============================================================================
WHY THIS EXISTS
===============================================================================

A one-time billing event is a financial fact: once the expansion job has
written it, downstream invoicing may already have consumed it.  Corrections
happen through new records (cancellations, refunds), never by rewriting the
original.  The expansion engine itself relies on this: "already materialized"
is decided by looking at existing events, so an event that silently changed
its billing time would be re-materialized on the next run.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events:

    session.flush()
         |
         v
    [before_update event] --> _reject_update() --> ImmutabilityViolationError
    [before_delete event] --> _reject_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | When Immutable         | Why
-----------------------|------------------------|-------------------------------
BillingEventModel      | ALWAYS (from creation) | Invoiced downstream; idempotence key
HistoryEntryModel      | ALWAYS (from creation) | Audit trail of the autorenewal
TransactionRecordModel | ALWAYS (from creation) | Feeds registry activity reports

Recurrences and the cursor are NOT protected: the recurrence end time may be
shortened by an external cancellation, and the cursor is advanced every run.

===============================================================================
USAGE
===============================================================================

    from billing_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from billing_kernel.exceptions import ImmutabilityViolationError
from billing_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Audit metadata that may be touched without altering the record's content.
_AUDIT_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _protected_models():
    # Inline import: models import from db, db must not import models at load.
    from billing_batch.models.billing import (
        BillingEventModel,
        HistoryEntryModel,
        TransactionRecordModel,
    )

    return (BillingEventModel, HistoryEntryModel, TransactionRecordModel)


def _changed_content_fields(target) -> list[str]:
    from sqlalchemy import inspect

    state = inspect(target)
    changed = []
    for attr in state.mapper.column_attrs:
        if attr.key in _AUDIT_METADATA_FIELDS:
            continue
        if state.attrs[attr.key].history.has_changes():
            changed.append(attr.key)
    return changed


def _reject_update(mapper, connection, target):
    """Block any content change to an append-only billing record."""
    changed = _changed_content_fields(target)
    if not changed:
        return

    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "UPDATE",
            "fields": changed,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"Append-only record cannot be modified (fields: {', '.join(changed)})",
    )


def _reject_delete(mapper, connection, target):
    """Block deletion of an append-only billing record."""
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason="Append-only record cannot be deleted",
    )


def register_immutability_listeners():
    """
    Register the append-only listeners on every protected model.

    Idempotent: already-registered listeners are not added twice.
    """
    for model in _protected_models():
        if not event.contains(model, "before_update", _reject_update):
            event.listen(model, "before_update", _reject_update)
        if not event.contains(model, "before_delete", _reject_delete):
            event.listen(model, "before_delete", _reject_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the append-only listeners.

    WARNING: Only use this in tests.
    """
    for model in _protected_models():
        _safe_remove_listener(model, "before_update", _reject_update)
        _safe_remove_listener(model, "before_delete", _reject_delete)
