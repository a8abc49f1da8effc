"""
ORM-level immutability enforcement.

SQLAlchemy fires mapper events before UPDATE/DELETE statements for ORM-managed
objects reach the database.  The listeners here turn forbidden changes into
``ImmutabilityViolationError`` so the flush aborts and nothing is written::

    session.flush()
         |
         v
    [before_update] --> _check_*_update() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Protected entities
------------------

=====================  ======================================  ==============
Entity                 Rule                                    Operation
=====================  ======================================  ==============
LedgerEntryModel       always immutable                        UPDATE, DELETE
PointAssignmentModel   identity fields frozen from creation;   UPDATE
                       every field frozen once terminal
PointAssignmentModel   never deleted                           DELETE
UserModel              ``lab_points`` moves only via ledger    UPDATE
RedemptionModel        never deleted                           DELETE
=====================  ======================================  ==============

The sanctioned write paths (conditional status UPDATE in the assignment
repository, atomic balance UPDATE in the ledger service) are Core statements
and do not pass through these mapper events.

Usage::

    from points_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()    # idempotent; engine init calls it

Tests that need to write forbidden rows call
``unregister_immutability_listeners()`` and re-register afterwards.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from points_kernel.exceptions import ImmutabilityViolationError
from points_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_ASSIGNMENT_IDENTITY_FIELDS = (
    "requester_id",
    "target_user_id",
    "points",
    "selected_approver_id",
    "idempotency_key",
)
_TERMINAL_ASSIGNMENT_VALUES = frozenset({"approved", "rejected"})


def _block(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    return [attr.key for attr in inspect(target).attrs if attr.history.has_changes()]


def _status_value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


def _check_ledger_entry_update(mapper, connection, target):
    changed = _changed_fields(target)
    if changed:
        _block(
            "LedgerEntry", target.id, "UPDATE",
            f"Cannot modify field '{changed[0]}' on a ledger entry",
            field=changed[0],
        )


def _check_ledger_entry_delete(mapper, connection, target):
    _block("LedgerEntry", target.id, "DELETE", "Ledger entries cannot be deleted")


def _check_assignment_update(mapper, connection, target):
    """
    Identity fields never change.  Once the stored status is terminal no
    field changes at all, including status itself.
    """
    for key in _ASSIGNMENT_IDENTITY_FIELDS:
        if get_history(target, key).has_changes():
            _block(
                "PointAssignment", target.id, "UPDATE",
                f"Cannot modify field '{key}' on a point assignment",
                field=key,
            )

    status_history = get_history(target, "status")
    if status_history.deleted:
        stored_status = _status_value(status_history.deleted[0])
    else:
        stored_status = _status_value(target.status)

    if stored_status in _TERMINAL_ASSIGNMENT_VALUES:
        changed = _changed_fields(target)
        if changed:
            _block(
                "PointAssignment", target.id, "UPDATE",
                f"Cannot modify field '{changed[0]}' on a {stored_status} assignment",
                field=changed[0],
            )


def _check_assignment_delete(mapper, connection, target):
    _block("PointAssignment", target.id, "DELETE", "Point assignments cannot be deleted")


def _check_user_balance_update(mapper, connection, target):
    if get_history(target, "lab_points").has_changes():
        _block(
            "User", target.id, "UPDATE",
            "Balance changes only through the ledger",
            field="lab_points",
        )


def _check_redemption_delete(mapper, connection, target):
    _block("Redemption", target.id, "DELETE", "Redemptions cannot be deleted")


def _listeners():
    from points_kernel.models.assignment import PointAssignmentModel
    from points_kernel.models.ledger import LedgerEntryModel
    from points_kernel.models.redemption import RedemptionModel
    from points_kernel.models.user import UserModel

    return [
        (LedgerEntryModel, "before_update", _check_ledger_entry_update),
        (LedgerEntryModel, "before_delete", _check_ledger_entry_delete),
        (PointAssignmentModel, "before_update", _check_assignment_update),
        (PointAssignmentModel, "before_delete", _check_assignment_delete),
        (UserModel, "before_update", _check_user_balance_update),
        (RedemptionModel, "before_delete", _check_redemption_delete),
    ]


def register_immutability_listeners():
    """Register all immutability listeners.  Safe to call more than once."""
    for target, event_name, listener_fn in _listeners():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability listeners.

    WARNING: Only use this in tests that intentionally write forbidden rows.
    """
    for target, event_name, listener_fn in _listeners():
        _safe_remove_listener(target, event_name, listener_fn)
