"""
ORM-level append-only enforcement for the costing tables.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below intercept those events and abort the flush
when a protected row would change:

    session.flush()
         |
         v
    [before_update] --> _check_*_update() --> ImmutabilityViolationError
         |                                   InvariantViolationError
         v
    [before_delete] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

Protected entities:

Entity          | Rule
----------------|------------------------------------------------------------
CogsRecord      | ALWAYS immutable; corrections are new offsetting records
CostLayer       | Never deleted.  product_id, unit_cost, original_quantity and
                | acquisition_date never change.  remaining_quantity only
                | decreases, stays >= 0, and status follows it.

Usage:

    from cogs_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # called by create_tables()

To temporarily disable (tests only):

    unregister_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from cogs_kernel.db.types import ZERO
from cogs_kernel.exceptions import ImmutabilityViolationError, InvariantViolationError
from cogs_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# Acquisition facts of a layer; fixed at receipt time.
COST_LAYER_STRUCTURAL_FIELDS = (
    "product_id",
    "unit_cost",
    "original_quantity",
    "acquisition_date",
)


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str, **fields):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            **fields,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


# =============================================================================
# CogsRecord: always immutable
# =============================================================================


def _check_cogs_record_update(mapper, connection, target):
    """Prevent any update to a COGS record."""
    raise _blocked(
        "CogsRecord",
        str(target.id),
        "UPDATE",
        "COGS records are immutable; record an offsetting entry instead",
    )


def _check_cogs_record_delete(mapper, connection, target):
    """Prevent deletion of a COGS record."""
    raise _blocked(
        "CogsRecord",
        str(target.id),
        "DELETE",
        "COGS records cannot be deleted",
    )


# =============================================================================
# CostLayer: structural fields frozen, quantity only decreases
# =============================================================================


def _check_cost_layer_update(mapper, connection, target):
    """
    Validate a pending layer update.

    Structural field changes are an immutability violation.  A remaining
    quantity that grows, goes negative, or disagrees with status is an
    invariant violation: it means a write bypassed the layer store.
    """
    changed = [
        field for field in COST_LAYER_STRUCTURAL_FIELDS
        if get_history(target, field).has_changes()
    ]
    if changed:
        raise _blocked(
            "CostLayer",
            str(target.id),
            "UPDATE",
            f"Cannot modify acquisition field(s) {changed} on a cost layer",
            fields=changed,
        )

    remaining_history = get_history(target, "remaining_quantity")
    if remaining_history.has_changes() and remaining_history.deleted:
        previous = remaining_history.deleted[0]
        if previous is not None and target.remaining_quantity > previous:
            raise InvariantViolationError(
                "remaining_only_decreases",
                f"layer {target.id} remaining would grow from "
                f"{previous} to {target.remaining_quantity}",
            )

    if target.remaining_quantity < ZERO:
        raise InvariantViolationError(
            "non_negative_remaining",
            f"layer {target.id} remaining would become {target.remaining_quantity}",
        )

    expected_status = "active" if target.remaining_quantity > ZERO else "depleted"
    if target.status != expected_status:
        raise InvariantViolationError(
            "status_matches_quantity",
            f"layer {target.id} would be {target.status} "
            f"with remaining {target.remaining_quantity}",
        )


def _check_cost_layer_delete(mapper, connection, target):
    """Prevent deletion of a cost layer; depleted layers are kept for audit."""
    raise _blocked(
        "CostLayer",
        str(target.id),
        "DELETE",
        "Cost layers cannot be deleted",
    )


_LISTENERS = (
    ("cogs_record", "before_update", _check_cogs_record_update),
    ("cogs_record", "before_delete", _check_cogs_record_delete),
    ("cost_layer", "before_update", _check_cost_layer_update),
    ("cost_layer", "before_delete", _check_cost_layer_delete),
)


def _targets():
    from cogs_kernel.models.cogs_record import CogsRecordModel
    from cogs_kernel.models.cost_layer import CostLayerModel

    return {"cogs_record": CogsRecordModel, "cost_layer": CostLayerModel}


def register_immutability_listeners():
    """
    Register all append-only enforcement listeners.

    Safe to call more than once; already-registered listeners are skipped.
    """
    targets = _targets()
    for key, event_name, listener_fn in _LISTENERS:
        if not event.contains(targets[key], event_name, listener_fn):
            event.listen(targets[key], event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the enforcement listeners.

    WARNING: Only use this in tests that deliberately bypass the rules.
    """
    targets = _targets()
    for key, event_name, listener_fn in _LISTENERS:
        if event.contains(targets[key], event_name, listener_fn):
            event.remove(targets[key], event_name, listener_fn)
