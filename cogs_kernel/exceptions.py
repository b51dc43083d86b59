"""
Typed Exception Hierarchy for the COGS Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the costing engine (sale workflows, period close, reporting)
must react differently to "not enough stock", "retry later" and "the
ledger is corrupt".  Matching on message text is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        recorder.record_cogs(product_id, Decimal("35"))
    except InsufficientInventoryError as e:
        reject_sale(e.product_id, e.requested_quantity, e.available_quantity)
    except ConcurrencyConflictError:
        requeue_sale()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CogsKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidQuantityError
    |   +-- InvalidCostError
    |   +-- InvalidCostingMethodError
    |
    +-- InventoryError
    |   +-- InsufficientInventoryError
    |       +-- NoInventoryError
    |
    +-- NotFoundError
    |   +-- CostLayerNotFoundError
    |   +-- CogsRecordNotFoundError
    |
    +-- InvariantViolationError
    |
    +-- ImmutabilityViolationError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- RestockError
        +-- InvalidRestockError
        +-- RestockExceedsSaleError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                     | When Raised
-------------|--------------------------|-------------------------------------------
Validation   | INVALID_QUANTITY         | Negative or over-precise quantity
             | INVALID_COST             | Negative unit cost / revenue
             | INVALID_COSTING_METHOD   | Unknown costing method string
-------------|--------------------------|-------------------------------------------
Inventory    | INSUFFICIENT_INVENTORY   | Requested > total active remaining
             | NO_INVENTORY             | Weighted average with nothing on hand
-------------|--------------------------|-------------------------------------------
Lookup       | COST_LAYER_NOT_FOUND     | Layer id does not exist
             | COGS_RECORD_NOT_FOUND    | Record id does not exist
-------------|--------------------------|-------------------------------------------
Integrity    | INVARIANT_VIOLATION      | Negative remaining, status drift, plan
             |                          | quantity mismatch (fatal, never retried)
             | IMMUTABILITY_VIOLATION   | Update/delete of an append-only row
-------------|--------------------------|-------------------------------------------
Concurrency  | CONCURRENCY_CONFLICT     | Stale layer version, lost insert race,
             |                          | deadlock (retried by the recorder)
-------------|--------------------------|-------------------------------------------
Restock      | INVALID_RESTOCK          | Restocking an offset record
             | RESTOCK_EXCEEDS_SALE     | Cumulative restock > quantity sold

===============================================================================
DESIGN DECISIONS
===============================================================================

1. NoInventoryError IS-A InsufficientInventoryError.
   From the caller's side both mean "cannot sell this now"; a single
   ``except InsufficientInventoryError`` covers both.

2. ConcurrencyError is the only retryable category.
   Middleware may auto-retry ConcurrencyError; everything else is either a
   business state or a bug.

===============================================================================
"""

from decimal import Decimal


class CogsKernelError(Exception):
    """
    Base exception for all COGS kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "COGS_KERNEL_ERROR"


# Validation exceptions


class ValidationError(CogsKernelError):
    """Base exception for rejected inputs."""

    code: str = "VALIDATION_ERROR"


class InvalidQuantityError(ValidationError):
    """Quantity is negative, non-numeric, or too precise."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: str, reason: str):
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity}: {reason}")


class InvalidCostError(ValidationError):
    """Unit cost or unit revenue is negative or non-numeric."""

    code: str = "INVALID_COST"

    def __init__(self, amount: str, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount}: {reason}")


class InvalidCostingMethodError(ValidationError):
    """Costing method string is not one of the supported methods."""

    code: str = "INVALID_COSTING_METHOD"

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Unknown costing method: '{method}'")


# Inventory exceptions


class InventoryError(CogsKernelError):
    """Base exception for inventory availability errors."""

    code: str = "INVENTORY_ERROR"


class InsufficientInventoryError(InventoryError):
    """Requested quantity exceeds total active remaining quantity."""

    code: str = "INSUFFICIENT_INVENTORY"

    def __init__(
        self,
        product_id: str,
        requested_quantity: Decimal,
        available_quantity: Decimal,
    ):
        self.product_id = product_id
        self.requested_quantity = requested_quantity
        self.available_quantity = available_quantity
        super().__init__(
            f"Insufficient inventory for product {product_id}: "
            f"requested {requested_quantity}, available {available_quantity}"
        )


class NoInventoryError(InsufficientInventoryError):
    """Weighted average requested while no active layers exist."""

    code: str = "NO_INVENTORY"

    def __init__(self, product_id: str, requested_quantity: Decimal = Decimal("0")):
        super().__init__(
            product_id=product_id,
            requested_quantity=requested_quantity,
            available_quantity=Decimal("0"),
        )
        self.args = (
            f"No active inventory for product {product_id}: "
            "weighted average cost is undefined",
        )


# Lookup exceptions


class NotFoundError(CogsKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class CostLayerNotFoundError(NotFoundError):
    """Cost layer ID does not exist."""

    code: str = "COST_LAYER_NOT_FOUND"

    def __init__(self, layer_id: str):
        self.layer_id = layer_id
        super().__init__(f"Cost layer not found: {layer_id}")


class CogsRecordNotFoundError(NotFoundError):
    """COGS record ID does not exist."""

    code: str = "COGS_RECORD_NOT_FOUND"

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"COGS record not found: {record_id}")


# Integrity exceptions


class InvariantViolationError(CogsKernelError):
    """
    Internal consistency check failed.

    Fatal: indicates a bug or an access path that bypassed per-product
    serialization.  The enclosing unit of work must be aborted.
    """

    code: str = "INVARIANT_VIOLATION"

    def __init__(self, invariant: str, detail: str):
        self.invariant = invariant
        self.detail = detail
        super().__init__(f"Invariant '{invariant}' violated: {detail}")


class ImmutabilityViolationError(CogsKernelError):
    """
    Attempted to modify or delete an append-only record.

    COGS records are never updated or deleted; cost layers are never deleted
    and their acquisition facts never change.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )


# Concurrency exceptions


class ConcurrencyError(CogsKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """Concurrent modification of a product's layers was detected."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, product_id: str, reason: str, attempts: int = 1):
        self.product_id = product_id
        self.reason = reason
        self.attempts = attempts
        super().__init__(
            f"Concurrency conflict on product {product_id} "
            f"after {attempts} attempt(s): {reason}"
        )


# Restock exceptions


class RestockError(CogsKernelError):
    """Base exception for sales-return corrections."""

    code: str = "RESTOCK_ERROR"


class InvalidRestockError(RestockError):
    """The referenced record cannot be restocked."""

    code: str = "INVALID_RESTOCK"

    def __init__(self, record_id: str, reason: str):
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Cannot restock record {record_id}: {reason}")


class RestockExceedsSaleError(RestockError):
    """Cumulative restocked quantity would exceed the quantity sold."""

    code: str = "RESTOCK_EXCEEDS_SALE"

    def __init__(
        self,
        record_id: str,
        requested_quantity: Decimal,
        restockable_quantity: Decimal,
    ):
        self.record_id = record_id
        self.requested_quantity = requested_quantity
        self.restockable_quantity = restockable_quantity
        super().__init__(
            f"Restock of {requested_quantity} exceeds the {restockable_quantity} "
            f"still restockable on record {record_id}"
        )
