"""
Module: cogs_engines
Responsibility:
    Package entrypoint for the pure costing algorithms.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  May only import
    cogs_kernel domain values, decimal helpers, exceptions and logging.
    MUST NOT import cogs_services.

Invariants enforced:
    - Purity: engines never read the clock or the database.
    - Decimal-only arithmetic; floats are refused at the boundary.
    - Determinism: identical inputs always produce identical plans.

Usage:
    from cogs_engines import compute_plan
    plan = compute_plan(CostingMethod.FIFO, "SKU-1", layers, Decimal("35"))
"""

from cogs_engines.costing import (
    compute_plan,
    fifo,
    layer_order_for,
    lifo,
    weighted_average,
    weighted_average_cost,
)
from cogs_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "compute_plan",
    "fifo",
    "lifo",
    "weighted_average",
    "weighted_average_cost",
    "layer_order_for",
    "traced_engine",
    "compute_input_fingerprint",
]
