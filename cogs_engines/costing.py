"""
cogs_engines.costing -- Pure FIFO, LIFO and weighted-average costing.

Responsibility:
    Turn a read-only view of a product's active cost layers and a requested
    quantity into a ConsumptionPlan: which layers are drawn, how much from
    each, at what unit cost, and the total cost of goods sold.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Imports only
    cogs_kernel.domain, cogs_kernel.db.types and cogs_kernel.exceptions.
    Services fetch layers, call compute_plan(), and persist the result.

Invariants enforced:
    - Plan exactness: line quantities sum exactly to the requested quantity
      (re-checked by ConsumptionPlan.__post_init__).
    - No partial plan: if the active layers hold less than requested,
      InsufficientInventoryError is raised and nothing is returned.
    - Inputs are never mutated; layers are frozen snapshots and are re-sorted
      into a new list before use.
    - Determinism: ties on acquisition date are broken by layer id, so
      identical inputs always yield identical plans.
    - Weighted-average draw-down: proportional shares are quantized to the
      quantity grid and the rounding remainder is assigned to the layer with
      the largest remaining quantity, spilling to the next-largest when a
      layer has no room, so no draw exceeds what a layer holds.

Failure modes:
    - InsufficientInventoryError: requested > total active remaining.
    - NoInventoryError: weighted average with no active layers.
    - InvalidQuantityError: negative or over-precise requested quantity.
    - InvariantViolationError: layers for another product in the view.

Audit relevance:
    Every call is traced with a COGS_ENGINE_TRACE record whose fingerprint
    covers the method inputs, so a stored plan can be replayed.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import assert_never

from cogs_engines.tracer import traced_engine
from cogs_kernel.db.types import ZERO, parse_quantity, round_amount, round_quantity
from cogs_kernel.domain.costing import (
    ConsumptionPlan,
    CostingMethod,
    CostLayer,
    LayerOrder,
    PlanLine,
    WeightedAverageCost,
    order_layers,
)
from cogs_kernel.exceptions import (
    InsufficientInventoryError,
    InvariantViolationError,
    NoInventoryError,
)
from cogs_kernel.logging_config import get_logger

logger = get_logger("engines.costing")

ENGINE_VERSION = "1.0"


def layer_order_for(method: CostingMethod) -> LayerOrder:
    """Layer ordering a method reads from the store."""
    match method:
        case CostingMethod.FIFO:
            return LayerOrder.ASCENDING
        case CostingMethod.LIFO:
            return LayerOrder.DESCENDING
        case CostingMethod.WEIGHTED_AVERAGE:
            return LayerOrder.ASCENDING
        case _:
            assert_never(method)


def _active_sorted(
    product_id: str,
    layers: Iterable[CostLayer],
    order: LayerOrder,
) -> list[CostLayer]:
    """Active layers for ``product_id`` as a new list in the given order."""
    active: list[CostLayer] = []
    for layer in layers:
        if layer.product_id != product_id:
            raise InvariantViolationError(
                "layer_product_matches",
                f"layer {layer.layer_id} belongs to {layer.product_id}, "
                f"not {product_id}",
            )
        if layer.remaining_quantity > ZERO:
            active.append(layer)
    return order_layers(active, order)


def _available(layers: Sequence[CostLayer]) -> Decimal:
    return sum((layer.remaining_quantity for layer in layers), ZERO)


def _consume_in_order(
    product_id: str,
    method: CostingMethod,
    layers: Sequence[CostLayer],
    quantity: Decimal,
) -> ConsumptionPlan:
    """Greedy draw-down shared by FIFO and LIFO."""
    available = _available(layers)
    if quantity > available:
        logger.info(
            "insufficient_inventory",
            extra={
                "product_id": product_id,
                "method": method.value,
                "requested": quantity,
                "available": available,
            },
        )
        raise InsufficientInventoryError(product_id, quantity, available)

    lines: list[PlanLine] = []
    still_needed = quantity
    for layer in layers:
        if still_needed == ZERO:
            break
        take = min(layer.remaining_quantity, still_needed)
        lines.append(PlanLine(layer.layer_id, take, layer.unit_cost))
        still_needed -= take

    return ConsumptionPlan(
        product_id=product_id,
        method=method,
        quantity_requested=quantity,
        lines=tuple(lines),
        total_cogs=sum((line.line_cost for line in lines), ZERO),
    )


@traced_engine("fifo", ENGINE_VERSION, fingerprint_fields=("product_id", "layers", "quantity"))
def fifo(product_id: str, layers: Iterable[CostLayer], quantity: Decimal) -> ConsumptionPlan:
    """First-in, first-out: oldest layers are consumed first."""
    quantity = parse_quantity(quantity)
    ordered = _active_sorted(product_id, layers, LayerOrder.ASCENDING)
    if quantity == ZERO:
        return ConsumptionPlan.empty(product_id, CostingMethod.FIFO)
    return _consume_in_order(product_id, CostingMethod.FIFO, ordered, quantity)


@traced_engine("lifo", ENGINE_VERSION, fingerprint_fields=("product_id", "layers", "quantity"))
def lifo(product_id: str, layers: Iterable[CostLayer], quantity: Decimal) -> ConsumptionPlan:
    """Last-in, first-out: newest layers are consumed first."""
    quantity = parse_quantity(quantity)
    ordered = _active_sorted(product_id, layers, LayerOrder.DESCENDING)
    if quantity == ZERO:
        return ConsumptionPlan.empty(product_id, CostingMethod.LIFO)
    return _consume_in_order(product_id, CostingMethod.LIFO, ordered, quantity)


def weighted_average_cost(product_id: str, layers: Iterable[CostLayer]) -> WeightedAverageCost:
    """
    Aggregate over the active layers.

    Raises:
        NoInventoryError: If no active quantity exists.
    """
    active = _active_sorted(product_id, layers, LayerOrder.ASCENDING)
    total_quantity = _available(active)
    if total_quantity == ZERO:
        raise NoInventoryError(product_id)
    total_value = round_amount(
        sum((layer.remaining_quantity * layer.unit_cost for layer in active), ZERO)
    )
    return WeightedAverageCost(
        product_id=product_id,
        average_unit_cost=round_amount(total_value / total_quantity),
        total_quantity=total_quantity,
        total_value=total_value,
        layer_count=len(active),
    )


def _allocate_proportionally(
    layers: Sequence[CostLayer],
    quantity: Decimal,
    total_quantity: Decimal,
) -> dict[int, Decimal]:
    """
    Split ``quantity`` across layers by remaining share.

    Returns a mapping of layer index to drawn quantity whose values sum
    exactly to ``quantity``.
    """
    shares = {
        i: min(
            round_quantity(layer.remaining_quantity * quantity / total_quantity),
            layer.remaining_quantity,
        )
        for i, layer in enumerate(layers)
    }

    remainder = quantity - sum(shares.values(), ZERO)

    # Largest remaining first; acquisition order breaks ties.
    by_size = sorted(
        range(len(layers)),
        key=lambda i: (-layers[i].remaining_quantity, layers[i].sort_key),
    )
    for i in by_size:
        if remainder == ZERO:
            break
        if remainder > ZERO:
            adjust = min(remainder, layers[i].remaining_quantity - shares[i])
        else:
            adjust = -min(-remainder, shares[i])
        shares[i] += adjust
        remainder -= adjust

    if remainder != ZERO:
        raise InvariantViolationError(
            "allocation_exact",
            f"weighted-average allocation left {remainder} unassigned",
        )
    return shares


@traced_engine(
    "weighted_average", ENGINE_VERSION, fingerprint_fields=("product_id", "layers", "quantity")
)
def weighted_average(
    product_id: str,
    layers: Iterable[CostLayer],
    quantity: Decimal,
) -> ConsumptionPlan:
    """
    Weighted average: every unit costs the blended average of active layers.

    The plan still draws down individual layers in proportion to their
    remaining quantity so the ledger stays accurate; each line carries the
    average as its applied unit cost.
    """
    quantity = parse_quantity(quantity)
    active = _active_sorted(product_id, layers, LayerOrder.ASCENDING)
    if quantity == ZERO:
        return ConsumptionPlan.empty(product_id, CostingMethod.WEIGHTED_AVERAGE)

    if not active:
        logger.info(
            "no_inventory",
            extra={"product_id": product_id, "requested": quantity},
        )
        raise NoInventoryError(product_id, quantity)

    average = weighted_average_cost(product_id, active)
    if quantity > average.total_quantity:
        logger.info(
            "insufficient_inventory",
            extra={
                "product_id": product_id,
                "method": CostingMethod.WEIGHTED_AVERAGE.value,
                "requested": quantity,
                "available": average.total_quantity,
            },
        )
        raise InsufficientInventoryError(product_id, quantity, average.total_quantity)

    shares = _allocate_proportionally(active, quantity, average.total_quantity)
    lines = tuple(
        PlanLine(layer.layer_id, shares[i], average.average_unit_cost)
        for i, layer in enumerate(active)
        if shares[i] > ZERO
    )

    return ConsumptionPlan(
        product_id=product_id,
        method=CostingMethod.WEIGHTED_AVERAGE,
        quantity_requested=quantity,
        lines=lines,
        total_cogs=round_amount(quantity * average.average_unit_cost),
        average_unit_cost=average.average_unit_cost,
    )


def compute_plan(
    method: CostingMethod,
    product_id: str,
    layers: Iterable[CostLayer],
    quantity: Decimal,
) -> ConsumptionPlan:
    """Dispatch to the algorithm for ``method``."""
    match method:
        case CostingMethod.FIFO:
            return fifo(product_id, layers, quantity)
        case CostingMethod.LIFO:
            return lifo(product_id, layers, quantity)
        case CostingMethod.WEIGHTED_AVERAGE:
            return weighted_average(product_id, layers, quantity)
        case _:
            assert_never(method)
