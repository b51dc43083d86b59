"""
cogs_kernel.domain.costing -- Cost layer and consumption plan value objects.

Responsibility:
    Define the immutable shapes that flow between the Cost Layer Store, the
    costing algorithms and the COGS Recorder: the closed set of costing
    methods, read-only layer snapshots, and the consumption plan an
    algorithm returns.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.  Imported by models,
    engines and services.

Invariants enforced:
    - Layer status agrees with quantity: CostLayer.__post_init__ rejects a
      snapshot whose status is not LayerStatus.for_quantity(remaining).
    - 0 <= remaining_quantity <= original_quantity on every snapshot.
    - Plan exactness: ConsumptionPlan.__post_init__ rejects a plan whose
      line quantities do not sum exactly to the requested quantity.  There
      is no partial plan.
    - All value objects are frozen; algorithms cannot mutate a snapshot.

Failure modes:
    - InvalidCostingMethodError from CostingMethod.parse on unknown strings.
    - InvariantViolationError from CostLayer / ConsumptionPlan construction.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from cogs_kernel.db.types import ZERO, decimal_str, round_amount
from cogs_kernel.exceptions import InvalidCostingMethodError, InvariantViolationError


class CostingMethod(str, Enum):
    """Closed set of supported costing methods."""

    FIFO = "fifo"                          # First-in, first-out
    LIFO = "lifo"                          # Last-in, first-out
    WEIGHTED_AVERAGE = "weighted_average"  # Blended average of active layers

    @classmethod
    def parse(cls, value: CostingMethod | str) -> CostingMethod:
        """Parse a stored or configured method string."""
        if isinstance(value, CostingMethod):
            return value
        try:
            return cls(value.strip().lower())
        except (ValueError, AttributeError) as exc:
            raise InvalidCostingMethodError(str(value)) from exc


DEFAULT_COSTING_METHOD = CostingMethod.WEIGHTED_AVERAGE

# source_ref prefix of layers created by sales returns
RESTOCK_SOURCE_PREFIX = "restock:"


class LayerOrder(str, Enum):
    """Direction for ordering layers by acquisition date."""

    ASCENDING = "asc"    # oldest first (FIFO)
    DESCENDING = "desc"  # newest first (LIFO)


class LayerStatus(str, Enum):
    """Lifecycle status of a cost layer; a pure function of remaining quantity."""

    ACTIVE = "active"
    DEPLETED = "depleted"

    @classmethod
    def for_quantity(cls, remaining_quantity: Decimal) -> LayerStatus:
        return cls.ACTIVE if remaining_quantity > ZERO else cls.DEPLETED


@dataclass(frozen=True, slots=True)
class CostLayer:
    """
    Read-only snapshot of one receipt of inventory at a fixed unit cost.

    Snapshots are handed to the costing algorithms; only the Cost Layer
    Store mutates the underlying row.
    """

    layer_id: UUID
    product_id: str
    acquisition_date: datetime
    unit_cost: Decimal
    original_quantity: Decimal
    remaining_quantity: Decimal
    status: LayerStatus
    source_ref: str | None = None

    def __post_init__(self) -> None:
        if self.remaining_quantity < ZERO:
            raise InvariantViolationError(
                "non_negative_remaining",
                f"layer {self.layer_id} has remaining {self.remaining_quantity}",
            )
        if self.remaining_quantity > self.original_quantity:
            raise InvariantViolationError(
                "remaining_within_original",
                f"layer {self.layer_id} has remaining {self.remaining_quantity} "
                f"above original {self.original_quantity}",
            )
        if self.status != LayerStatus.for_quantity(self.remaining_quantity):
            raise InvariantViolationError(
                "status_matches_quantity",
                f"layer {self.layer_id} is {self.status.value} "
                f"with remaining {self.remaining_quantity}",
            )

    @property
    def is_active(self) -> bool:
        return self.status == LayerStatus.ACTIVE

    @property
    def is_restock(self) -> bool:
        return (self.source_ref or "").startswith(RESTOCK_SOURCE_PREFIX)

    @property
    def consumed_quantity(self) -> Decimal:
        return self.original_quantity - self.remaining_quantity

    @property
    def remaining_value(self) -> Decimal:
        return round_amount(self.remaining_quantity * self.unit_cost)

    @property
    def sort_key(self) -> tuple[datetime, str]:
        """Acquisition date, then layer id; the deterministic tie-break."""
        return (self.acquisition_date, str(self.layer_id))


@dataclass(frozen=True, slots=True)
class PlanLine:
    """One draw from one layer: (layer, quantity consumed, unit cost applied)."""

    layer_id: UUID
    quantity_consumed: Decimal
    unit_cost_applied: Decimal

    @property
    def line_cost(self) -> Decimal:
        return round_amount(self.quantity_consumed * self.unit_cost_applied)

    def to_dict(self) -> dict[str, str]:
        """JSON-safe form stored in CogsRecord.layer_breakdown."""
        return {
            "layer_id": str(self.layer_id),
            "quantity_consumed": decimal_str(self.quantity_consumed),
            "unit_cost_applied": decimal_str(self.unit_cost_applied),
            "line_cost": decimal_str(self.line_cost),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PlanLine:
        return cls(
            layer_id=UUID(str(data["layer_id"])),
            quantity_consumed=Decimal(str(data["quantity_consumed"])),
            unit_cost_applied=Decimal(str(data["unit_cost_applied"])),
        )


@dataclass(frozen=True, slots=True)
class ConsumptionPlan:
    """
    Transient result of a costing algorithm: which layers, how much each,
    and the total cost.  Never persisted as-is; the Recorder copies its
    lines into the COGS record for audit.
    """

    product_id: str
    method: CostingMethod
    quantity_requested: Decimal
    lines: tuple[PlanLine, ...]
    total_cogs: Decimal
    average_unit_cost: Decimal | None = None

    def __post_init__(self) -> None:
        consumed = sum((line.quantity_consumed for line in self.lines), ZERO)
        if consumed != self.quantity_requested:
            raise InvariantViolationError(
                "plan_quantity_exact",
                f"plan for {self.product_id} consumes {consumed}, "
                f"requested {self.quantity_requested}",
            )
        for line in self.lines:
            if line.quantity_consumed <= ZERO:
                raise InvariantViolationError(
                    "plan_line_positive",
                    f"plan line for layer {line.layer_id} consumes "
                    f"{line.quantity_consumed}",
                )
        layer_ids = [line.layer_id for line in self.lines]
        if len(set(layer_ids)) != len(layer_ids):
            raise InvariantViolationError(
                "plan_layer_unique",
                f"plan for {self.product_id} draws from a layer twice",
            )

    @classmethod
    def empty(cls, product_id: str, method: CostingMethod) -> ConsumptionPlan:
        """The plan for a zero-quantity request."""
        return cls(
            product_id=product_id,
            method=method,
            quantity_requested=ZERO,
            lines=(),
            total_cogs=ZERO,
        )

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def layer_count(self) -> int:
        return len(self.lines)

    @property
    def unit_cogs(self) -> Decimal:
        """Effective cost per unit of this plan (0 for an empty plan)."""
        if self.quantity_requested == ZERO:
            return ZERO
        return round_amount(self.total_cogs / self.quantity_requested)

    def breakdown(self) -> list[dict[str, str]]:
        return [line.to_dict() for line in self.lines]


@dataclass(frozen=True, slots=True)
class WeightedAverageCost:
    """Aggregate over a product's active layers."""

    product_id: str
    average_unit_cost: Decimal
    total_quantity: Decimal
    total_value: Decimal
    layer_count: int


@dataclass(frozen=True, slots=True)
class InventoryValuation:
    """On-hand valuation of a product under its configured method."""

    product_id: str
    method: CostingMethod
    total_quantity: Decimal
    total_value: Decimal
    average_unit_cost: Decimal
    layer_count: int


def order_layers(layers: Iterable[CostLayer], order: LayerOrder) -> list[CostLayer]:
    """
    Sort layers by acquisition date in ``order``; ties go to layer id ascending
    in both directions.

    Returns a new list; the input is not touched.
    """
    ordered = sorted(layers, key=lambda layer: str(layer.layer_id))
    ordered.sort(key=lambda layer: layer.acquisition_date, reverse=order == LayerOrder.DESCENDING)
    return ordered
