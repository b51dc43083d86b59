"""Pure domain value objects - no I/O."""

from cogs_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from cogs_kernel.domain.costing import (
    DEFAULT_COSTING_METHOD,
    RESTOCK_SOURCE_PREFIX,
    ConsumptionPlan,
    CostingMethod,
    CostLayer,
    InventoryValuation,
    LayerOrder,
    LayerStatus,
    PlanLine,
    WeightedAverageCost,
    order_layers,
)
from cogs_kernel.domain.records import (
    CogsPeriodSummary,
    CogsRecord,
    PeriodType,
    period_bounds,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "CostingMethod",
    "DEFAULT_COSTING_METHOD",
    "RESTOCK_SOURCE_PREFIX",
    "LayerOrder",
    "LayerStatus",
    "CostLayer",
    "PlanLine",
    "ConsumptionPlan",
    "WeightedAverageCost",
    "order_layers",
    "InventoryValuation",
    "CogsRecord",
    "CogsPeriodSummary",
    "PeriodType",
    "period_bounds",
]
