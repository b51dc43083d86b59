"""
cogs_services -- Stateful orchestration over the costing kernel and engines.

Usage:
    from cogs_services import CogsRecorder, CostLayerStore
"""

from cogs_services.cogs_recorder import CogsRecorder, is_transient_conflict
from cogs_services.config_resolver import CostingConfigResolver
from cogs_services.layer_store import CostLayerStore
from cogs_services.period_summary import PeriodSummaryAggregator
from cogs_services.product_lock import ProductLockRegistry, get_default_registry

__all__ = [
    "CogsRecorder",
    "CostLayerStore",
    "CostingConfigResolver",
    "PeriodSummaryAggregator",
    "ProductLockRegistry",
    "get_default_registry",
    "is_transient_conflict",
]
