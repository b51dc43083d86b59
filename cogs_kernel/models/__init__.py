"""ORM models for the costing engine."""

from cogs_kernel.models.cogs_period_summary import CogsPeriodSummaryModel
from cogs_kernel.models.cogs_record import CogsRecordModel
from cogs_kernel.models.cost_layer import CostLayerModel
from cogs_kernel.models.costing_config import CostingConfigModel

__all__ = [
    "CostLayerModel",
    "CostingConfigModel",
    "CogsRecordModel",
    "CogsPeriodSummaryModel",
]
