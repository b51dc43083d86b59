"""
cogs_services.config_resolver -- Per-product costing method lookup.

Responsibility:
    Answer "which costing method does this product use?" as an explicit,
    injectable read, falling back to the configured system default.

Architecture position:
    Services -- read-only over the costing_configs table.

Failure modes:
    - InvalidCostingMethodError if a stored method string is not one of
      fifo / lifo / weighted_average.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from cogs_kernel.domain.costing import DEFAULT_COSTING_METHOD, CostingMethod
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.costing_config import CostingConfigModel

logger = get_logger("services.config_resolver")


class CostingConfigResolver:
    """Pure read of the per-product method, no side effects."""

    def __init__(
        self,
        session: Session,
        default_method: CostingMethod | str = DEFAULT_COSTING_METHOD,
    ):
        self.session = session
        self.default_method = CostingMethod.parse(default_method)

    def get_config(self, product_id: str) -> CostingConfigModel | None:
        """The persisted configuration row, or None."""
        return self.session.scalars(
            select(CostingConfigModel).where(CostingConfigModel.product_id == product_id)
        ).one_or_none()

    def resolve_method(self, product_id: str) -> CostingMethod:
        config = self.get_config(product_id)
        if config is None:
            logger.debug("costing_method_defaulted", extra={
                "product_id": product_id,
                "method": self.default_method.value,
            })
            return self.default_method
        return CostingMethod.parse(config.method)
