"""
Module: cogs_kernel.models.costing_config
Responsibility: Per-product costing method configuration.  Owned by the
    external configuration store; the costing engine only reads it.
Architecture position: Kernel > Models.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import Base


class CostingConfigModel(Base):
    """One row per product that overrides the system default method."""

    __tablename__ = "costing_configs"

    __table_args__ = (
        UniqueConstraint("product_id", name="uq_costing_config_product"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # "fifo" | "lifo" | "weighted_average"
    method: Mapped[str] = mapped_column(String(20), nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<CostingConfig {self.product_id}: {self.method}>"
