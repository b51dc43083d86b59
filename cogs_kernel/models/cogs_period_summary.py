"""
Module: cogs_kernel.models.cogs_period_summary
Responsibility: Derived per-product, per-period COGS totals.  Rebuildable at
    any time from cogs_records; never the source of truth.
Architecture position: Kernel > Models.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import Base
from cogs_kernel.domain.records import CogsPeriodSummary, PeriodType


class CogsPeriodSummaryModel(Base):
    """Running totals for one (product, period type, period start) bucket."""

    __tablename__ = "cogs_period_summaries"

    __table_args__ = (
        UniqueConstraint(
            "product_id", "period_type", "period_start",
            name="uq_cogs_summary_product_period",
        ),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    period_type: Mapped[str] = mapped_column(String(20), nullable=False)
    period_start: Mapped[datetime] = mapped_column(nullable=False)
    period_end: Mapped[datetime] = mapped_column(nullable=False)

    total_quantity_sold: Mapped[Decimal] = mapped_column(nullable=False)
    total_cogs: Mapped[Decimal] = mapped_column(nullable=False)
    total_revenue: Mapped[Decimal] = mapped_column(nullable=False)
    record_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_domain(self) -> CogsPeriodSummary:
        return CogsPeriodSummary(
            product_id=self.product_id,
            period_type=PeriodType(self.period_type),
            period_start=self.period_start,
            period_end=self.period_end,
            total_quantity_sold=self.total_quantity_sold,
            total_cogs=self.total_cogs,
            total_revenue=self.total_revenue,
            record_count=self.record_count,
        )

    def __repr__(self) -> str:
        return (
            f"<CogsPeriodSummary {self.product_id} {self.period_type} "
            f"{self.period_start:%Y-%m-%d}: cogs={self.total_cogs} n={self.record_count}>"
        )
