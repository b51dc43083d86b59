"""
cogs_kernel.domain.records -- COGS record and period summary value objects.

Responsibility:
    Immutable views of persisted COGS records and period summaries, plus the
    period bucketing rules used by the Period Summary Aggregator.

Architecture position:
    Kernel > Domain -- pure value objects, zero I/O.

Invariants enforced:
    - A CogsRecord is frozen; corrections are new offsetting records.
    - period_bounds() is total: every UTC instant falls in exactly one
      bucket per period type, and buckets are half-open [start, end).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import assert_never
from uuid import UUID

from cogs_kernel.db.types import ZERO, round_amount
from cogs_kernel.domain.costing import CostingMethod, PlanLine


class PeriodType(str, Enum):
    """Reporting period granularity."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


def period_bounds(period_type: PeriodType, moment: datetime) -> tuple[datetime, datetime]:
    """
    Return the half-open UTC bucket [start, end) that contains ``moment``.

    Weeks start on Monday (ISO 8601).

    Raises:
        ValueError: If moment is naive.
    """
    if moment.tzinfo is None:
        raise ValueError(f"Naive datetime not allowed: {moment!r}")
    moment = moment.astimezone(timezone.utc)
    day = moment.replace(hour=0, minute=0, second=0, microsecond=0)

    match period_type:
        case PeriodType.DAILY:
            start = day
            end = start + timedelta(days=1)
        case PeriodType.WEEKLY:
            start = day - timedelta(days=day.weekday())
            end = start + timedelta(days=7)
        case PeriodType.MONTHLY:
            start = day.replace(day=1)
            end = _add_months(start, 1)
        case PeriodType.QUARTERLY:
            first_month = 3 * ((day.month - 1) // 3) + 1
            start = day.replace(month=first_month, day=1)
            end = _add_months(start, 3)
        case PeriodType.YEARLY:
            start = day.replace(month=1, day=1)
            end = start.replace(year=start.year + 1)
        case _:
            assert_never(period_type)

    return start, end


def _add_months(start: datetime, months: int) -> datetime:
    """Add months to a datetime pinned to the first day of a month."""
    month_index = start.month - 1 + months
    return start.replace(
        year=start.year + month_index // 12,
        month=month_index % 12 + 1,
    )


@dataclass(frozen=True, slots=True)
class CogsRecord:
    """
    Immutable record of one sale (or one restock offset).

    ``total_revenue`` / ``gross_margin`` are present only when a unit
    revenue was supplied.  Offsetting records carry negative quantity and
    amounts and point at the sale they reverse.
    """

    record_id: UUID
    product_id: str
    quantity_sold: Decimal
    unit_cogs: Decimal
    total_cogs: Decimal
    costing_method: CostingMethod
    layer_breakdown: tuple[PlanLine, ...]
    created_at: datetime
    unit_revenue: Decimal | None = None
    total_revenue: Decimal | None = None
    gross_margin: Decimal | None = None
    gross_margin_percent: Decimal | None = None
    sale_ref: str | None = None
    calculated_by: UUID | None = None
    reverses_record_id: UUID | None = None

    @property
    def is_offset(self) -> bool:
        return self.reverses_record_id is not None


@dataclass(frozen=True, slots=True)
class CogsPeriodSummary:
    """
    Running totals of COGS records for one product and period bucket.

    ``period_type`` is None for an ad-hoc date range.
    """

    product_id: str
    period_type: PeriodType | None
    period_start: datetime
    period_end: datetime
    total_quantity_sold: Decimal
    total_cogs: Decimal
    total_revenue: Decimal
    record_count: int

    @property
    def average_unit_cogs(self) -> Decimal:
        if self.total_quantity_sold == ZERO:
            return ZERO
        return round_amount(self.total_cogs / self.total_quantity_sold)

    @property
    def gross_margin(self) -> Decimal:
        return self.total_revenue - self.total_cogs

    @property
    def gross_margin_percent(self) -> Decimal:
        if self.total_revenue <= ZERO:
            return ZERO
        return round_amount(self.gross_margin / self.total_revenue * 100)
