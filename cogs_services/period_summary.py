"""
cogs_services.period_summary -- Per-product, per-period COGS roll-ups.

Responsibility:
    Maintain running totals (quantity, COGS, revenue, record count) in
    cogs_period_summaries as records are created, rebuild them from the
    full record history for reconciliation, and answer range queries.

Architecture position:
    Services -- called by the COGS recorder inside the same unit of work
    as the record it aggregates, so a summary never counts a record that
    was rolled back.

Invariants enforced:
    - Each record lands in exactly one bucket per configured period type
      (period_bounds is total over UTC instants).
    - recompute() output depends only on cogs_records; summaries are
      derived data and may be deleted and rebuilt at any time.

Failure modes:
    - IntegrityError on a concurrent first insert of the same bucket is
      absorbed by a savepoint and the existing row is incremented.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cogs_kernel.db.types import ZERO
from cogs_kernel.domain.clock import Clock, SystemClock
from cogs_kernel.domain.records import (
    CogsPeriodSummary,
    CogsRecord,
    PeriodType,
    period_bounds,
)
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.cogs_period_summary import CogsPeriodSummaryModel
from cogs_kernel.models.cogs_record import CogsRecordModel

logger = get_logger("services.period_summary")


class PeriodSummaryAggregator:
    """
    Running COGS totals per product and period bucket.

    Contract:
        Receives a Session, a Clock and the period types to maintain.
    Guarantees:
        - upsert_period_summary touches one row per configured period type.
        - recompute rebuilds exactly the rows that upserting every record
          in creation order would have produced.
    Non-goals:
        - Idempotency of upsert_period_summary: each record is aggregated
          once by the recorder.  Use recompute to repair drift.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        period_types: Sequence[PeriodType] = (PeriodType.MONTHLY,),
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.period_types = tuple(period_types)

    def upsert_period_summary(self, record: CogsRecord) -> list[CogsPeriodSummary]:
        """Add one record to its bucket for every configured period type."""
        updated = []
        for period_type in self.period_types:
            row = self._locked_row(record.product_id, period_type, record.created_at)
            row.total_quantity_sold += record.quantity_sold
            row.total_cogs += record.total_cogs
            row.total_revenue += record.total_revenue or ZERO
            row.record_count += 1
            row.updated_at = self.clock.now()
            updated.append(row)

        self.session.flush()
        for row in updated:
            logger.debug("period_summary_updated", extra={
                "product_id": row.product_id,
                "period_type": row.period_type,
                "period_start": row.period_start,
                "total_cogs": row.total_cogs,
                "record_count": row.record_count,
            })
        return [row.to_domain() for row in updated]

    def _select_row(self, product_id: str, period_type: PeriodType, start: datetime):
        return self.session.execute(
            select(CogsPeriodSummaryModel)
            .where(
                CogsPeriodSummaryModel.product_id == product_id,
                CogsPeriodSummaryModel.period_type == period_type.value,
                CogsPeriodSummaryModel.period_start == start,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _locked_row(
        self,
        product_id: str,
        period_type: PeriodType,
        moment: datetime,
    ) -> CogsPeriodSummaryModel:
        start, end = period_bounds(period_type, moment)
        row = self._select_row(product_id, period_type, start)
        if row is not None:
            return row

        savepoint = self.session.begin_nested()
        try:
            row = self._new_row(product_id, period_type, start, end)
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
            return row
        except IntegrityError:
            logger.debug("period_summary_insert_race", extra={
                "product_id": product_id,
                "period_type": period_type.value,
                "period_start": start,
            })
            savepoint.rollback()
            return self._select_row(product_id, period_type, start)

    def _new_row(
        self,
        product_id: str,
        period_type: PeriodType,
        start: datetime,
        end: datetime,
    ) -> CogsPeriodSummaryModel:
        return CogsPeriodSummaryModel(
            product_id=product_id,
            period_type=period_type.value,
            period_start=start,
            period_end=end,
            total_quantity_sold=ZERO,
            total_cogs=ZERO,
            total_revenue=ZERO,
            record_count=0,
            updated_at=self.clock.now(),
        )

    def recompute(self, product_id: str | None = None) -> int:
        """
        Delete summary rows in scope and rebuild them from cogs_records.

        Returns the number of summary rows written.
        """
        stmt = delete(CogsPeriodSummaryModel).where(
            CogsPeriodSummaryModel.period_type.in_([p.value for p in self.period_types])
        )
        if product_id is not None:
            stmt = stmt.where(CogsPeriodSummaryModel.product_id == product_id)
        self.session.execute(stmt)

        buckets: dict[tuple[str, PeriodType, datetime], CogsPeriodSummaryModel] = {}
        for record in self._records(product_id):
            for period_type in self.period_types:
                start, end = period_bounds(period_type, record.created_at)
                key = (record.product_id, period_type, start)
                row = buckets.get(key)
                if row is None:
                    row = buckets[key] = self._new_row(record.product_id, period_type, start, end)
                row.total_quantity_sold += record.quantity_sold
                row.total_cogs += record.total_cogs
                row.total_revenue += record.total_revenue or ZERO
                row.record_count += 1

        self.session.add_all(buckets.values())
        self.session.flush()

        logger.info("period_summaries_recomputed", extra={
            "product_id": product_id,
            "period_types": [p.value for p in self.period_types],
            "rows_written": len(buckets),
        })
        return len(buckets)

    def get_summaries(
        self,
        product_id: str,
        period_type: PeriodType = PeriodType.MONTHLY,
    ) -> list[CogsPeriodSummary]:
        """Stored summaries for a product, oldest period first."""
        rows = self.session.scalars(
            select(CogsPeriodSummaryModel)
            .where(
                CogsPeriodSummaryModel.product_id == product_id,
                CogsPeriodSummaryModel.period_type == period_type.value,
            )
            .order_by(CogsPeriodSummaryModel.period_start)
        ).all()
        return [row.to_domain() for row in rows]

    def summarize_range(
        self,
        product_id: str,
        start: datetime,
        end: datetime,
    ) -> CogsPeriodSummary:
        """Totals of records created in [start, end); not persisted."""
        if end <= start:
            raise ValueError(f"end {end!r} must be after start {start!r}")
        records = self._records(product_id, start, end)
        return _summarize(product_id, None, start, end, records)

    def _records(
        self,
        product_id: str | None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[CogsRecord]:
        stmt = select(CogsRecordModel)
        if product_id is not None:
            stmt = stmt.where(CogsRecordModel.product_id == product_id)
        if start is not None:
            stmt = stmt.where(CogsRecordModel.created_at >= start)
        if end is not None:
            stmt = stmt.where(CogsRecordModel.created_at < end)
        stmt = stmt.order_by(CogsRecordModel.created_at, CogsRecordModel.id)
        return [model.to_domain() for model in self.session.scalars(stmt)]


def _summarize(
    product_id: str,
    period_type: PeriodType | None,
    start: datetime,
    end: datetime,
    records: Iterable[CogsRecord],
) -> CogsPeriodSummary:
    quantity = cogs = revenue = Decimal("0")
    count = 0
    for record in records:
        quantity += record.quantity_sold
        cogs += record.total_cogs
        revenue += record.total_revenue or ZERO
        count += 1
    return CogsPeriodSummary(
        product_id=product_id,
        period_type=period_type,
        period_start=start,
        period_end=end,
        total_quantity_sold=quantity,
        total_cogs=cogs,
        total_revenue=revenue,
        record_count=count,
    )
