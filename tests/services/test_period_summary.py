"""
Tests for period bucketing and the PeriodSummaryAggregator.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from cogs_kernel.domain.costing import CostingMethod
from cogs_kernel.domain.records import CogsRecord, PeriodType, period_bounds
from cogs_services.period_summary import PeriodSummaryAggregator


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def _record(product_id, created_at, quantity, cogs, revenue=None):
    return CogsRecord(
        record_id=uuid4(),
        product_id=product_id,
        quantity_sold=Decimal(quantity),
        unit_cogs=Decimal("0"),
        total_cogs=Decimal(cogs),
        costing_method=CostingMethod.FIFO,
        layer_breakdown=(),
        created_at=created_at,
        total_revenue=Decimal(revenue) if revenue is not None else None,
    )


class TestPeriodBounds:

    def test_daily(self):
        assert period_bounds(PeriodType.DAILY, _utc(2024, 3, 15, 23, 59)) == (
            _utc(2024, 3, 15), _utc(2024, 3, 16)
        )

    def test_weekly_starts_monday(self):
        # 2024-03-15 is a Friday
        assert period_bounds(PeriodType.WEEKLY, _utc(2024, 3, 15, 8)) == (
            _utc(2024, 3, 11), _utc(2024, 3, 18)
        )

    def test_monthly_rolls_over_year(self):
        assert period_bounds(PeriodType.MONTHLY, _utc(2024, 12, 31, 23)) == (
            _utc(2024, 12, 1), _utc(2025, 1, 1)
        )

    def test_quarterly(self):
        assert period_bounds(PeriodType.QUARTERLY, _utc(2024, 11, 2)) == (
            _utc(2024, 10, 1), _utc(2025, 1, 1)
        )

    def test_yearly(self):
        assert period_bounds(PeriodType.YEARLY, _utc(2024, 2, 29)) == (
            _utc(2024, 1, 1), _utc(2025, 1, 1)
        )

    def test_start_is_inclusive_end_exclusive(self):
        start, end = period_bounds(PeriodType.DAILY, _utc(2024, 3, 16))

        assert start == _utc(2024, 3, 16)
        assert period_bounds(PeriodType.DAILY, end)[0] == end

    def test_other_timezones_are_normalized(self):
        eastern = timezone(timedelta(hours=-5))
        moment = datetime(2024, 3, 31, 22, 0, tzinfo=eastern)

        assert period_bounds(PeriodType.MONTHLY, moment)[0] == _utc(2024, 4, 1)

    def test_naive_rejected(self):
        with pytest.raises(ValueError):
            period_bounds(PeriodType.DAILY, datetime(2024, 1, 1))


class TestUpsert:

    def test_first_record_creates_buckets(self, session, clock):
        aggregator = PeriodSummaryAggregator(
            session, clock, (PeriodType.DAILY, PeriodType.MONTHLY)
        )

        daily, monthly = aggregator.upsert_period_summary(
            _record("SKU-1", _utc(2024, 3, 15, 9), "4", "40", "60")
        )
        session.commit()

        assert daily.period_type == PeriodType.DAILY
        assert daily.period_start == _utc(2024, 3, 15)
        assert monthly.period_start == _utc(2024, 3, 1)
        assert monthly.period_end == _utc(2024, 4, 1)
        assert monthly.total_quantity_sold == Decimal("4")
        assert monthly.total_cogs == Decimal("40")
        assert monthly.total_revenue == Decimal("60")
        assert monthly.record_count == 1

    def test_records_accumulate(self, session, clock):
        aggregator = PeriodSummaryAggregator(session, clock)

        aggregator.upsert_period_summary(_record("SKU-1", _utc(2024, 3, 1), "4", "40", "60"))
        (monthly,) = aggregator.upsert_period_summary(_record("SKU-1", _utc(2024, 3, 31, 23), "1", "12"))
        session.commit()

        assert monthly.total_quantity_sold == Decimal("5")
        assert monthly.total_cogs == Decimal("52")
        assert monthly.total_revenue == Decimal("60")
        assert monthly.record_count == 2
        assert monthly.average_unit_cogs == Decimal("10.4")
        assert monthly.gross_margin == Decimal("8")

    def test_products_and_periods_are_separate(self, session, clock):
        aggregator = PeriodSummaryAggregator(session, clock)

        aggregator.upsert_period_summary(_record("SKU-1", _utc(2024, 3, 1), "1", "1"))
        aggregator.upsert_period_summary(_record("SKU-1", _utc(2024, 4, 1), "1", "1"))
        aggregator.upsert_period_summary(_record("SKU-2", _utc(2024, 3, 1), "1", "1"))
        session.commit()

        assert [s.period_start for s in aggregator.get_summaries("SKU-1")] == [
            _utc(2024, 3, 1), _utc(2024, 4, 1)
        ]
        assert len(aggregator.get_summaries("SKU-2")) == 1
        assert aggregator.get_summaries("SKU-1", PeriodType.DAILY) == []


class TestRecompute:

    def test_recompute_matches_incremental(self, recorder, session, clock, standard_layers):
        standard_layers()
        recorder.record_cogs("SKU-STD", Decimal("3"), unit_revenue=Decimal("15"))
        clock.advance(60)
        recorder.record_cogs("SKU-STD", Decimal("4"))
        clock.advance(20 * 24 * 3600)
        recorder.record_cogs("SKU-STD", Decimal("5.5"), unit_revenue=Decimal("14"))

        aggregator = PeriodSummaryAggregator(session, clock, recorder.settings.summary_period_types)
        session.expire_all()
        incremental = {
            p: aggregator.get_summaries("SKU-STD", p) for p in aggregator.period_types
        }

        written = aggregator.recompute("SKU-STD")
        session.commit()
        session.expire_all()
        rebuilt = {
            p: aggregator.get_summaries("SKU-STD", p) for p in aggregator.period_types
        }

        assert written == 4
        assert len(incremental[PeriodType.DAILY]) == 2
        assert len(incremental[PeriodType.MONTHLY]) == 2
        assert rebuilt == incremental

    def test_recompute_repairs_drift(self, session, clock):
        aggregator = PeriodSummaryAggregator(session, clock)
        aggregator.upsert_period_summary(_record("SKU-1", _utc(2024, 3, 1), "1", "1"))
        session.commit()

        # No cogs_records back this summary row.
        written = aggregator.recompute("SKU-1")
        session.commit()

        assert written == 0
        assert aggregator.get_summaries("SKU-1") == []

    def test_recompute_logs(self, session, clock, captured_logs):
        PeriodSummaryAggregator(session, clock).recompute()

        events = [r for r in captured_logs() if r["message"] == "period_summaries_recomputed"]
        assert events[0]["rows_written"] == 0


class TestSummarizeRange:

    def test_range_totals(self, recorder, session, clock, standard_layers, set_method):
        standard_layers()
        set_method("SKU-STD", CostingMethod.FIFO)
        start = clock.now()
        recorder.record_cogs("SKU-STD", Decimal("2"), unit_revenue=Decimal("25"))
        clock.advance(3600)
        recorder.record_cogs("SKU-STD", Decimal("3"), unit_revenue=Decimal("25"))
        clock.advance(3600)
        recorder.record_cogs("SKU-STD", Decimal("1"))

        summary = PeriodSummaryAggregator(session, clock).summarize_range(
            "SKU-STD", start, start + timedelta(hours=2)
        )

        assert summary.period_type is None
        assert summary.record_count == 2
        assert summary.total_quantity_sold == Decimal("5")
        assert summary.total_cogs == Decimal("50")
        assert summary.total_revenue == Decimal("125")
        assert summary.gross_margin_percent == Decimal("60")

    def test_empty_range(self, session, clock):
        summary = PeriodSummaryAggregator(session, clock).summarize_range(
            "SKU-NONE", _utc(2024, 1, 1), _utc(2024, 2, 1)
        )

        assert summary.record_count == 0
        assert summary.average_unit_cogs == Decimal("0")
        assert summary.gross_margin_percent == Decimal("0")

    def test_inverted_range_rejected(self, session, clock):
        with pytest.raises(ValueError):
            PeriodSummaryAggregator(session, clock).summarize_range(
                "SKU-1", _utc(2024, 2, 1), _utc(2024, 2, 1)
            )
