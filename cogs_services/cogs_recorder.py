"""
cogs_services.cogs_recorder -- Record the cost of goods sold for a sale.

Responsibility:
    Orchestrate one sale end to end: resolve the product's costing method,
    read the layer view that method needs, compute the consumption plan,
    apply it to the layers, append the immutable COGS record and roll it
    into the period summaries.  Also: side-effect-free previews, sales
    return restocks, and record reads.

Architecture position:
    Services -- the top of the stack.  Composes CostingConfigResolver,
    CostLayerStore, the pure engines in cogs_engines.costing and
    PeriodSummaryAggregator.  Owns the unit of work: every attempt runs in
    a fresh session from the injected session factory.

Invariants enforced:
    - Atomicity: layer draw-down, the COGS record and the summary update
      commit together or not at all.
    - Per-product serialization: an in-process lock per product is held
      across read, plan and apply; layer rows are read FOR UPDATE and the
      layer version column rejects a lost update from another process.
    - Business errors are never retried: InsufficientInventoryError,
      NoInventoryError and InvariantViolationError propagate on the first
      occurrence.
    - History is never rewritten: a restock adds a new layer and an
      offsetting record that points at the sale it reverses.

Failure modes:
    - InsufficientInventoryError / NoInventoryError: not enough on hand.
    - ConcurrencyConflictError: contention persisted through every retry.
    - InvalidQuantityError / InvalidCostError: bad caller input.
    - CogsRecordNotFoundError, InvalidRestockError, RestockExceedsSaleError:
      restock of an unknown, offset or over-returned record.

Audit relevance:
    Each record carries the method used and the exact layer breakdown.
    cogs_record_created / cogs_restock_recorded log events carry the
    product, quantities, totals and sale reference; LogContext binds
    product_id and sale_ref for every log line emitted during the call.

Usage:
    recorder = CogsRecorder(get_session_factory(), settings=get_active_settings())
    record = recorder.record_cogs("SKU-1", Decimal("35"), unit_revenue=Decimal("20"))
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from cogs_config.schema import EngineSettings
from cogs_engines.costing import compute_plan, layer_order_for
from cogs_kernel.db.engine import session_scope
from cogs_kernel.db.types import ZERO, parse_amount, parse_quantity, round_amount
from cogs_kernel.domain.clock import Clock, SystemClock
from cogs_kernel.domain.costing import (
    RESTOCK_SOURCE_PREFIX,
    ConsumptionPlan,
    InventoryValuation,
    PlanLine,
)
from cogs_kernel.domain.records import CogsRecord
from cogs_kernel.exceptions import (
    CogsRecordNotFoundError,
    ConcurrencyConflictError,
    InvalidRestockError,
    RestockExceedsSaleError,
)
from cogs_kernel.logging_config import LogContext, get_logger
from cogs_kernel.models.cogs_record import CogsRecordModel
from cogs_services.config_resolver import CostingConfigResolver
from cogs_services.layer_store import CostLayerStore
from cogs_services.period_summary import PeriodSummaryAggregator
from cogs_services.product_lock import ProductLockRegistry, get_default_registry

logger = get_logger("services.cogs_recorder")

T = TypeVar("T")

# Lower-cased fragments of driver messages that mean "try again".
_TRANSIENT_MESSAGES = (
    "deadlock",
    "could not serialize",
    "database is locked",
    "database table is locked",
    "lock wait timeout",
    "lock timeout",
)

# PostgreSQL serialization_failure, deadlock_detected, lock_not_available
_TRANSIENT_PGCODES = frozenset({"40001", "40P01", "55P03"})


def is_transient_conflict(exc: Exception) -> bool:
    """True if a database error signals contention rather than a defect."""
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, OperationalError):
        if getattr(exc.orig, "pgcode", None) in _TRANSIENT_PGCODES:
            return True
        message = str(exc.orig or exc).lower()
        return any(fragment in message for fragment in _TRANSIENT_MESSAGES)
    return False


class CogsRecorder:
    """
    Records COGS for sales and restocks for returns.

    Contract:
        Receives a session factory, settings, a clock and a product lock
        registry via constructor injection.  Every public method manages
        its own transactions.
    Guarantees:
        - record_cogs has exactly one effect (layers drawn, one record, its
          summaries) or none.
        - calculate_cogs never writes.
    Non-goals:
        - Does not create inventory receipts; see CostLayerStore.add_layer.
        - Does not post journal entries.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
        locks: ProductLockRegistry | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session_factory = session_factory
        self.settings = settings or EngineSettings()
        self.clock = clock or SystemClock()
        self._locks = locks or get_default_registry()
        self._sleep = sleep

    # =========================================================================
    # Sale
    # =========================================================================

    def record_cogs(
        self,
        product_id: str,
        quantity_sold: Decimal | int | str,
        unit_revenue: Decimal | int | str | None = None,
        sale_ref: str | None = None,
        calculated_by: UUID | None = None,
    ) -> CogsRecord:
        """
        Consume inventory for a sale and append its COGS record.

        Args:
            product_id: Product sold.
            quantity_sold: Units sold; 0 is valid and consumes nothing.
            unit_revenue: Optional selling price per unit; when given the
                record carries total revenue and gross margin.
            sale_ref: Optional caller reference (order / order line).
            calculated_by: Optional actor id.

        Returns:
            The created CogsRecord.
        """
        quantity = parse_quantity(quantity_sold)
        revenue = parse_amount(unit_revenue) if unit_revenue is not None else None

        with LogContext.bind(
            product_id=product_id,
            sale_ref=sale_ref,
            actor_id=str(calculated_by) if calculated_by else None,
        ):
            logger.info("cogs_recording_started", extra={
                "quantity_sold": quantity,
                "unit_revenue": revenue,
            })
            return self._with_retries(
                product_id,
                lambda session: self._record_once(
                    session, product_id, quantity, revenue, sale_ref, calculated_by
                ),
            )

    def _record_once(
        self,
        session: Session,
        product_id: str,
        quantity: Decimal,
        unit_revenue: Decimal | None,
        sale_ref: str | None,
        calculated_by: UUID | None,
    ) -> CogsRecord:
        method = CostingConfigResolver(
            session, self.settings.default_costing_method
        ).resolve_method(product_id)
        store = CostLayerStore(session, self.clock)

        layers = store.get_active_layers(product_id, layer_order_for(method), lock=True)
        plan = compute_plan(method, product_id, layers, quantity)
        store.apply_consumption(plan)

        model = self._record_model(plan, unit_revenue, sale_ref, calculated_by)
        session.add(model)
        session.flush()
        record = model.to_domain()

        self._aggregator(session).upsert_period_summary(record)

        logger.info("cogs_record_created", extra={
            "record_id": str(record.record_id),
            "method": method.value,
            "quantity_sold": record.quantity_sold,
            "total_cogs": record.total_cogs,
            "unit_cogs": record.unit_cogs,
            "total_revenue": record.total_revenue,
            "gross_margin": record.gross_margin,
            "layer_count": plan.layer_count,
        })
        return record

    def _record_model(
        self,
        plan: ConsumptionPlan,
        unit_revenue: Decimal | None,
        sale_ref: str | None,
        calculated_by: UUID | None,
    ) -> CogsRecordModel:
        total_revenue = gross_margin = margin_percent = None
        if unit_revenue is not None:
            total_revenue = round_amount(plan.quantity_requested * unit_revenue)
            gross_margin = total_revenue - plan.total_cogs
            margin_percent = _margin_percent(gross_margin, total_revenue)

        return CogsRecordModel(
            product_id=plan.product_id,
            quantity_sold=plan.quantity_requested,
            unit_cogs=plan.unit_cogs,
            total_cogs=plan.total_cogs,
            unit_revenue=unit_revenue,
            total_revenue=total_revenue,
            gross_margin=gross_margin,
            gross_margin_percent=margin_percent,
            costing_method=plan.method.value,
            layer_breakdown=plan.breakdown(),
            sale_ref=sale_ref,
            calculated_by=calculated_by,
            created_at=self.clock.now(),
        )

    def calculate_cogs(
        self,
        product_id: str,
        quantity: Decimal | int | str,
    ) -> ConsumptionPlan:
        """Preview the plan a sale would use right now.  Writes nothing."""
        qty = parse_quantity(quantity)
        with self._session_factory() as session:
            method = CostingConfigResolver(
                session, self.settings.default_costing_method
            ).resolve_method(product_id)
            layers = CostLayerStore(session, self.clock).get_active_layers(
                product_id, layer_order_for(method)
            )
        return compute_plan(method, product_id, layers, qty)

    # =========================================================================
    # Sales returns
    # =========================================================================

    def restock(
        self,
        cogs_record_id: UUID,
        quantity: Decimal | int | str,
        acquisition_date: datetime | None = None,
        calculated_by: UUID | None = None,
    ) -> CogsRecord:
        """
        Return ``quantity`` units of a recorded sale to inventory.

        A new cost layer is created at the sale's unit COGS, and an
        offsetting record with negative quantity, COGS and revenue is
        appended with ``reverses_record_id`` pointing at the sale.

        Offsets draw no layer, so layer draw-down stays equal to the
        quantity on sale records alone; net quantity sold (all records)
        equals draw-down minus units restocked.

        Raises:
            CogsRecordNotFoundError: Unknown record.
            InvalidRestockError: The record is itself an offset.
            RestockExceedsSaleError: More than the unreturned quantity.
        """
        qty = parse_quantity(quantity, allow_zero=False)
        product_id = self.get_record(cogs_record_id).product_id

        with LogContext.bind(
            product_id=product_id,
            actor_id=str(calculated_by) if calculated_by else None,
        ):
            return self._with_retries(
                product_id,
                lambda session: self._restock_once(
                    session, cogs_record_id, qty, acquisition_date, calculated_by
                ),
            )

    def _restock_once(
        self,
        session: Session,
        cogs_record_id: UUID,
        quantity: Decimal,
        acquisition_date: datetime | None,
        calculated_by: UUID | None,
    ) -> CogsRecord:
        original = session.execute(
            select(CogsRecordModel)
            .where(CogsRecordModel.id == cogs_record_id)
            .with_for_update()
        ).scalar_one()

        if original.reverses_record_id is not None:
            raise InvalidRestockError(str(cogs_record_id), "record is itself a restock offset")

        restocked = -sum(
            session.scalars(
                select(CogsRecordModel.quantity_sold)
                .where(CogsRecordModel.reverses_record_id == cogs_record_id)
            ),
            ZERO,
        )
        restockable = original.quantity_sold - restocked
        if quantity > restockable:
            raise RestockExceedsSaleError(str(cogs_record_id), quantity, restockable)

        layer = CostLayerStore(session, self.clock).add_layer(
            original.product_id,
            quantity,
            original.unit_cogs,
            acquisition_date=acquisition_date,
            source_ref=f"{RESTOCK_SOURCE_PREFIX}{original.id}",
        )

        total_cogs = -round_amount(quantity * original.unit_cogs)
        total_revenue = gross_margin = margin_percent = None
        if original.unit_revenue is not None:
            total_revenue = -round_amount(quantity * original.unit_revenue)
            gross_margin = total_revenue - total_cogs
            margin_percent = _margin_percent(gross_margin, total_revenue)

        model = CogsRecordModel(
            product_id=original.product_id,
            quantity_sold=-quantity,
            unit_cogs=original.unit_cogs,
            total_cogs=total_cogs,
            unit_revenue=original.unit_revenue,
            total_revenue=total_revenue,
            gross_margin=gross_margin,
            gross_margin_percent=margin_percent,
            costing_method=original.costing_method,
            layer_breakdown=[PlanLine(layer.layer_id, quantity, original.unit_cogs).to_dict()],
            sale_ref=original.sale_ref,
            calculated_by=calculated_by,
            reverses_record_id=original.id,
            created_at=self.clock.now(),
        )
        session.add(model)
        session.flush()
        record = model.to_domain()

        self._aggregator(session).upsert_period_summary(record)

        logger.info("cogs_restock_recorded", extra={
            "record_id": str(record.record_id),
            "reverses_record_id": str(original.id),
            "layer_id": str(layer.layer_id),
            "quantity": quantity,
            "total_cogs": total_cogs,
        })
        return record

    # =========================================================================
    # Reads
    # =========================================================================

    def get_record(self, record_id: UUID) -> CogsRecord:
        with self._session_factory() as session:
            model = session.get(CogsRecordModel, record_id)
            if model is None:
                raise CogsRecordNotFoundError(str(record_id))
            return model.to_domain()

    def list_records(
        self,
        product_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[CogsRecord]:
        """Records in creation order, optionally within [start, end)."""
        stmt = select(CogsRecordModel)
        if product_id is not None:
            stmt = stmt.where(CogsRecordModel.product_id == product_id)
        if start is not None:
            stmt = stmt.where(CogsRecordModel.created_at >= start)
        if end is not None:
            stmt = stmt.where(CogsRecordModel.created_at < end)
        stmt = stmt.order_by(CogsRecordModel.created_at, CogsRecordModel.id)
        with self._session_factory() as session:
            return [model.to_domain() for model in session.scalars(stmt)]

    def get_inventory_valuation(self, product_id: str) -> InventoryValuation:
        """On-hand valuation labelled with the product's configured method."""
        with self._session_factory() as session:
            method = CostingConfigResolver(
                session, self.settings.default_costing_method
            ).resolve_method(product_id)
            return CostLayerStore(session, self.clock).get_inventory_valuation(product_id, method)

    # =========================================================================
    # Unit of work
    # =========================================================================

    def _aggregator(self, session: Session) -> PeriodSummaryAggregator:
        return PeriodSummaryAggregator(
            session, self.clock, self.settings.summary_period_types
        )

    def _with_retries(self, product_id: str, operation: Callable[[Session], T]) -> T:
        """
        Run ``operation`` in its own transaction under the product lock,
        retrying on concurrency conflicts with exponential backoff.
        """
        attempts = self.settings.max_conflict_retries + 1
        for attempt in range(attempts):
            try:
                with self._locks.hold(product_id):
                    return self._run_attempt(product_id, operation)
            except ConcurrencyConflictError as exc:
                if attempt + 1 >= attempts:
                    logger.error("cogs_conflict_retries_exhausted", extra={
                        "attempts": attempt + 1,
                        "reason": exc.reason,
                    })
                    raise ConcurrencyConflictError(
                        product_id, exc.reason, attempts=attempt + 1
                    ) from exc
                delay = self.settings.backoff_for(attempt)
                logger.warning("cogs_conflict_retry", extra={
                    "attempt": attempt + 1,
                    "delay_seconds": delay,
                    "reason": exc.reason,
                })
                self._sleep(delay)
        raise AssertionError("unreachable")

    def _run_attempt(self, product_id: str, operation: Callable[[Session], T]) -> T:
        try:
            with session_scope(self._session_factory) as session:
                return operation(session)
        except (StaleDataError, OperationalError) as exc:
            if not is_transient_conflict(exc):
                raise
            raise ConcurrencyConflictError(product_id, type(exc).__name__) from exc


def _margin_percent(gross_margin: Decimal, total_revenue: Decimal) -> Decimal | None:
    if total_revenue == ZERO:
        return None
    return round_amount(gross_margin / total_revenue * 100)
