"""
cogs_services.layer_store -- Persistent cost layer ledger per product.

Responsibility:
    Read views of a product's cost layers for the costing algorithms, the
    receiving boundary that creates layers, and the single mutating
    operation of the whole engine: applying a consumption plan.

Architecture position:
    Services -- stateful orchestration over kernel models.  Owns no
    transaction: the caller's Session decides commit or rollback.

Invariants enforced:
    - apply_consumption is the only code path that changes a layer after
      insert.  A draw that would leave remaining_quantity negative raises
      InvariantViolationError; it is never clamped.
    - A layer drawn to exactly zero becomes depleted in the same flush.
    - Reads never mutate: get_active_layers returns frozen snapshots, and
      two calls with no intervening apply_consumption return equal lists.
    - Ordering is deterministic: acquisition date in the requested
      direction, ties by layer id ascending.

Failure modes:
    - InvalidQuantityError / InvalidCostError from add_layer.
    - CostLayerNotFoundError from get_layer / apply_consumption.
    - InvariantViolationError from apply_consumption.
    - NoInventoryError from get_weighted_average with nothing on hand.
    - sqlalchemy StaleDataError at flush when another transaction changed
      a drawn layer since it was read (translated by the recorder).

Audit relevance:
    Layers are never deleted.  Every draw is logged with layer id, quantity
    and the resulting remaining quantity.

Usage:
    store = CostLayerStore(session, clock)
    store.add_layer("SKU-1", Decimal("20"), Decimal("10"))
    layers = store.get_active_layers("SKU-1", LayerOrder.ASCENDING, lock=True)
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from cogs_engines.costing import weighted_average_cost
from cogs_kernel.db.types import ZERO, parse_amount, parse_quantity, round_amount
from cogs_kernel.domain.clock import Clock, SystemClock
from cogs_kernel.domain.costing import (
    ConsumptionPlan,
    CostingMethod,
    CostLayer,
    InventoryValuation,
    LayerOrder,
    LayerStatus,
    WeightedAverageCost,
    order_layers,
)
from cogs_kernel.exceptions import CostLayerNotFoundError, InvariantViolationError
from cogs_kernel.logging_config import get_logger
from cogs_kernel.models.cost_layer import CostLayerModel

logger = get_logger("services.layer_store")


class CostLayerStore:
    """
    Ledger of cost layers for all products.

    Contract:
        Receives a Session and a Clock via constructor injection.
    Guarantees:
        - Snapshots returned are frozen CostLayer value objects.
        - apply_consumption decrements exactly the layers a plan names.
    Non-goals:
        - Does not choose a costing method or compute plans.
        - Does not commit; the recorder's unit of work does.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()

    # =========================================================================
    # Receiving boundary
    # =========================================================================

    def add_layer(
        self,
        product_id: str,
        quantity: Decimal | int | str,
        unit_cost: Decimal | int | str,
        acquisition_date: datetime | None = None,
        source_ref: str | None = None,
    ) -> CostLayer:
        """
        Create a new active layer (inventory received).

        Args:
            product_id: Product the receipt belongs to.
            quantity: Units received; must be positive.
            unit_cost: Cost per unit; must be non-negative.
            acquisition_date: Ordering date; defaults to now.
            source_ref: Optional receiving reference (e.g. purchase order).

        Raises:
            InvalidQuantityError, InvalidCostError: On bad inputs.
            ValueError: If acquisition_date is naive.
        """
        qty = parse_quantity(quantity, allow_zero=False)
        cost = parse_amount(unit_cost)
        now = self.clock.now()
        acquired = acquisition_date or now
        if acquired.tzinfo is None:
            raise ValueError(f"acquisition_date must be timezone-aware: {acquired!r}")

        model = CostLayerModel(
            product_id=product_id,
            acquisition_date=acquired,
            unit_cost=cost,
            original_quantity=qty,
            remaining_quantity=qty,
            status=LayerStatus.ACTIVE.value,
            source_ref=source_ref,
            created_at=now,
        )
        self.session.add(model)
        self.session.flush()

        logger.info("cost_layer_created", extra={
            "layer_id": str(model.id),
            "product_id": product_id,
            "quantity": qty,
            "unit_cost": cost,
            "acquisition_date": acquired.isoformat(),
            "source_ref": source_ref,
        })
        return model.to_domain()

    # =========================================================================
    # Reads
    # =========================================================================

    def get_layer(self, layer_id: UUID) -> CostLayer:
        """Get one layer by id."""
        model = self.session.get(CostLayerModel, layer_id)
        if model is None:
            raise CostLayerNotFoundError(str(layer_id))
        return model.to_domain()

    def get_layers(self, product_id: str, include_depleted: bool = True) -> list[CostLayer]:
        """All layers for a product, oldest first."""
        stmt = select(CostLayerModel).where(CostLayerModel.product_id == product_id)
        if not include_depleted:
            stmt = stmt.where(CostLayerModel.status == LayerStatus.ACTIVE.value)
        models = self.session.scalars(stmt).all()
        return order_layers((m.to_domain() for m in models), LayerOrder.ASCENDING)

    def get_active_layers(
        self,
        product_id: str,
        order: LayerOrder = LayerOrder.ASCENDING,
        lock: bool = False,
    ) -> list[CostLayer]:
        """
        Layers with remaining quantity > 0, sorted for FIFO or LIFO.

        With ``lock=True`` the rows are read ``FOR UPDATE`` so that a
        concurrent transaction on a server database blocks until this one
        ends.  SQLite ignores the clause; the version column still detects
        a lost update there.
        """
        stmt = select(CostLayerModel).where(
            CostLayerModel.product_id == product_id,
            CostLayerModel.status == LayerStatus.ACTIVE.value,
        )
        if lock:
            stmt = stmt.with_for_update()
        models = self.session.scalars(stmt).all()

        layers = [m.to_domain() for m in models if m.remaining_quantity > ZERO]
        logger.debug("active_layers_loaded", extra={
            "product_id": product_id,
            "order": order.value,
            "locked": lock,
            "layer_count": len(layers),
        })
        return order_layers(layers, order)

    def get_weighted_average(self, product_id: str) -> WeightedAverageCost:
        """
        Average unit cost over active layers.

        Raises:
            NoInventoryError: If nothing is on hand.
        """
        return weighted_average_cost(product_id, self.get_active_layers(product_id))

    def get_inventory_valuation(
        self,
        product_id: str,
        method: CostingMethod,
    ) -> InventoryValuation:
        """On-hand quantity and value; average is 0 when nothing is on hand."""
        layers = self.get_active_layers(product_id)
        total_quantity = sum((layer.remaining_quantity for layer in layers), ZERO)
        total_value = round_amount(
            sum((layer.remaining_quantity * layer.unit_cost for layer in layers), ZERO)
        )
        average = round_amount(total_value / total_quantity) if total_quantity > ZERO else ZERO
        return InventoryValuation(
            product_id=product_id,
            method=method,
            total_quantity=total_quantity,
            total_value=total_value,
            average_unit_cost=average,
            layer_count=len(layers),
        )

    # =========================================================================
    # Mutation
    # =========================================================================

    def apply_consumption(self, plan: ConsumptionPlan) -> None:
        """
        Decrement every layer named in ``plan``.

        The layer rows are taken from the session's identity map when this
        session already read them, so the version checked at flush is the
        one the plan was computed from.

        Raises:
            CostLayerNotFoundError: A plan line names an unknown layer.
            InvariantViolationError: A layer would go negative or belongs to
                another product.
        """
        for line in plan.lines:
            model = self.session.get(CostLayerModel, line.layer_id)
            if model is None:
                raise CostLayerNotFoundError(str(line.layer_id))
            if model.product_id != plan.product_id:
                raise InvariantViolationError(
                    "layer_product_matches",
                    f"plan for {plan.product_id} draws layer {model.id} "
                    f"of {model.product_id}",
                )

            new_remaining = model.remaining_quantity - line.quantity_consumed
            if new_remaining < ZERO:
                logger.error("layer_overdraw_blocked", extra={
                    "layer_id": str(model.id),
                    "product_id": plan.product_id,
                    "remaining": model.remaining_quantity,
                    "requested": line.quantity_consumed,
                })
                raise InvariantViolationError(
                    "non_negative_remaining",
                    f"layer {model.id} has {model.remaining_quantity}, "
                    f"plan draws {line.quantity_consumed}",
                )

            model.remaining_quantity = new_remaining
            model.status = LayerStatus.for_quantity(new_remaining).value

            logger.info("layer_consumed", extra={
                "layer_id": str(model.id),
                "product_id": plan.product_id,
                "quantity_consumed": line.quantity_consumed,
                "remaining_quantity": new_remaining,
                "status": model.status,
            })

        self.session.flush()
