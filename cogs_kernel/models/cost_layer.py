"""
Module: cogs_kernel.models.cost_layer
Responsibility: ORM persistence for inventory cost layers.  Each layer is one
    receipt of a product at a specific unit cost, the unit the FIFO, LIFO and
    weighted-average methods consume from.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    C1 -- 0 <= remaining_quantity <= original_quantity.
    C2 -- status is a pure function of remaining_quantity (active > 0,
          depleted == 0).  Checked on every flush of a dirty layer.
    C3 -- unit_cost, original_quantity, product_id and acquisition_date are
          immutable after insert; rows are never deleted (db/immutability.py).
    C4 -- (product_id, status, acquisition_date) index supports ordered
          active-layer reads for FIFO/LIFO.
    C5 -- version is an optimistic lock counter (version_id_col).  An UPDATE
          whose expected version no longer matches raises StaleDataError.

Failure modes:
    - StaleDataError on a concurrent update of the same layer.
    - InvariantViolationError from to_domain() when stored state is
      inconsistent.

Audit relevance:
    Depleted layers are kept forever, so the full receipt history behind any
    COGS record can be reconstructed from this table plus the record's
    layer_breakdown.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import Base
from cogs_kernel.domain.costing import CostLayer, LayerStatus


class CostLayerModel(Base):
    """
    Persistent storage for inventory cost layers.

    Contract:
        Created by the receiving boundary with remaining == original and
        status active.  Mutated only by CostLayerStore.apply_consumption.

    Non-goals:
        - No location / warehouse dimension; layers are per product.
    """

    __tablename__ = "cost_layers"

    __table_args__ = (
        Index("idx_cost_layer_product_status_date", "product_id", "status", "acquisition_date"),
        Index("idx_cost_layer_source_ref", "source_ref"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # FIFO/LIFO ordering timestamp
    acquisition_date: Mapped[datetime] = mapped_column(nullable=False)

    # INVARIANT C3: immutable after insert
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False)
    original_quantity: Mapped[Decimal] = mapped_column(nullable=False)

    # INVARIANT C1/C2: only decreases; status follows it
    remaining_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=LayerStatus.ACTIVE.value,
    )

    # Receiving reference (purchase order, production order, restock, ...)
    source_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    # INVARIANT C5: optimistic lock counter
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_domain(self) -> CostLayer:
        """Read-only snapshot of this row."""
        return CostLayer(
            layer_id=self.id,
            product_id=self.product_id,
            acquisition_date=self.acquisition_date,
            unit_cost=self.unit_cost,
            original_quantity=self.original_quantity,
            remaining_quantity=self.remaining_quantity,
            status=LayerStatus(self.status),
            source_ref=self.source_ref,
        )

    def __repr__(self) -> str:
        return (
            f"<CostLayer {self.id}: product={self.product_id} "
            f"remaining={self.remaining_quantity}/{self.original_quantity} "
            f"@ {self.unit_cost} {self.status}>"
        )
