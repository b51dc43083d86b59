"""
Module: cogs_kernel.models.cogs_record
Responsibility: Append-only ORM persistence for COGS records, one per sale
    (or per restock offset).
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    R1 -- Records are immutable after insert (db/immutability.py).
    R2 -- On a sale, layer_breakdown is the exact plan the costing
          algorithm produced; its line quantities sum to quantity_sold.
    R3 -- reverses_record_id is set only on restock offsets, whose
          quantity and amounts are negative.  An offset draws no layer:
          its single breakdown line names the layer the returned units
          went into, with quantity equal to -quantity_sold.

Audit relevance:
    The breakdown names every layer drawn, the quantity taken and the unit
    cost applied, so the stored total_cogs is reproducible from history.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from cogs_kernel.db.base import Base
from cogs_kernel.domain.costing import CostingMethod, PlanLine
from cogs_kernel.domain.records import CogsRecord


class CogsRecordModel(Base):
    """Persistent, immutable COGS record."""

    __tablename__ = "cogs_records"

    __table_args__ = (
        Index("idx_cogs_record_product_created", "product_id", "created_at"),
        Index("idx_cogs_record_sale_ref", "sale_ref"),
        Index("idx_cogs_record_reverses", "reverses_record_id"),
    )

    product_id: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity_sold: Mapped[Decimal] = mapped_column(nullable=False)
    unit_cogs: Mapped[Decimal] = mapped_column(nullable=False)
    total_cogs: Mapped[Decimal] = mapped_column(nullable=False)

    # Revenue side; null when the sale carried no price
    unit_revenue: Mapped[Decimal | None] = mapped_column(nullable=True)
    total_revenue: Mapped[Decimal | None] = mapped_column(nullable=True)
    gross_margin: Mapped[Decimal | None] = mapped_column(nullable=True)
    gross_margin_percent: Mapped[Decimal | None] = mapped_column(nullable=True)

    costing_method: Mapped[str] = mapped_column(String(20), nullable=False)

    # List of PlanLine.to_dict() entries
    layer_breakdown: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)

    sale_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    calculated_by: Mapped[UUID | None] = mapped_column(nullable=True)

    reverses_record_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("cogs_records.id"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_domain(self) -> CogsRecord:
        return CogsRecord(
            record_id=self.id,
            product_id=self.product_id,
            quantity_sold=self.quantity_sold,
            unit_cogs=self.unit_cogs,
            total_cogs=self.total_cogs,
            costing_method=CostingMethod.parse(self.costing_method),
            layer_breakdown=tuple(PlanLine.from_dict(line) for line in self.layer_breakdown),
            created_at=self.created_at,
            unit_revenue=self.unit_revenue,
            total_revenue=self.total_revenue,
            gross_margin=self.gross_margin,
            gross_margin_percent=self.gross_margin_percent,
            sale_ref=self.sale_ref,
            calculated_by=self.calculated_by,
            reverses_record_id=self.reverses_record_id,
        )

    def __repr__(self) -> str:
        return (
            f"<CogsRecord {self.id}: product={self.product_id} "
            f"qty={self.quantity_sold} cogs={self.total_cogs} {self.costing_method}>"
        )
