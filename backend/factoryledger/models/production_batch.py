"""ProductionBatch — one planned and executed production run.

A batch is created at planning time with target bottle quantities, then
moves forward through its lifecycle.  Completion is the only transition
with a resource effect: it posts the actual bottle and raw-material usage
to the ledger in one all-or-nothing unit.

Lifecycle:  planned → in_progress → completed
            planned | in_progress → cancelled

BatchSequence is the per-year counter row behind the human-readable
``BATCH-<year>-NNNN`` codes.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint, Date, DateTime, Integer, JSON, Numeric, String, Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from factoryledger.database import Base
from factoryledger.utils.clock import utcnow

BATCH_STATUSES = ("planned", "in_progress", "completed", "cancelled")


class ProductionBatch(Base):
    __tablename__ = "production_batches"
    __table_args__ = (
        CheckConstraint(
            "status IN ('planned', 'in_progress', 'completed', 'cancelled')",
            name="ck_production_batches_status",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # BATCH-<year>-NNNN, human-readable, unique
    human_id: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # ── Status ───────────────────────────────────────────────
    # planned | in_progress | completed | cancelled
    status: Mapped[str] = mapped_column(String(20), default="planned", index=True)
    # Bumped on every status write; transitions are conditioned on it
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # ── Plan ─────────────────────────────────────────────────
    # [{"bottle_type_id": "...", "quantity": "120"}]
    planned_items: Mapped[list] = mapped_column(JSON, nullable=False)
    planned_date: Mapped[date | None] = mapped_column(Date)
    planned_notes: Mapped[str | None] = mapped_column(Text)
    # [{"material_id": "...", "required": "12.5", "available": "40"}]
    material_requirements: Mapped[list | None] = mapped_column(JSON)
    # Subset of material_requirements that was short at planning time
    insufficient_materials: Mapped[list | None] = mapped_column(JSON)

    # ── Execution (set only once completed) ──────────────────
    # [{"bottle_type_id": "...", "quantity": "118", "defects": "2"}]
    actual_items: Mapped[list | None] = mapped_column(JSON)
    # [{"material_id": "...", "quantity_used": "12.1"}]
    actual_materials: Mapped[list | None] = mapped_column(JSON)

    # ── Quality ──────────────────────────────────────────────
    brix_before: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    brix_after: Mapped[Decimal | None] = mapped_column(Numeric(6, 2))
    acidity_before: Mapped[Decimal | None] = mapped_column(Numeric(6, 3))
    acidity_after: Mapped[Decimal | None] = mapped_column(Numeric(6, 3))
    quality_images: Mapped[list | None] = mapped_column(JSON)
    execution_notes: Mapped[str | None] = mapped_column(Text)

    # ── Costing (set on completion) ──────────────────────────
    total_material_cost: Mapped[Decimal | None] = mapped_column(Numeric(16, 4))
    total_bottle_cost: Mapped[Decimal | None] = mapped_column(Numeric(16, 4))
    total_volume_ml: Mapped[Decimal | None] = mapped_column(Numeric(16, 2))
    unit_cost_per_ml: Mapped[Decimal | None] = mapped_column(Numeric(16, 6))
    # {"materials": [{material_id, lot_id, quantity, unit_cost, cost}], "bottles": [...]}
    cost_breakdown: Mapped[dict | None] = mapped_column(JSON)

    # ── Lifecycle stamps ─────────────────────────────────────
    planned_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    planned_by: Mapped[str | None] = mapped_column(String(36))
    started_at: Mapped[datetime | None] = mapped_column(DateTime)
    started_by: Mapped[str | None] = mapped_column(String(36))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    completed_by: Mapped[str | None] = mapped_column(String(36))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime)
    cancelled_by: Mapped[str | None] = mapped_column(String(36))
    cancelled_reason: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "cancelled")

    @property
    def total_planned_bottles(self) -> Decimal:
        return sum(
            (Decimal(str(item["quantity"])) for item in self.planned_items or []),
            Decimal("0"),
        )


class BatchSequence(Base):
    """Last issued BATCH-<year>-NNNN suffix per year."""
    __tablename__ = "batch_sequences"

    year: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
