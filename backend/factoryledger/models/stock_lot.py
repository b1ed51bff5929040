"""StockLot — one received quantity of a raw material at a known cost.

Lots are a costing/traceability refinement over the scalar StockAccount:
every purchase of a raw material opens exactly one lot, and production or
damage draws lots down oldest-first (``received_at``, then ``id``).  An
exhausted lot keeps its row for audit and costing.

The integer primary key doubles as insertion order for FIFO tie-breaks.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from factoryledger.database import Base
from factoryledger.utils.clock import utcnow


class StockLot(Base):
    __tablename__ = "stock_lots"
    __table_args__ = (
        CheckConstraint("quantity_remaining >= 0", name="ck_stock_lots_remaining_non_negative"),
        CheckConstraint(
            "quantity_remaining <= quantity_received",
            name="ck_stock_lots_remaining_le_received",
        ),
        Index("ix_stock_lots_fifo", "material_id", "received_at", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    material_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stock_accounts.id"), nullable=False, index=True
    )
    # The `in` ledger entry that opened this lot
    source_transaction_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("stock_transactions.id"), nullable=False
    )

    unit_cost: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    quantity_received: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    quantity_remaining: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)

    received_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    # ── Relationships ────────────────────────────────────────
    material = relationship("StockAccount", back_populates="lots")

    @property
    def is_exhausted(self) -> bool:
        return self.quantity_remaining == 0
