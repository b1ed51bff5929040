"""StockTransaction — immutable ledger entry for every stock movement.

Kinds:
    in                      purchase / receipt        (+quantity)
    production_consumption  used by a batch or line   (−quantity)
    damage                  written off               (−quantity)

``quantity`` is always positive; the sign of the effect is implied by the
kind.  Rows are never updated or deleted; corrections are new rows.
Raw-material consumption is posted once per lot touched, with ``lot_id``
and that lot's ``unit_cost`` so the ledger carries FIFO cost basis.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from factoryledger.database import Base
from factoryledger.utils.clock import utcnow

TRANSACTION_KINDS = ("in", "production_consumption", "damage")
OUTBOUND_KINDS = ("production_consumption", "damage")


class StockTransaction(Base):
    __tablename__ = "stock_transactions"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_transactions_positive"),
        Index("ix_stock_transactions_account_created", "account_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stock_accounts.id"), nullable=False, index=True
    )

    # in | production_consumption | damage
    kind: Mapped[str] = mapped_column(String(30), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    unit_cost: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))
    total_cost: Mapped[Decimal | None] = mapped_column(Numeric(16, 4))

    # Set on per-lot consumption entries; the lot row references back
    # to its opening entry via source_transaction_id.
    lot_id: Mapped[int | None] = mapped_column(Integer)

    # Free-form link to the causing entity, e.g. "BATCH-2025-0007"
    reference: Mapped[str | None] = mapped_column(String(100), index=True)
    notes: Mapped[str | None] = mapped_column(Text)
    recorded_by: Mapped[str | None] = mapped_column(String(36))  # actor id
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    @property
    def signed_quantity(self) -> Decimal:
        return -self.quantity if self.kind in OUTBOUND_KINDS else self.quantity
