"""StockAccount — the running total for one raw material or bottle type.

``current_quantity`` is the single mutable stock figure per item.  It is
written only through ``factoryledger.services.stock_account.apply_delta``,
which every ledger posting goes through; ``version`` is bumped on each
write so concurrent writers detect each other (compare-and-swap).
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from factoryledger.database import Base
from factoryledger.utils.clock import utcnow

ACCOUNT_KINDS = ("raw_material", "bottle")


class StockAccount(Base):
    __tablename__ = "stock_accounts"
    __table_args__ = (
        CheckConstraint("current_quantity >= 0", name="ck_stock_accounts_non_negative"),
        CheckConstraint("kind IN ('raw_material', 'bottle')", name="ck_stock_accounts_kind"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # raw_material | bottle
    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    # ── Quantities ───────────────────────────────────────────
    current_quantity: Mapped[Decimal] = mapped_column(
        Numeric(14, 3), nullable=False, default=Decimal("0")
    )
    # Low-stock alert level, never enforced as a hard limit
    minimum_threshold: Mapped[Decimal] = mapped_column(
        Numeric(14, 3), nullable=False, default=Decimal("0")
    )

    # ── Bottle attributes (null for raw materials) ───────────
    capacity_ml: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))

    # Compare-and-swap counter for current_quantity writes
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    # ── Relationships ────────────────────────────────────────
    # lazy="select": load lots explicitly where needed
    lots = relationship(
        "StockLot", back_populates="material",
        order_by="StockLot.received_at",
    )

    @property
    def is_low(self) -> bool:
        return self.minimum_threshold > 0 and self.current_quantity <= self.minimum_threshold
