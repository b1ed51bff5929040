"""FinishedGood — sellable output recorded when a batch completes.

One row per actual item with a positive good quantity (produced minus
defects), costed from the batch's FIFO material cost and bottle price.
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from factoryledger.database import Base
from factoryledger.utils.clock import utcnow


class FinishedGood(Base):
    __tablename__ = "finished_goods"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    production_batch_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("production_batches.id"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    bottle_type_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stock_accounts.id"), nullable=False
    )

    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(16, 4), nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(Numeric(16, 4), nullable=False)

    manufactured_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
