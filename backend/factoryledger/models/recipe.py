"""ProductRecipe — raw material required per litre of a product.

Used at planning time to derive a batch's implied material requirement:

    required = Σ (bottle.capacity_ml / 1000 × planned quantity) × quantity_per_liter
"""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from factoryledger.database import Base
from factoryledger.utils.clock import utcnow


class ProductRecipe(Base):
    __tablename__ = "product_recipes"
    __table_args__ = (
        UniqueConstraint("product_id", "material_id", name="uq_product_recipes_product_material"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    product_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    material_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("stock_accounts.id"), nullable=False
    )
    quantity_per_liter: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    material = relationship("StockAccount", lazy="selectin")
