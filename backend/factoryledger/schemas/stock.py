"""Pydantic schemas for stock accounts, lots, and ledger postings.

Quantities and money are ``Decimal`` throughout; they serialize as strings
in JSON so no precision is lost.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, model_validator


# ── Accounts ─────────────────────────────────────────────────

class StockAccountCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    kind: Literal["raw_material", "bottle"]
    unit: str = Field(..., min_length=1, max_length=20)
    minimum_threshold: Decimal = Field(Decimal("0"), ge=0)

    # Bottles: volume and price per empty bottle
    capacity_ml: Decimal | None = Field(None, gt=0)
    unit_price: Decimal | None = Field(None, ge=0)

    # Opening balance, posted as an `in` entry (and a lot for raw materials)
    opening_quantity: Decimal = Field(Decimal("0"), ge=0)
    opening_unit_cost: Decimal | None = Field(None, ge=0)


class ThresholdUpdate(BaseModel):
    minimum_threshold: Decimal = Field(..., ge=0)


class StockAccountOut(BaseModel):
    id: str
    name: str
    kind: str
    unit: str
    current_quantity: Decimal
    minimum_threshold: Decimal
    capacity_ml: Decimal | None = None
    unit_price: Decimal | None = None
    is_low: bool
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class StockLotOut(BaseModel):
    id: int
    material_id: str
    source_transaction_id: int | None = None
    unit_cost: Decimal
    quantity_received: Decimal
    quantity_remaining: Decimal
    received_at: datetime

    model_config = {"from_attributes": True}


# ── Postings ─────────────────────────────────────────────────

class PurchaseCreate(BaseModel):
    """Payload for POST /api/stock/purchases.

    ``unit_cost`` is required for raw materials (it becomes the lot's cost
    basis) and optional for bottles.
    """
    account_id: str
    quantity: Decimal = Field(..., gt=0)
    unit_cost: Decimal | None = Field(None, ge=0)
    notes: str | None = None


class DamageCreate(BaseModel):
    account_id: str
    quantity: Decimal = Field(..., gt=0)
    notes: str | None = None


class ConsumptionCreate(BaseModel):
    account_id: str
    quantity: Decimal = Field(..., gt=0)
    reference: str | None = Field(None, max_length=100)
    notes: str | None = None

    @model_validator(mode="after")
    def strip_reference(self):
        if self.reference is not None:
            self.reference = self.reference.strip() or None
        return self


class StockTransactionOut(BaseModel):
    id: int
    account_id: str
    kind: str
    quantity: Decimal
    unit_cost: Decimal | None = None
    total_cost: Decimal | None = None
    lot_id: int | None = None
    reference: str | None = None
    notes: str | None = None
    recorded_by: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
