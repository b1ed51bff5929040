"""Pydantic schemas for recipes and production batches."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field


# ── Recipes ──────────────────────────────────────────────────

class RecipeLine(BaseModel):
    material_id: str
    quantity_per_liter: Decimal = Field(..., gt=0)


class RecipeSet(BaseModel):
    lines: list[RecipeLine]


class RecipeLineOut(BaseModel):
    material_id: str
    quantity_per_liter: Decimal

    model_config = {"from_attributes": True}


# ── Plan ─────────────────────────────────────────────────────

class PlannedItem(BaseModel):
    bottle_type_id: str
    # Lines with quantity ≤ 0 are dropped when the batch is planned
    quantity: Decimal


class BatchPlanCreate(BaseModel):
    product_id: str
    planned_items: list[PlannedItem] = Field(..., min_length=1)
    planned_date: date | None = None
    planned_notes: str | None = None
    # Leave empty to allocate the next BATCH-<year>-NNNN code
    human_id: str | None = Field(None, max_length=50)


class NextBatchCodeOut(BaseModel):
    human_id: str


# ── Transitions ──────────────────────────────────────────────

class ActualItem(BaseModel):
    bottle_type_id: str
    quantity: Decimal = Field(..., gt=0)
    defects: Decimal = Field(Decimal("0"), ge=0)


class ActualMaterial(BaseModel):
    material_id: str
    quantity_used: Decimal = Field(..., gt=0)


class BatchComplete(BaseModel):
    actual_items: list[ActualItem] = Field(..., min_length=1)
    actual_materials: list[ActualMaterial] = []

    # Quality readings
    brix_before: Decimal | None = None
    brix_after: Decimal | None = None
    acidity_before: Decimal | None = None
    acidity_after: Decimal | None = None
    quality_images: list[str] = []
    execution_notes: str | None = None

    def quality(self) -> dict:
        return self.model_dump(
            include={
                "brix_before", "brix_after", "acidity_before", "acidity_after",
                "quality_images", "execution_notes",
            }
        )


class BatchCancel(BaseModel):
    reason: str | None = None


# ── Response ─────────────────────────────────────────────────

class FinishedGoodOut(BaseModel):
    id: str
    bottle_type_id: str
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    manufactured_at: datetime

    model_config = {"from_attributes": True}


class ProductionBatchSummary(BaseModel):
    id: str
    human_id: str
    product_id: str
    status: str
    planned_items: list[dict]
    planned_date: date | None = None
    planned_at: datetime
    completed_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ProductionBatchOut(BaseModel):
    id: str
    human_id: str
    product_id: str
    status: str
    version: int

    planned_items: list[dict]
    planned_date: date | None = None
    planned_notes: str | None = None
    material_requirements: list[dict] | None = None
    insufficient_materials: list[dict] | None = None

    actual_items: list[dict] | None = None
    actual_materials: list[dict] | None = None

    brix_before: Decimal | None = None
    brix_after: Decimal | None = None
    acidity_before: Decimal | None = None
    acidity_after: Decimal | None = None
    quality_images: list[str] | None = None
    execution_notes: str | None = None

    total_material_cost: Decimal | None = None
    total_bottle_cost: Decimal | None = None
    total_volume_ml: Decimal | None = None
    unit_cost_per_ml: Decimal | None = None
    cost_breakdown: dict | None = None

    planned_at: datetime
    planned_by: str | None = None
    started_at: datetime | None = None
    started_by: str | None = None
    completed_at: datetime | None = None
    completed_by: str | None = None
    cancelled_at: datetime | None = None
    cancelled_by: str | None = None
    cancelled_reason: str | None = None
    created_at: datetime
    updated_at: datetime

    finished_goods: list[FinishedGoodOut] = []

    model_config = {"from_attributes": True}
