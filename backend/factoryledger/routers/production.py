"""Production routes — recipes, batch planning, and lifecycle actions."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from factoryledger.auth.deps import get_current_actor
from factoryledger.database import get_db
from factoryledger.models.production_batch import ProductionBatch
from factoryledger.schemas.common import PaginatedResponse
from factoryledger.schemas.production import (
    BatchCancel,
    BatchComplete,
    BatchPlanCreate,
    FinishedGoodOut,
    NextBatchCodeOut,
    ProductionBatchOut,
    ProductionBatchSummary,
    RecipeLineOut,
    RecipeSet,
)
from factoryledger.services import production
from factoryledger.utils.cache import invalidate_on_commit
from factoryledger.utils.numbering import peek_batch_code

router = APIRouter()


async def _batch_out(db: AsyncSession, batch: ProductionBatch) -> ProductionBatchOut:
    out = ProductionBatchOut.model_validate(batch)
    if batch.status == "completed":
        goods = await production.list_finished_goods(db, batch.id)
        out.finished_goods = [FinishedGoodOut.model_validate(g) for g in goods]
    return out


# ── Recipes ──────────────────────────────────────────────────

@router.put("/recipes/{product_id}", response_model=list[RecipeLineOut])
async def set_recipe(
    product_id: str,
    body: RecipeSet,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    recipe = await production.set_recipe(
        db, product_id, [line.model_dump() for line in body.lines], updated_by=actor
    )
    return [RecipeLineOut.model_validate(line) for line in recipe]


@router.get("/next-batch-code", response_model=NextBatchCodeOut)
async def next_batch_code(
    db: AsyncSession = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    """Preview only; the code is claimed when a batch is planned."""
    return NextBatchCodeOut(human_id=await peek_batch_code(db))


# ── Batches ──────────────────────────────────────────────────

@router.post("/", response_model=ProductionBatchOut, status_code=status.HTTP_201_CREATED)
async def plan_batch(
    body: BatchPlanCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    batch = await production.plan_batch(
        db,
        body.product_id,
        [item.model_dump() for item in body.planned_items],
        planned_by=actor,
        planned_date=body.planned_date,
        planned_notes=body.planned_notes,
        human_id=body.human_id,
    )
    return await _batch_out(db, batch)


@router.get("/", response_model=PaginatedResponse[ProductionBatchSummary])
async def list_batches(
    status_filter: str | None = Query(None, alias="status"),
    product_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    items, total = await production.list_batches(
        db, status=status_filter, product_id=product_id, limit=limit, offset=offset
    )
    return PaginatedResponse(
        items=[ProductionBatchSummary.model_validate(b) for b in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{batch_id}", response_model=ProductionBatchOut)
async def get_batch(
    batch_id: str,
    db: AsyncSession = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    batch = await production.get_batch(db, batch_id)
    return await _batch_out(db, batch)


@router.post("/{batch_id}/start", response_model=ProductionBatchOut)
async def start_batch(
    batch_id: str,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    batch = await production.start_batch(db, batch_id, actor)
    return await _batch_out(db, batch)


@router.post("/{batch_id}/complete", response_model=ProductionBatchOut)
async def complete_batch(
    batch_id: str,
    body: BatchComplete,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    batch = await production.complete_batch(
        db,
        batch_id,
        actor,
        actual_items=[item.model_dump() for item in body.actual_items],
        actual_materials=[m.model_dump() for m in body.actual_materials],
        quality=body.quality(),
    )
    invalidate_on_commit(db, "stock:*")
    return await _batch_out(db, batch)


@router.post("/{batch_id}/cancel", response_model=ProductionBatchOut)
async def cancel_batch(
    batch_id: str,
    body: BatchCancel | None = None,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    batch = await production.cancel_batch(
        db, batch_id, actor, reason=body.reason if body else None
    )
    return await _batch_out(db, batch)
