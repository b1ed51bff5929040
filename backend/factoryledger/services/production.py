"""Production batch service — planning, lifecycle transitions, completion.

Lifecycle (forward only):

    planned ──start──▶ in_progress ──complete──▶ completed
       │                    │
       └──────cancel────────┴──────────────────▶ cancelled

Every transition reads the batch row FOR UPDATE and then writes the new
status with ``UPDATE … WHERE id AND status AND version``.  A write that
matches no row means another request moved the batch first: the caller
gets InvalidTransitionError if the status changed, ConcurrencyConflictError
otherwise.

Completion is the only transition with a stock effect.  Bottle postings,
FIFO material postings, finished goods, costing and the status write all
share one SAVEPOINT.  Any failure (short stock, short lots, lost race)
discards every part of it and the batch stays ``in_progress``.
"""

import logging
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from factoryledger.exceptions import (
    ConcurrencyConflictError,
    InvalidInputError,
    InvalidTransitionError,
    ResourceNotFoundError,
)
from factoryledger.models.finished_good import FinishedGood
from factoryledger.models.production_batch import BATCH_STATUSES, ProductionBatch
from factoryledger.models.recipe import ProductRecipe
from factoryledger.models.stock_account import StockAccount
from factoryledger.services import ledger, lots, stock_account
from factoryledger.utils.activity import log_activity
from factoryledger.utils.clock import utcnow
from factoryledger.utils.numbering import next_batch_code
from factoryledger.utils.quantities import (
    QUANTITY_PLACES,
    ZERO,
    as_json,
    to_decimal,
    to_positive,
)

logger = logging.getLogger(__name__)

# action → (allowed source statuses, target status)
TRANSITIONS = {
    "start": (("planned",), "in_progress"),
    "complete": (("in_progress",), "completed"),
    "cancel": (("planned", "in_progress"), "cancelled"),
}

QUALITY_FIELDS = ("brix_before", "brix_after", "acidity_before", "acidity_after")

MAX_PAGE_SIZE = 200


# ── Recipes ──────────────────────────────────────────────────

async def set_recipe(
    db: AsyncSession,
    product_id: str,
    lines: list[dict],
    updated_by: str | None = None,
) -> list[ProductRecipe]:
    """Replace a product's recipe with ``lines`` ({material_id, quantity_per_liter})."""
    if not product_id:
        raise InvalidInputError("product_id is required")

    per_material: dict[str, Decimal] = {}
    for line in lines:
        material_id = line.get("material_id")
        if not material_id:
            raise InvalidInputError("material_id is required on every recipe line")
        if material_id in per_material:
            raise InvalidInputError(f"Material {material_id} appears twice in the recipe")
        per_material[material_id] = to_positive(
            line.get("quantity_per_liter"), "quantity_per_liter", places=4
        )

    for material_id in per_material:
        account = await stock_account.get_account(db, material_id)
        if account.kind != "raw_material":
            raise InvalidInputError(f"{account.name} is not a raw material")

    await db.execute(delete(ProductRecipe).where(ProductRecipe.product_id == product_id))
    recipe = [
        ProductRecipe(product_id=product_id, material_id=material_id, quantity_per_liter=qpl)
        for material_id, qpl in per_material.items()
    ]
    db.add_all(recipe)
    await db.flush()

    await log_activity(
        db, updated_by,
        action="recipe_updated",
        entity_type="product",
        entity_id=product_id,
        summary=f"Recipe set with {len(recipe)} material(s)",
    )
    return await get_recipe(db, product_id)


async def get_recipe(db: AsyncSession, product_id: str) -> list[ProductRecipe]:
    result = await db.execute(
        select(ProductRecipe)
        .where(ProductRecipe.product_id == product_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


# ── Helpers ──────────────────────────────────────────────────

def _stamp(*previous: datetime | None) -> datetime:
    """Now, but never earlier than any earlier lifecycle stamp."""
    now = utcnow()
    for earlier in previous:
        if earlier is not None and earlier > now:
            now = earlier
    return now


async def _bottle(db: AsyncSession, bottle_type_id: str) -> StockAccount:
    account = await stock_account.get_account(db, bottle_type_id)
    if account.kind != "bottle":
        raise InvalidInputError(f"{account.name} is not a bottle type")
    return account


def _normalize_planned(planned_items: list[dict]) -> dict[str, Decimal]:
    """Drop non-positive lines, merge repeats of a bottle type."""
    items: dict[str, Decimal] = {}
    for item in planned_items or []:
        bottle_type_id = item.get("bottle_type_id")
        if not bottle_type_id:
            raise InvalidInputError("bottle_type_id is required on every item")
        quantity = to_decimal(item.get("quantity"), "quantity", QUANTITY_PLACES)
        if quantity <= ZERO:
            continue
        items[bottle_type_id] = items.get(bottle_type_id, ZERO) + quantity
    if not items:
        raise InvalidInputError("At least one item with quantity greater than 0 is required")
    return items


def _normalize_actual(actual_items: list[dict]) -> list[dict]:
    if not actual_items:
        raise InvalidInputError("actual_items must contain at least one item")
    seen = set()
    items = []
    for item in actual_items:
        bottle_type_id = item.get("bottle_type_id")
        if not bottle_type_id:
            raise InvalidInputError("bottle_type_id is required on every item")
        if bottle_type_id in seen:
            raise InvalidInputError(f"Bottle type {bottle_type_id} appears twice")
        seen.add(bottle_type_id)
        quantity = to_positive(item.get("quantity"), "quantity")
        defects = to_decimal(item.get("defects") or 0, "defects", QUANTITY_PLACES)
        if defects < 0 or defects > quantity:
            raise InvalidInputError(
                "defects must be between 0 and the produced quantity",
                details={"bottle_type_id": bottle_type_id},
            )
        items.append(
            {"bottle_type_id": bottle_type_id, "quantity": quantity, "defects": defects}
        )
    return items


def _normalize_materials(actual_materials: list[dict] | None) -> list[dict]:
    seen = set()
    materials = []
    for line in actual_materials or []:
        material_id = line.get("material_id")
        if not material_id:
            raise InvalidInputError("material_id is required on every material line")
        if material_id in seen:
            raise InvalidInputError(f"Material {material_id} appears twice")
        seen.add(material_id)
        materials.append(
            {
                "material_id": material_id,
                "quantity_used": to_positive(line.get("quantity_used"), "quantity_used"),
            }
        )
    return materials


async def _requirements(
    db: AsyncSession,
    product_id: str,
    bottles: dict[str, StockAccount],
    items: dict[str, Decimal],
) -> list[dict]:
    """Material needed for the plan, from the product recipe, vs. stock on hand."""
    recipe = await get_recipe(db, product_id)
    if not recipe:
        return []

    litres = sum(
        (
            (bottles[bottle_id].capacity_ml or ZERO) / 1000 * quantity
            for bottle_id, quantity in items.items()
        ),
        ZERO,
    )
    requirements = []
    for line in recipe:
        on_hand = await stock_account.current_quantity(db, line.material_id)
        required = litres * line.quantity_per_liter
        requirements.append(
            {
                "material_id": line.material_id,
                "required": required,
                "available": on_hand,
            }
        )
    return requirements


async def _lock_batch(db: AsyncSession, batch_id: str) -> ProductionBatch:
    result = await db.execute(
        select(ProductionBatch)
        .where(ProductionBatch.id == batch_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    batch = result.scalar_one_or_none()
    if not batch:
        raise ResourceNotFoundError("Production batch", batch_id)
    return batch


def _guard(batch: ProductionBatch, action: str) -> str:
    allowed, target = TRANSITIONS[action]
    if batch.status not in allowed:
        raise InvalidTransitionError(batch.human_id, batch.status, action)
    return target


async def _write_transition(
    db: AsyncSession,
    batch: ProductionBatch,
    action: str,
    values: dict,
) -> ProductionBatch:
    """Conditional status write; the batch must still be as it was read."""
    target = _guard(batch, action)
    expected_status, expected_version = batch.status, batch.version

    result = await db.execute(
        update(ProductionBatch)
        .where(
            ProductionBatch.id == batch.id,
            ProductionBatch.status == expected_status,
            ProductionBatch.version == expected_version,
        )
        .values(status=target, version=expected_version + 1, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = await get_batch(db, batch.id)
        if current.status != expected_status:
            raise InvalidTransitionError(current.human_id, current.status, action)
        raise ConcurrencyConflictError("Production batch", current.human_id)

    logger.info(
        f"Batch {batch.human_id}: {expected_status} → {target}",
        extra={"batch_id": batch.id, "action": action},
    )
    return await get_batch(db, batch.id)


# ── Planning ─────────────────────────────────────────────────

async def plan_batch(
    db: AsyncSession,
    product_id: str,
    planned_items: list[dict],
    planned_by: str | None,
    planned_date: date | None = None,
    planned_notes: str | None = None,
    human_id: str | None = None,
) -> ProductionBatch:
    """Create a ``planned`` batch.  No stock moves.

    Material shortages against the product recipe are recorded in
    ``insufficient_materials`` as a warning; they do not block planning.
    """
    if not product_id:
        raise InvalidInputError("product_id is required")
    items = _normalize_planned(planned_items)

    bottles = {bottle_id: await _bottle(db, bottle_id) for bottle_id in items}

    requirements = await _requirements(db, product_id, bottles, items)
    short = [r for r in requirements if r["required"] > r["available"]]

    if human_id:
        existing = await db.execute(
            select(ProductionBatch.id).where(ProductionBatch.human_id == human_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise InvalidInputError(f"Batch code {human_id} is already in use")
    else:
        human_id = await next_batch_code(db)

    def _as_rows(rows: list[dict]) -> list[dict]:
        return [
            {
                "material_id": r["material_id"],
                "required": as_json(r["required"]),
                "available": as_json(r["available"]),
            }
            for r in rows
        ]

    batch = ProductionBatch(
        human_id=human_id,
        product_id=product_id,
        status="planned",
        version=0,
        planned_items=[
            {"bottle_type_id": bottle_id, "quantity": as_json(quantity)}
            for bottle_id, quantity in items.items()
        ],
        planned_date=planned_date,
        planned_notes=planned_notes,
        material_requirements=_as_rows(requirements),
        insufficient_materials=_as_rows(short),
        planned_at=utcnow(),
        planned_by=planned_by,
    )
    db.add(batch)
    await db.flush()

    if short:
        logger.warning(
            f"Batch {human_id} planned with {len(short)} short material(s)",
            extra={"batch_id": batch.id, "materials": [r["material_id"] for r in short]},
        )

    await log_activity(
        db, planned_by,
        action="planned",
        entity_type="production_batch",
        entity_id=batch.id,
        entity_code=human_id,
        summary=f"Planned {human_id}: {sum(items.values(), ZERO)} bottles",
    )
    return await get_batch(db, batch.id)


# ── Transitions ──────────────────────────────────────────────

async def start_batch(db: AsyncSession, batch_id: str, actor: str | None) -> ProductionBatch:
    """planned → in_progress.  Does not check or reserve stock."""
    batch = await _lock_batch(db, batch_id)
    _guard(batch, "start")

    updated = await _write_transition(
        db, batch, "start",
        {"started_at": _stamp(batch.planned_at), "started_by": actor},
    )
    await log_activity(
        db, actor,
        action="started",
        entity_type="production_batch",
        entity_id=batch.id,
        entity_code=batch.human_id,
        summary=f"Started {batch.human_id}",
    )
    return updated


async def cancel_batch(
    db: AsyncSession,
    batch_id: str,
    actor: str | None,
    reason: str | None = None,
) -> ProductionBatch:
    """planned | in_progress → cancelled.  No stock effect."""
    batch = await _lock_batch(db, batch_id)
    _guard(batch, "cancel")

    updated = await _write_transition(
        db, batch, "cancel",
        {
            "cancelled_at": _stamp(batch.planned_at, batch.started_at),
            "cancelled_by": actor,
            "cancelled_reason": reason,
        },
    )
    await log_activity(
        db, actor,
        action="cancelled",
        entity_type="production_batch",
        entity_id=batch.id,
        entity_code=batch.human_id,
        summary=f"Cancelled {batch.human_id}" + (f": {reason}" if reason else ""),
    )
    return updated


async def complete_batch(
    db: AsyncSession,
    batch_id: str,
    actor: str | None,
    actual_items: list[dict],
    actual_materials: list[dict] | None = None,
    quality: dict | None = None,
) -> ProductionBatch:
    """in_progress → completed, posting actual usage to the ledger.

    Bottles: one ``production_consumption`` entry per bottle line.
    Raw materials: FIFO lot consumption and one entry per lot touched,
    each at that lot's unit cost.

    Raises:
        InvalidTransitionError: batch is not ``in_progress``.
        InvalidInputError: empty/invalid actual items or material lines.
        InsufficientStockError / InsufficientLotsError: nothing is posted.
        ConcurrencyConflictError: the batch or a stock row lost a race.
    """
    batch = await _lock_batch(db, batch_id)
    _guard(batch, "complete")

    items = _normalize_actual(actual_items)
    materials = _normalize_materials(actual_materials)
    quality = quality or {}
    notes = f"Production batch {batch.human_id}"

    async with db.begin_nested():
        bottle_cost = ZERO
        volume_ml = ZERO
        bottle_rows = []
        bottles: dict[str, StockAccount] = {}
        for item in items:
            bottle = await _bottle(db, item["bottle_type_id"])
            bottles[bottle.id] = bottle
            price = bottle.unit_price or ZERO
            await ledger.record(
                db,
                bottle.id,
                "production_consumption",
                item["quantity"],
                unit_cost=price,
                reference=batch.human_id,
                notes=notes,
                recorded_by=actor,
            )
            bottle_cost += price * item["quantity"]
            volume_ml += (bottle.capacity_ml or ZERO) * item["quantity"]
            bottle_rows.append(
                {
                    "bottle_type_id": bottle.id,
                    "quantity": as_json(item["quantity"]),
                    "unit_price": as_json(price),
                    "cost": as_json(price * item["quantity"]),
                }
            )

        material_cost = ZERO
        material_rows = []
        for line in materials:
            deductions, _ = await lots.consume_and_post(
                db,
                line["material_id"],
                "production_consumption",
                line["quantity_used"],
                reference=batch.human_id,
                notes=notes,
                recorded_by=actor,
            )
            for deduction in deductions:
                material_cost += deduction.cost
                material_rows.append(
                    {
                        "material_id": line["material_id"],
                        "lot_id": deduction.lot_id,
                        "quantity": as_json(deduction.quantity_taken),
                        "unit_cost": as_json(deduction.unit_cost),
                        "cost": as_json(deduction.cost),
                    }
                )

        total_cost = material_cost + bottle_cost
        unit_cost_per_ml = total_cost / volume_ml if volume_ml > 0 else ZERO
        material_cost_per_ml = material_cost / volume_ml if volume_ml > 0 else ZERO

        completed_at = _stamp(batch.planned_at, batch.started_at)
        for item in items:
            good = item["quantity"] - item["defects"]
            if good <= 0:
                continue
            bottle = bottles[item["bottle_type_id"]]
            unit_cost = material_cost_per_ml * (bottle.capacity_ml or ZERO) + (
                bottle.unit_price or ZERO
            )
            db.add(
                FinishedGood(
                    production_batch_id=batch.id,
                    product_id=batch.product_id,
                    bottle_type_id=bottle.id,
                    quantity=good,
                    unit_cost=unit_cost,
                    total_cost=unit_cost * good,
                    manufactured_at=completed_at,
                )
            )
        await db.flush()

        values = {
            "completed_at": completed_at,
            "completed_by": actor,
            "actual_items": [
                {
                    "bottle_type_id": i["bottle_type_id"],
                    "quantity": as_json(i["quantity"]),
                    "defects": as_json(i["defects"]),
                }
                for i in items
            ],
            "actual_materials": [
                {"material_id": m["material_id"], "quantity_used": as_json(m["quantity_used"])}
                for m in materials
            ],
            "total_material_cost": material_cost,
            "total_bottle_cost": bottle_cost,
            "total_volume_ml": volume_ml,
            "unit_cost_per_ml": unit_cost_per_ml,
            "cost_breakdown": {"materials": material_rows, "bottles": bottle_rows},
            "quality_images": list(quality.get("quality_images") or []),
            "execution_notes": quality.get("execution_notes"),
        }
        for field in QUALITY_FIELDS:
            if quality.get(field) is not None:
                values[field] = to_decimal(quality[field], field)

        updated = await _write_transition(db, batch, "complete", values)

    await log_activity(
        db, actor,
        action="completed",
        entity_type="production_batch",
        entity_id=batch.id,
        entity_code=batch.human_id,
        summary=(
            f"Completed {batch.human_id}: "
            f"{sum((i['quantity'] for i in items), ZERO)} bottles"
        ),
        details={
            "total_material_cost": as_json(material_cost),
            "total_bottle_cost": as_json(bottle_cost),
        },
    )
    return updated


# ── Reads ────────────────────────────────────────────────────

async def get_batch(db: AsyncSession, batch_id: str) -> ProductionBatch:
    result = await db.execute(
        select(ProductionBatch)
        .where(ProductionBatch.id == batch_id)
        .execution_options(populate_existing=True)
    )
    batch = result.scalar_one_or_none()
    if not batch:
        raise ResourceNotFoundError("Production batch", batch_id)
    return batch


async def list_batches(
    db: AsyncSession,
    status: str | None = None,
    product_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[ProductionBatch], int]:
    if status and status not in BATCH_STATUSES:
        raise InvalidInputError(
            f"Unknown status '{status}'", details={"allowed": list(BATCH_STATUSES)}
        )
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise InvalidInputError("offset cannot be negative")

    stmt = select(ProductionBatch)
    count_stmt = select(func.count(ProductionBatch.id))
    if status:
        stmt = stmt.where(ProductionBatch.status == status)
        count_stmt = count_stmt.where(ProductionBatch.status == status)
    if product_id:
        stmt = stmt.where(ProductionBatch.product_id == product_id)
        count_stmt = count_stmt.where(ProductionBatch.product_id == product_id)

    total = (await db.execute(count_stmt)).scalar() or 0
    result = await db.execute(
        stmt.order_by(ProductionBatch.created_at.desc(), ProductionBatch.human_id.desc())
        .limit(limit)
        .offset(offset)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all()), total


async def list_finished_goods(db: AsyncSession, batch_id: str) -> list[FinishedGood]:
    await get_batch(db, batch_id)
    result = await db.execute(
        select(FinishedGood)
        .where(FinishedGood.production_batch_id == batch_id)
        .order_by(FinishedGood.bottle_type_id)
    )
    return list(result.scalars().all())
