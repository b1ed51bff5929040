"""Inventory service — the entry points request handlers call for stock.

Handles:
  - creating raw-material and bottle accounts (opening balance posted as `in`)
  - purchases: ledger `in` entry, plus a new FIFO lot for raw materials
  - damage write-offs and direct production consumption, drawing raw
    materials down lot-by-lot so cost basis follows FIFO
  - current stock, ledger pages, lot listings, and low-stock alerts

Each operation is one unit: it either fully lands or raises with nothing
changed.  The surrounding request transaction commits it.
"""

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from factoryledger.exceptions import InvalidInputError
from factoryledger.models.stock_account import ACCOUNT_KINDS, StockAccount
from factoryledger.models.stock_lot import StockLot
from factoryledger.models.stock_transaction import StockTransaction
from factoryledger.services import ledger, lots, stock_account
from factoryledger.utils.activity import log_activity
from factoryledger.utils.quantities import (
    COST_PLACES,
    QUANTITY_PLACES,
    ZERO,
    to_decimal,
    to_positive,
)

logger = logging.getLogger(__name__)


# ── Accounts ─────────────────────────────────────────────────

async def create_account(
    db: AsyncSession,
    *,
    name: str,
    kind: str,
    unit: str,
    minimum_threshold=ZERO,
    capacity_ml=None,
    unit_price=None,
    opening_quantity=ZERO,
    opening_unit_cost=None,
    created_by: str | None = None,
) -> StockAccount:
    """Create an account; a non-zero opening balance is posted through the ledger."""
    if kind not in ACCOUNT_KINDS:
        raise InvalidInputError(
            f"Unknown account kind '{kind}'", details={"allowed": list(ACCOUNT_KINDS)}
        )
    if not name or not unit:
        raise InvalidInputError("name and unit are required")

    threshold = to_decimal(minimum_threshold, "minimum_threshold", QUANTITY_PLACES)
    if threshold < 0:
        raise InvalidInputError("minimum_threshold cannot be negative")
    opening = to_decimal(opening_quantity, "opening_quantity", QUANTITY_PLACES)
    if opening < 0:
        raise InvalidInputError("opening_quantity cannot be negative")

    if kind == "bottle" and capacity_ml is not None and to_decimal(capacity_ml, "capacity_ml", 2) <= 0:
        raise InvalidInputError("capacity_ml must be greater than 0")

    account = StockAccount(
        name=name,
        kind=kind,
        unit=unit,
        current_quantity=ZERO,
        minimum_threshold=threshold,
        capacity_ml=to_decimal(capacity_ml, "capacity_ml", 2) if capacity_ml is not None else None,
        unit_price=to_decimal(unit_price, "unit_price", COST_PLACES) if unit_price is not None else None,
        version=0,
    )
    db.add(account)
    await db.flush()

    if opening > 0:
        if opening_unit_cost is None:
            opening_unit_cost = account.unit_price if account.unit_price is not None else ZERO
        await post_purchase(
            db,
            account.id,
            opening,
            unit_cost=opening_unit_cost,
            notes="Opening balance",
            recorded_by=created_by,
            allow_zero_cost=True,
        )

    await log_activity(
        db, created_by,
        action="account_created",
        entity_type="stock_account",
        entity_id=account.id,
        entity_code=account.name,
        summary=f"Created {kind} account {name} ({opening} {unit} opening)",
    )
    return await stock_account.get_account(db, account.id)


async def list_accounts(db: AsyncSession, kind: str | None = None) -> list[StockAccount]:
    stmt = select(StockAccount)
    if kind:
        stmt = stmt.where(StockAccount.kind == kind)
    result = await db.execute(
        stmt.order_by(StockAccount.kind, StockAccount.name)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def update_threshold(
    db: AsyncSession,
    account_id: str,
    minimum_threshold,
    updated_by: str | None = None,
) -> StockAccount:
    """Change the low-stock alert level (never touches the quantity)."""
    threshold = to_decimal(minimum_threshold, "minimum_threshold", QUANTITY_PLACES)
    if threshold < 0:
        raise InvalidInputError("minimum_threshold cannot be negative")

    account = await stock_account.get_account(db, account_id)
    previous = account.minimum_threshold
    account.minimum_threshold = threshold
    await db.flush()

    await log_activity(
        db, updated_by,
        action="threshold_updated",
        entity_type="stock_account",
        entity_id=account.id,
        entity_code=account.name,
        summary=f"Minimum threshold {previous} → {threshold}",
    )
    return account


async def low_stock(db: AsyncSession) -> list[StockAccount]:
    """Accounts at or below their (non-zero) minimum threshold."""
    result = await db.execute(
        select(StockAccount)
        .where(
            StockAccount.minimum_threshold > 0,
            StockAccount.current_quantity <= StockAccount.minimum_threshold,
        )
        .order_by(StockAccount.kind, StockAccount.name)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def current_stock(db: AsyncSession, account_id: str) -> Decimal:
    return await stock_account.current_quantity(db, account_id)


async def list_transactions(
    db: AsyncSession,
    account_id: str,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[StockTransaction], int]:
    """Newest-first ledger page plus the account's total entry count."""
    await stock_account.get_account(db, account_id)
    items = await ledger.query(db, account_id, limit=limit, offset=offset)
    total = await ledger.count(db, account_id)
    return items, total


async def list_lots(
    db: AsyncSession,
    material_id: str,
    include_exhausted: bool = True,
) -> list[StockLot]:
    account = await stock_account.get_account(db, material_id)
    if account.kind != "raw_material":
        raise InvalidInputError(f"{account.name} is not a raw material")
    return await lots.list_lots(db, material_id, include_exhausted=include_exhausted)


# ── Postings ─────────────────────────────────────────────────

async def post_purchase(
    db: AsyncSession,
    account_id: str,
    quantity,
    unit_cost=None,
    *,
    notes: str | None = None,
    recorded_by: str | None = None,
    allow_zero_cost: bool = False,
) -> StockTransaction:
    """Receive stock.  Raw materials also open a FIFO lot at ``unit_cost``.

    Raw-material purchases need a unit cost > 0 (the lot's cost basis);
    bottle purchases may omit it.
    """
    quantity = to_positive(quantity, "quantity")
    account = await stock_account.get_account(db, account_id)

    cost = to_decimal(unit_cost, "unit_cost", COST_PLACES) if unit_cost is not None else None
    if account.kind == "raw_material":
        if cost is None or cost < 0 or (cost == 0 and not allow_zero_cost):
            raise InvalidInputError(
                "unit_cost greater than 0 is required for raw-material purchases"
            )

    async with db.begin_nested():
        entry = await ledger.record(
            db,
            account_id,
            "in",
            quantity,
            unit_cost=cost,
            notes=notes,
            recorded_by=recorded_by,
        )
        if account.kind == "raw_material":
            lot = await lots.receive(db, account_id, quantity, cost, entry.id)
            entry.lot_id = lot.id
            await db.flush()

    await log_activity(
        db, recorded_by,
        action="purchased",
        entity_type="stock_account",
        entity_id=account.id,
        entity_code=account.name,
        summary=f"Received {quantity} {account.unit} of {account.name}",
        details={"transaction_id": entry.id, "unit_cost": str(cost) if cost is not None else None},
    )
    return entry


async def post_damage(
    db: AsyncSession,
    account_id: str,
    quantity,
    notes: str | None = None,
    *,
    recorded_by: str | None = None,
) -> StockTransaction:
    """Write off damaged stock.

    Raw materials draw their lots down FIFO; the single `damage` entry
    carries the FIFO-weighted unit cost and the exact total cost.
    """
    quantity = to_positive(quantity, "quantity")
    account = await stock_account.get_account(db, account_id)

    async with db.begin_nested():
        if account.kind == "raw_material":
            deductions = await lots.consume(db, account_id, quantity, reference="damage")
            total = sum((d.cost for d in deductions), ZERO)
            entry = await ledger.record(
                db,
                account_id,
                "damage",
                quantity,
                unit_cost=total / quantity,
                total_cost=total,
                notes=notes,
                recorded_by=recorded_by,
            )
        else:
            entry = await ledger.record(
                db,
                account_id,
                "damage",
                quantity,
                unit_cost=account.unit_price,
                notes=notes,
                recorded_by=recorded_by,
            )

    await log_activity(
        db, recorded_by,
        action="damaged",
        entity_type="stock_account",
        entity_id=account.id,
        entity_code=account.name,
        summary=f"Wrote off {quantity} {account.unit} of {account.name}",
        details={"transaction_id": entry.id, "notes": notes},
    )
    return entry


async def post_consumption(
    db: AsyncSession,
    account_id: str,
    quantity,
    *,
    reference: str | None = None,
    notes: str | None = None,
    recorded_by: str | None = None,
) -> list[StockTransaction]:
    """Production use outside a batch.

    Raw materials post one `production_consumption` entry per lot touched;
    bottles post a single entry.
    """
    quantity = to_positive(quantity, "quantity")
    account = await stock_account.get_account(db, account_id)

    if account.kind == "raw_material":
        _, entries = await lots.consume_and_post(
            db,
            account_id,
            "production_consumption",
            quantity,
            reference=reference,
            notes=notes,
            recorded_by=recorded_by,
        )
    else:
        entries = [
            await ledger.record(
                db,
                account_id,
                "production_consumption",
                quantity,
                unit_cost=account.unit_price,
                reference=reference,
                notes=notes,
                recorded_by=recorded_by,
            )
        ]

    await log_activity(
        db, recorded_by,
        action="consumed",
        entity_type="stock_account",
        entity_id=account.id,
        entity_code=account.name,
        summary=f"Consumed {quantity} {account.unit} of {account.name}",
        details={"transaction_ids": [e.id for e in entries], "reference": reference},
    )
    return entries
