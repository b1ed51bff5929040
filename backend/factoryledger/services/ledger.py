"""Stock ledger — append a transaction and apply its effect as one unit.

Every stock movement, for raw materials and bottles alike, goes through
``record``.  The account update and the ledger insert share a SAVEPOINT:
if the account would go negative (or the insert fails) neither survives,
so there is never a ledger row without its effect or vice versa.
"""

import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from factoryledger.exceptions import InvalidInputError
from factoryledger.models.stock_transaction import TRANSACTION_KINDS, StockTransaction
from factoryledger.services import stock_account
from factoryledger.utils.clock import utcnow
from factoryledger.utils.quantities import to_decimal, to_positive

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200


def signed_effect(kind: str, quantity: Decimal) -> Decimal:
    """`in` adds stock; production_consumption and damage remove it."""
    if kind not in TRANSACTION_KINDS:
        raise InvalidInputError(
            f"Unknown transaction kind '{kind}'",
            details={"allowed": list(TRANSACTION_KINDS)},
        )
    return quantity if kind == "in" else -quantity


async def record(
    db: AsyncSession,
    account_id: str,
    kind: str,
    quantity,
    *,
    unit_cost=None,
    reference: str | None = None,
    notes: str | None = None,
    recorded_by: str | None = None,
    lot_id: int | None = None,
    total_cost=None,
) -> StockTransaction:
    """Post one movement to ``account_id`` and return the ledger entry.

    Raises:
        InvalidInputError: quantity ≤ 0, bad unit cost, or unknown kind.
        ResourceNotFoundError: unknown account.
        InsufficientStockError: the account would go negative (nothing recorded).
        ConcurrencyConflictError: the account kept changing under contention.
    """
    quantity = to_positive(quantity, "quantity")
    effect = signed_effect(kind, quantity)

    cost = None
    total = None
    if unit_cost is not None:
        cost = to_decimal(unit_cost, "unit_cost")
        if cost < 0:
            raise InvalidInputError("unit_cost cannot be negative")
        total = cost * quantity
    if total_cost is not None:
        total = to_decimal(total_cost, "total_cost")

    async with db.begin_nested():
        new_quantity = await stock_account.apply_delta(db, account_id, effect)

        entry = StockTransaction(
            account_id=account_id,
            kind=kind,
            quantity=quantity,
            unit_cost=cost,
            total_cost=total,
            lot_id=lot_id,
            reference=reference,
            notes=notes,
            recorded_by=recorded_by,
            created_at=utcnow(),
        )
        db.add(entry)
        await db.flush()

    logger.info(
        f"Ledger {kind} {quantity} on {account_id} → {new_quantity}",
        extra={
            "account_id": account_id,
            "kind": kind,
            "quantity": str(quantity),
            "reference": reference,
            "transaction_id": entry.id,
        },
    )
    return entry


async def query(
    db: AsyncSession,
    account_id: str,
    limit: int = 50,
    offset: int = 0,
) -> list[StockTransaction]:
    """Newest-first page of an account's ledger.  Read-only."""
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise InvalidInputError("offset cannot be negative")

    result = await db.execute(
        select(StockTransaction)
        .where(StockTransaction.account_id == account_id)
        .order_by(StockTransaction.created_at.desc(), StockTransaction.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(result.scalars().all())


async def count(db: AsyncSession, account_id: str) -> int:
    result = await db.execute(
        select(func.count(StockTransaction.id)).where(
            StockTransaction.account_id == account_id
        )
    )
    return result.scalar() or 0
