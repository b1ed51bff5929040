"""Reconciliation checks — detect stock totals that disagree with their sources.

Each check_* function runs one comparison query and returns a list of
mismatch dicts (empty when everything agrees).  They only read; fixing a
mismatch is an operator decision.

    check_lot_convergence:  raw material current_quantity ≠ Σ lot remaining
    check_ledger_balance:   current_quantity ≠ Σ in − Σ (consumption + damage)
"""

from decimal import Decimal

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from factoryledger.models.stock_account import StockAccount
from factoryledger.models.stock_lot import StockLot
from factoryledger.models.stock_transaction import StockTransaction
from factoryledger.utils.quantities import ZERO, as_json, to_decimal

# Matches the Numeric(14, 3) quantity columns
QUANTUM = Decimal("0.001")


def _q(value) -> Decimal:
    return (to_decimal(value) if value is not None else ZERO).quantize(QUANTUM)


# ─────────────────────────────────────────────────────────────
# CHECK 1:  raw material account total  ≠  sum of its open lots
# ─────────────────────────────────────────────────────────────

async def check_lot_convergence(db: AsyncSession) -> list[dict]:
    lot_totals = (
        select(
            StockLot.material_id.label("material_id"),
            func.sum(StockLot.quantity_remaining).label("remaining"),
        )
        .group_by(StockLot.material_id)
        .subquery()
    )
    result = await db.execute(
        select(StockAccount.id, StockAccount.name, StockAccount.current_quantity, lot_totals.c.remaining)
        .outerjoin(lot_totals, lot_totals.c.material_id == StockAccount.id)
        .where(StockAccount.kind == "raw_material")
        .order_by(StockAccount.name)
    )

    mismatches = []
    for account_id, name, quantity, remaining in result.all():
        quantity = _q(quantity)
        remaining = _q(remaining)
        if quantity != remaining:
            mismatches.append(
                {
                    "account_id": account_id,
                    "name": name,
                    "current_quantity": as_json(quantity),
                    "lot_remaining": as_json(remaining),
                    "variance": as_json(quantity - remaining),
                }
            )
    return mismatches


# ─────────────────────────────────────────────────────────────
# CHECK 2:  account total  ≠  signed sum of its ledger entries
# ─────────────────────────────────────────────────────────────

async def check_ledger_balance(db: AsyncSession) -> list[dict]:
    signed = case(
        (StockTransaction.kind == "in", StockTransaction.quantity),
        else_=-StockTransaction.quantity,
    )
    ledger_totals = (
        select(
            StockTransaction.account_id.label("account_id"),
            func.sum(signed).label("balance"),
        )
        .group_by(StockTransaction.account_id)
        .subquery()
    )
    result = await db.execute(
        select(StockAccount.id, StockAccount.name, StockAccount.current_quantity, ledger_totals.c.balance)
        .outerjoin(ledger_totals, ledger_totals.c.account_id == StockAccount.id)
        .order_by(StockAccount.kind, StockAccount.name)
    )

    mismatches = []
    for account_id, name, quantity, balance in result.all():
        quantity = _q(quantity)
        balance = _q(balance)
        if quantity != balance:
            mismatches.append(
                {
                    "account_id": account_id,
                    "name": name,
                    "current_quantity": as_json(quantity),
                    "ledger_balance": as_json(balance),
                    "variance": as_json(quantity - balance),
                }
            )
    return mismatches


async def run_checks(db: AsyncSession) -> dict:
    """Both checks in one pass; ``ok`` is True only when neither finds anything."""
    lot_mismatches = await check_lot_convergence(db)
    ledger_mismatches = await check_ledger_balance(db)
    return {
        "ok": not lot_mismatches and not ledger_mismatches,
        "lot_convergence": lot_mismatches,
        "ledger_balance": ledger_mismatches,
    }
