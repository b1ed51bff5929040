"""FIFO lot allocation for raw materials.

Each purchase of a raw material opens one StockLot.  Consumption walks the
material's open lots oldest-first (``received_at``, then ``id``) and takes
``min(lot.quantity_remaining, outstanding)`` from each until satisfied.

Sufficiency is checked against the full set of open lots *before* any lot
is touched: a request the lots cannot cover fails with InsufficientLotsError
and leaves every lot exactly as it was.  The material's account row is
locked for the duration so two consumers of the same material cannot both
pass the check against the same snapshot.

``consume`` leaves the account total alone.  Callers post the matching
ledger entries (one per lot, see ``post_lot_deductions``), which keeps
Σ lot.quantity_remaining equal to the account quantity.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from factoryledger.exceptions import (
    ConcurrencyConflictError,
    InsufficientLotsError,
    InvalidInputError,
)
from factoryledger.models.stock_account import StockAccount
from factoryledger.models.stock_lot import StockLot
from factoryledger.models.stock_transaction import StockTransaction
from factoryledger.services import ledger, stock_account
from factoryledger.utils.clock import utcnow
from factoryledger.utils.quantities import COST_PLACES, ZERO, to_decimal, to_positive

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LotDeduction:
    """Quantity taken from one lot by a single consume call."""
    lot_id: int
    quantity_taken: Decimal
    unit_cost: Decimal

    @property
    def cost(self) -> Decimal:
        return self.quantity_taken * self.unit_cost


def _require_raw_material(account: StockAccount) -> None:
    if account.kind != "raw_material":
        raise InvalidInputError(
            f"{account.name} is a {account.kind} account; lots exist only for raw materials"
        )


async def receive(
    db: AsyncSession,
    material_id: str,
    quantity,
    unit_cost,
    source_transaction_id: int,
    received_at: datetime | None = None,
) -> StockLot:
    """Open exactly one new lot with ``quantity_remaining = quantity``."""
    quantity = to_positive(quantity, "quantity")
    unit_cost = to_decimal(unit_cost, "unit_cost", COST_PLACES)
    if unit_cost < 0:
        raise InvalidInputError("unit_cost cannot be negative")

    account = await stock_account.get_account(db, material_id)
    _require_raw_material(account)

    lot = StockLot(
        material_id=material_id,
        source_transaction_id=source_transaction_id,
        unit_cost=unit_cost,
        quantity_received=quantity,
        quantity_remaining=quantity,
        received_at=received_at or utcnow(),
    )
    db.add(lot)
    await db.flush()
    return lot


async def open_lots(db: AsyncSession, material_id: str, *, for_update: bool = False) -> list[StockLot]:
    """Lots with stock left, in FIFO order."""
    stmt = (
        select(StockLot)
        .where(
            StockLot.material_id == material_id,
            StockLot.quantity_remaining > 0,
        )
        .order_by(StockLot.received_at.asc(), StockLot.id.asc())
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return list((await db.execute(stmt)).scalars().all())


async def available(db: AsyncSession, material_id: str) -> Decimal:
    result = await db.execute(
        select(func.coalesce(func.sum(StockLot.quantity_remaining), 0)).where(
            StockLot.material_id == material_id
        )
    )
    return to_decimal(result.scalar() or 0)


async def list_lots(
    db: AsyncSession,
    material_id: str,
    include_exhausted: bool = True,
) -> list[StockLot]:
    stmt = select(StockLot).where(StockLot.material_id == material_id)
    if not include_exhausted:
        stmt = stmt.where(StockLot.quantity_remaining > 0)
    result = await db.execute(
        stmt.order_by(StockLot.received_at.asc(), StockLot.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def consume(
    db: AsyncSession,
    material_id: str,
    quantity,
    reference: str | None = None,
) -> list[LotDeduction]:
    """Draw ``quantity`` from the material's lots, oldest first.

    Returns one LotDeduction per lot touched, in consumption order.

    Raises:
        InvalidInputError: quantity ≤ 0 or the account is not a raw material.
        ResourceNotFoundError: unknown material.
        InsufficientLotsError: open lots cannot cover the request (no lot mutated).
        ConcurrencyConflictError: a lot changed between the read and the write.
    """
    quantity = to_positive(quantity, "quantity")

    # Serializes concurrent consumers of this material
    account = await stock_account.get_account(db, material_id, for_update=True)
    _require_raw_material(account)

    lots = await open_lots(db, material_id, for_update=True)
    supply = sum((lot.quantity_remaining for lot in lots), ZERO)
    if supply < quantity:
        raise InsufficientLotsError(material_id, requested=quantity, available=supply)

    outstanding = quantity
    deductions: list[LotDeduction] = []
    for lot in lots:
        if outstanding <= ZERO:
            break
        taken = min(lot.quantity_remaining, outstanding)
        result = await db.execute(
            update(StockLot)
            .where(
                StockLot.id == lot.id,
                StockLot.quantity_remaining == lot.quantity_remaining,
            )
            .values(quantity_remaining=lot.quantity_remaining - taken)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflictError("Stock lot", str(lot.id))
        outstanding -= taken
        deductions.append(
            LotDeduction(lot_id=lot.id, quantity_taken=taken, unit_cost=lot.unit_cost)
        )

    logger.info(
        f"FIFO consumed {quantity} of {account.name} across {len(deductions)} lot(s)",
        extra={
            "material_id": material_id,
            "reference": reference,
            "lots": [d.lot_id for d in deductions],
        },
    )
    return deductions


async def post_lot_deductions(
    db: AsyncSession,
    material_id: str,
    kind: str,
    deductions: list[LotDeduction],
    *,
    reference: str | None = None,
    notes: str | None = None,
    recorded_by: str | None = None,
) -> list[StockTransaction]:
    """Post one ledger entry per lot deduction, each at that lot's unit cost.

    The entries together decrement the material account by exactly the
    consumed total.  Call inside the same savepoint as ``consume``.
    """
    entries = []
    for deduction in deductions:
        entry = await ledger.record(
            db,
            material_id,
            kind,
            deduction.quantity_taken,
            unit_cost=deduction.unit_cost,
            reference=reference,
            notes=notes,
            recorded_by=recorded_by,
            lot_id=deduction.lot_id,
        )
        entries.append(entry)
    return entries


async def consume_and_post(
    db: AsyncSession,
    material_id: str,
    kind: str,
    quantity,
    *,
    reference: str | None = None,
    notes: str | None = None,
    recorded_by: str | None = None,
) -> tuple[list[LotDeduction], list[StockTransaction]]:
    """FIFO-consume and post the per-lot ledger entries as one unit.

    Either every lot decrement and every ledger entry lands, or none does.
    """
    async with db.begin_nested():
        deductions = await consume(db, material_id, quantity, reference=reference)
        entries = await post_lot_deductions(
            db,
            material_id,
            kind,
            deductions,
            reference=reference,
            notes=notes,
            recorded_by=recorded_by,
        )
    return deductions, entries
