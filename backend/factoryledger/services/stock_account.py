"""StockAccount service — the single write path for ``current_quantity``.

``apply_delta`` is a compare-and-swap loop scoped to one account row:

    1. read (current_quantity, version)
    2. compute the new quantity; reject if it would go below zero
    3. UPDATE … WHERE id = :id AND version = :version_read
    4. zero rows updated → another writer got there first; re-read and retry

Retries are bounded by ``settings.stock_apply_max_retries``; exhausting them
raises ConcurrencyConflictError.  Callers outside this module must never
assign ``StockAccount.current_quantity`` themselves; postings go through
``factoryledger.services.ledger.record``.
"""

import logging
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from factoryledger.config import settings
from factoryledger.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    ResourceNotFoundError,
)
from factoryledger.models.stock_account import StockAccount
from factoryledger.utils.clock import utcnow
from factoryledger.utils.quantities import ZERO, to_decimal

logger = logging.getLogger(__name__)


async def get_account(
    db: AsyncSession,
    account_id: str,
    *,
    for_update: bool = False,
) -> StockAccount:
    """Load an account fresh from the database (never a stale identity-map copy)."""
    stmt = (
        select(StockAccount)
        .where(StockAccount.id == account_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    account = (await db.execute(stmt)).scalar_one_or_none()
    if not account:
        raise ResourceNotFoundError("Stock account", account_id)
    return account


async def current_quantity(db: AsyncSession, account_id: str) -> Decimal:
    result = await db.execute(
        select(StockAccount.current_quantity).where(StockAccount.id == account_id)
    )
    quantity = result.scalar_one_or_none()
    if quantity is None:
        raise ResourceNotFoundError("Stock account", account_id)
    return quantity


async def apply_delta(db: AsyncSession, account_id: str, delta) -> Decimal:
    """Add ``delta`` (signed) to the account and return the new quantity.

    Raises:
        ResourceNotFoundError: unknown account.
        InsufficientStockError: the result would be negative; nothing written.
        ConcurrencyConflictError: lost the compare-and-swap on every attempt.
    """
    delta = to_decimal(delta, "delta")

    for attempt in range(1, settings.stock_apply_max_retries + 1):
        row = (
            await db.execute(
                select(
                    StockAccount.current_quantity,
                    StockAccount.version,
                    StockAccount.name,
                ).where(StockAccount.id == account_id)
            )
        ).one_or_none()
        if row is None:
            raise ResourceNotFoundError("Stock account", account_id)

        before, version, name = row
        after = before + delta
        if after < ZERO:
            raise InsufficientStockError(
                account_id=account_id,
                requested=-delta,
                available=before,
                account_name=name,
            )

        result = await db.execute(
            update(StockAccount)
            .where(StockAccount.id == account_id, StockAccount.version == version)
            .values(current_quantity=after, version=version + 1, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return after

        logger.info(
            f"Stock account {account_id} changed under us (attempt {attempt}), retrying",
            extra={"account_id": account_id, "attempt": attempt},
        )

    logger.warning(
        f"Giving up on stock account {account_id} after "
        f"{settings.stock_apply_max_retries} attempts",
        extra={"account_id": account_id},
    )
    raise ConcurrencyConflictError("Stock account", account_id)
