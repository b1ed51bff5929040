"""Stock routes — accounts, lots, ledger postings, and low-stock alerts.

Handlers are thin: validation by the schemas, everything else in
``factoryledger.services.inventory``.  Every write queues ``stock:*`` for
invalidation after commit.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from factoryledger.auth.deps import get_current_actor
from factoryledger.config import settings
from factoryledger.database import get_db
from factoryledger.schemas.common import PaginatedResponse
from factoryledger.schemas.stock import (
    ConsumptionCreate,
    DamageCreate,
    PurchaseCreate,
    StockAccountCreate,
    StockAccountOut,
    StockLotOut,
    StockTransactionOut,
    ThresholdUpdate,
)
from factoryledger.services import inventory, stock_account
from factoryledger.utils.cache import cached, invalidate_on_commit

router = APIRouter()


# ── Accounts ─────────────────────────────────────────────────

@router.post("/accounts", response_model=StockAccountOut, status_code=status.HTTP_201_CREATED)
async def create_account(
    body: StockAccountCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    account = await inventory.create_account(db, **body.model_dump(), created_by=actor)
    invalidate_on_commit(db, "stock:*")
    return StockAccountOut.model_validate(account)


@router.get("/accounts", response_model=list[StockAccountOut])
async def list_accounts(
    kind: str | None = Query(None, pattern="^(raw_material|bottle)$"),
    db: AsyncSession = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    accounts = await inventory.list_accounts(db, kind=kind)
    return [StockAccountOut.model_validate(a) for a in accounts]


@router.get("/accounts/{account_id}", response_model=StockAccountOut)
async def get_account(
    account_id: str,
    db: AsyncSession = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    account = await stock_account.get_account(db, account_id)
    return StockAccountOut.model_validate(account)


@router.patch("/accounts/{account_id}/threshold", response_model=StockAccountOut)
async def update_threshold(
    account_id: str,
    body: ThresholdUpdate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    account = await inventory.update_threshold(
        db, account_id, body.minimum_threshold, updated_by=actor
    )
    invalidate_on_commit(db, "stock:*")
    return StockAccountOut.model_validate(account)


@router.get("/accounts/{account_id}/lots", response_model=list[StockLotOut])
async def list_lots(
    account_id: str,
    include_exhausted: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    lots = await inventory.list_lots(db, account_id, include_exhausted=include_exhausted)
    return [StockLotOut.model_validate(lot) for lot in lots]


@router.get(
    "/accounts/{account_id}/transactions",
    response_model=PaginatedResponse[StockTransactionOut],
)
async def list_transactions(
    account_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    items, total = await inventory.list_transactions(db, account_id, limit=limit, offset=offset)
    return PaginatedResponse(
        items=[StockTransactionOut.model_validate(t) for t in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/low-stock", response_model=list[StockAccountOut])
@cached(ttl=settings.low_stock_cache_ttl, prefix="stock")
async def low_stock(
    db: AsyncSession = Depends(get_db),
    _actor: str = Depends(get_current_actor),
):
    """Accounts at or below their minimum threshold (cached briefly)."""
    accounts = await inventory.low_stock(db)
    return [StockAccountOut.model_validate(a) for a in accounts]


# ── Postings ─────────────────────────────────────────────────

@router.post("/purchases", response_model=StockTransactionOut, status_code=status.HTTP_201_CREATED)
async def post_purchase(
    body: PurchaseCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    entry = await inventory.post_purchase(
        db,
        body.account_id,
        body.quantity,
        body.unit_cost,
        notes=body.notes,
        recorded_by=actor,
    )
    invalidate_on_commit(db, "stock:*")
    return StockTransactionOut.model_validate(entry)


@router.post("/damage", response_model=StockTransactionOut, status_code=status.HTTP_201_CREATED)
async def post_damage(
    body: DamageCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    entry = await inventory.post_damage(
        db, body.account_id, body.quantity, body.notes, recorded_by=actor
    )
    invalidate_on_commit(db, "stock:*")
    return StockTransactionOut.model_validate(entry)


@router.post(
    "/consumption",
    response_model=list[StockTransactionOut],
    status_code=status.HTTP_201_CREATED,
)
async def post_consumption(
    body: ConsumptionCreate,
    db: AsyncSession = Depends(get_db),
    actor: str = Depends(get_current_actor),
):
    entries = await inventory.post_consumption(
        db,
        body.account_id,
        body.quantity,
        reference=body.reference,
        notes=body.notes,
        recorded_by=actor,
    )
    invalidate_on_commit(db, "stock:*")
    return [StockTransactionOut.model_validate(e) for e in entries]
