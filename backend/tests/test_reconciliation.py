"""Reconciliation check tests."""

from decimal import Decimal

import pytest
from sqlalchemy import update

from factoryledger.models.stock_account import StockAccount
from factoryledger.models.stock_lot import StockLot
from factoryledger.services import inventory, production
from factoryledger.services.reconciliation import (
    check_ledger_balance,
    check_lot_convergence,
    run_checks,
)

ACTOR = "user-recon-01"


@pytest.mark.unit
@pytest.mark.asyncio
class TestReconciliationChecks:

    async def test_clean_after_mixed_postings(self, db, make_material, make_bottle):
        material = await make_material(purchases=[(20, 3), (10, 4)])
        bottle = await make_bottle(stock="50")

        await inventory.post_consumption(db, material.id, Decimal("25"), reference="RUN-1")
        await inventory.post_damage(db, material.id, Decimal("2.5"), "Spilled")
        await inventory.post_damage(db, bottle.id, Decimal("3"), "Cracked")

        batch = await production.plan_batch(
            db, "orange-juice", [{"bottle_type_id": bottle.id, "quantity": "10"}], ACTOR
        )
        await production.start_batch(db, batch.id, ACTOR)
        await production.complete_batch(
            db,
            batch.id,
            ACTOR,
            actual_items=[{"bottle_type_id": bottle.id, "quantity": "10"}],
            actual_materials=[{"material_id": material.id, "quantity_used": "1.25"}],
        )

        report = await run_checks(db)

        assert report == {"ok": True, "lot_convergence": [], "ledger_balance": []}

    async def test_accounts_without_activity_are_clean(self, db, make_material, make_bottle):
        await make_material()
        await make_bottle()

        assert await check_lot_convergence(db) == []
        assert await check_ledger_balance(db) == []

    async def test_drifted_account_total_is_reported(self, db, make_material):
        material = await make_material(purchases=[(10, 2)])

        await db.execute(
            update(StockAccount)
            .where(StockAccount.id == material.id)
            .values(current_quantity=Decimal("12"))
        )

        lot_mismatches = await check_lot_convergence(db)
        ledger_mismatches = await check_ledger_balance(db)

        assert [m["account_id"] for m in lot_mismatches] == [material.id]
        assert Decimal(lot_mismatches[0]["variance"]) == Decimal("2")
        assert [m["account_id"] for m in ledger_mismatches] == [material.id]
        assert Decimal(ledger_mismatches[0]["ledger_balance"]) == Decimal("10")

    async def test_drifted_lot_only_breaks_convergence(self, db, make_material):
        material = await make_material(purchases=[(10, 2)])

        await db.execute(
            update(StockLot)
            .where(StockLot.material_id == material.id)
            .values(quantity_remaining=Decimal("9"))
        )

        report = await run_checks(db)

        assert report["ok"] is False
        assert [m["account_id"] for m in report["lot_convergence"]] == [material.id]
        assert report["ledger_balance"] == []
