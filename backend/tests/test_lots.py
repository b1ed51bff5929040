"""FIFO lot allocation tests."""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from factoryledger.exceptions import InsufficientLotsError, InvalidInputError
from factoryledger.services import inventory, ledger, lots, stock_account
from factoryledger.services.reconciliation import check_lot_convergence


async def _remaining(db, material_id) -> list[Decimal]:
    return [lot.quantity_remaining for lot in await lots.list_lots(db, material_id)]


@pytest.mark.unit
@pytest.mark.asyncio
class TestReceive:

    async def test_purchase_opens_exactly_one_lot(self, db, make_material):
        material = await make_material()

        entry = await inventory.post_purchase(db, material.id, Decimal("25"), Decimal("8.5"))
        material_lots = await lots.list_lots(db, material.id)

        assert len(material_lots) == 1
        lot = material_lots[0]
        assert lot.quantity_received == Decimal("25")
        assert lot.quantity_remaining == Decimal("25")
        assert lot.unit_cost == Decimal("8.5")
        assert lot.source_transaction_id == entry.id
        assert entry.lot_id == lot.id
        assert await inventory.current_stock(db, material.id) == Decimal("25")

    async def test_raw_material_purchase_requires_cost(self, db, make_material):
        material = await make_material()

        with pytest.raises(InvalidInputError):
            await inventory.post_purchase(db, material.id, Decimal("10"))
        with pytest.raises(InvalidInputError):
            await inventory.post_purchase(db, material.id, Decimal("10"), Decimal("0"))

        assert await lots.list_lots(db, material.id) == []
        assert await stock_account.current_quantity(db, material.id) == Decimal("0")

    async def test_quantity_finer_than_storage_is_rejected(self, db, make_material):
        material = await make_material()

        with pytest.raises(InvalidInputError):
            await inventory.post_purchase(db, material.id, Decimal("1.0004"), Decimal("10"))
        with pytest.raises(InvalidInputError):
            await inventory.post_purchase(db, material.id, Decimal("1"), Decimal("10.00001"))

        assert await lots.list_lots(db, material.id) == []
        assert await stock_account.current_quantity(db, material.id) == Decimal("0")

    async def test_trailing_zeros_within_storage_are_accepted(self, db, make_material):
        material = await make_material(purchases=[("1.5000", "10.50000")])

        deductions, _ = await lots.consume_and_post(
            db, material.id, "production_consumption", Decimal("1.500")
        )

        assert sum(d.cost for d in deductions) == Decimal("15.75")
        assert await stock_account.current_quantity(db, material.id) == Decimal("0")

    async def test_bottles_have_no_lots(self, db, make_bottle):
        bottle = await make_bottle()
        with pytest.raises(InvalidInputError):
            await lots.receive(db, bottle.id, Decimal("5"), Decimal("1"), source_transaction_id=1)


@pytest.mark.unit
@pytest.mark.asyncio
class TestConsume:

    async def test_oldest_lot_first_with_cost_basis(self, db, make_material):
        material = await make_material(purchases=[(100, 10), (50, 12)])

        deductions = await lots.consume(db, material.id, Decimal("120"))

        assert [(d.quantity_taken, d.unit_cost) for d in deductions] == [
            (Decimal("100"), Decimal("10")),
            (Decimal("20"), Decimal("12")),
        ]
        assert sum(d.cost for d in deductions) == Decimal("1240")
        assert await _remaining(db, material.id) == [Decimal("0"), Decimal("30")]

    async def test_fifo_follows_received_at_not_insertion(self, db, make_material):
        material = await make_material()
        now = datetime(2026, 3, 1, 8, 0)
        newer = await ledger.record(db, material.id, "in", Decimal("5"), unit_cost=Decimal("2"))
        await lots.receive(db, material.id, Decimal("5"), Decimal("2"), newer.id, received_at=now)
        older = await ledger.record(db, material.id, "in", Decimal("5"), unit_cost=Decimal("1"))
        await lots.receive(
            db, material.id, Decimal("5"), Decimal("1"), older.id, received_at=now - timedelta(days=1)
        )

        deductions = await lots.consume(db, material.id, Decimal("6"))

        assert [d.unit_cost for d in deductions] == [Decimal("1"), Decimal("2")]

    async def test_short_supply_mutates_nothing(self, db, make_material):
        material = await make_material(purchases=[(10, 3), (5, 4)])

        with pytest.raises(InsufficientLotsError) as exc_info:
            await lots.consume(db, material.id, Decimal("16"))

        assert exc_info.value.available == Decimal("15")
        assert await lots.available(db, material.id) == Decimal("15")
        assert await _remaining(db, material.id) == [Decimal("10"), Decimal("5")]

    async def test_exhausted_lots_are_kept(self, db, make_material):
        material = await make_material(purchases=[(4, 1)])

        await lots.consume_and_post(db, material.id, "production_consumption", Decimal("4"))

        kept = await lots.list_lots(db, material.id)
        assert len(kept) == 1 and kept[0].is_exhausted
        assert await lots.list_lots(db, material.id, include_exhausted=False) == []

    async def test_consume_and_post_writes_one_entry_per_lot(self, db, make_material):
        material = await make_material(purchases=[(3, 5), (3, 6), (3, 7)])

        deductions, entries = await lots.consume_and_post(
            db, material.id, "production_consumption", Decimal("7"), reference="MANUAL-1"
        )

        assert [e.lot_id for e in entries] == [d.lot_id for d in deductions]
        assert [e.unit_cost for e in entries] == [Decimal("5"), Decimal("6"), Decimal("7")]
        assert sum(e.quantity for e in entries) == Decimal("7")
        assert await stock_account.current_quantity(db, material.id) == Decimal("2")
        assert await check_lot_convergence(db) == []


@pytest.mark.integration
@pytest.mark.asyncio
class TestScenario:
    """Purchase 100 @10 and 50 @12, consume 120, then try to consume 40."""

    async def test_two_lot_scenario(self, db, make_material):
        material = await make_material(name="M", purchases=[(100, 10), (50, 12)])

        await inventory.post_consumption(db, material.id, Decimal("120"), reference="RUN-1")

        assert await _remaining(db, material.id) == [Decimal("0"), Decimal("30")]
        assert await stock_account.current_quantity(db, material.id) == Decimal("30")

        entries_before = await ledger.count(db, material.id)
        with pytest.raises(InsufficientLotsError):
            await inventory.post_consumption(db, material.id, Decimal("40"), reference="RUN-2")

        assert await _remaining(db, material.id) == [Decimal("0"), Decimal("30")]
        assert await stock_account.current_quantity(db, material.id) == Decimal("30")
        assert await ledger.count(db, material.id) == entries_before

    async def test_damage_writes_off_fifo_at_lot_cost(self, db, make_material):
        material = await make_material(purchases=[(10, 2), (10, 5)])

        entry = await inventory.post_damage(db, material.id, Decimal("15"), "Spoiled drum")

        assert entry.kind == "damage"
        assert entry.total_cost == Decimal("45")  # 10 @2 + 5 @5
        assert entry.unit_cost == Decimal("3")
        assert await _remaining(db, material.id) == [Decimal("0"), Decimal("5")]
        assert await check_lot_convergence(db) == []

    async def test_concurrent_consumers_never_double_spend(self, session_factory):
        async with session_factory() as setup:
            material = await inventory.create_account(
                setup, name="Sugar", kind="raw_material", unit="kg"
            )
            await inventory.post_purchase(setup, material.id, Decimal("10"), Decimal("1"))
            await inventory.post_purchase(setup, material.id, Decimal("10"), Decimal("2"))
            await setup.commit()

        async def consume_seven():
            async with session_factory() as session:
                try:
                    await inventory.post_consumption(session, material.id, Decimal("7"))
                    await session.commit()
                    return True
                except InsufficientLotsError:
                    await session.rollback()
                    return False

        outcomes = await asyncio.gather(*(consume_seven() for _ in range(3)))

        async with session_factory() as check:
            remaining = await _remaining(check, material.id)
            quantity = await stock_account.current_quantity(check, material.id)
            mismatches = await check_lot_convergence(check)

        assert outcomes.count(True) == 2
        assert remaining == [Decimal("0"), Decimal("6")]
        assert quantity == Decimal("6")
        assert mismatches == []
