"""Batch code generation tests."""

import asyncio
import re

import pytest
from sqlalchemy.exc import OperationalError

from factoryledger.models.production_batch import ProductionBatch
from factoryledger.utils import numbering
from factoryledger.utils.numbering import format_batch_code, next_batch_code, peek_batch_code

FALLBACK = re.compile(r"^BATCH-2026-\d{4}-[0-9a-f]{4}$")


def _batch(human_id: str) -> ProductionBatch:
    return ProductionBatch(
        human_id=human_id,
        product_id="p",
        status="planned",
        version=0,
        planned_items=[{"bottle_type_id": "b", "quantity": "1"}],
    )


@pytest.mark.unit
@pytest.mark.asyncio
class TestBatchCodes:

    async def test_first_code_of_the_year(self, db):
        assert await next_batch_code(db, 2026) == "BATCH-2026-0001"
        assert await next_batch_code(db, 2026) == "BATCH-2026-0002"

    async def test_sequence_resets_per_year(self, db):
        await next_batch_code(db, 2026)
        assert await next_batch_code(db, 2027) == "BATCH-2027-0001"

    async def test_continues_after_highest_existing_code(self, db):
        db.add_all([_batch("BATCH-2026-0007"), _batch("BATCH-2026-0003")])
        await db.flush()

        assert await next_batch_code(db, 2026) == "BATCH-2026-0008"

    async def test_fallback_codes_do_not_move_the_sequence(self, db):
        db.add_all([_batch("BATCH-2026-0002"), _batch("BATCH-2026-9999-abcd")])
        await db.flush()

        assert await next_batch_code(db, 2026) == "BATCH-2026-0003"

    async def test_peek_claims_nothing(self, db):
        await next_batch_code(db, 2026)

        assert await peek_batch_code(db, 2026) == "BATCH-2026-0002"
        assert await peek_batch_code(db, 2026) == "BATCH-2026-0002"
        assert await next_batch_code(db, 2026) == "BATCH-2026-0002"


def test_format():
    assert format_batch_code(2025, 42) == "BATCH-2025-0042"


@pytest.mark.unit
@pytest.mark.asyncio
class TestFallback:

    async def test_database_error_falls_back(self, db, monkeypatch):
        async def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("database is locked"))

        monkeypatch.setattr(numbering, "_claim_next", broken)

        code = await next_batch_code(db, 2026)

        assert FALLBACK.match(code)

    async def test_exhausted_attempts_fall_back(self, db, monkeypatch):
        async def always_lost(*args, **kwargs):
            return None

        monkeypatch.setattr(numbering, "_claim_next", always_lost)

        assert FALLBACK.match(await next_batch_code(db, 2026))

    async def test_fallback_rerolls_on_collision(self, db, monkeypatch):
        codes = iter(["BATCH-2026-0001-aaaa", "BATCH-2026-0001-bbbb"])
        db.add(_batch("BATCH-2026-0001-aaaa"))
        await db.flush()

        async def broken(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("gone"))

        monkeypatch.setattr(numbering, "_claim_next", broken)
        monkeypatch.setattr(numbering, "_fallback_code", lambda year: next(codes))

        assert await next_batch_code(db, 2026) == "BATCH-2026-0001-bbbb"


@pytest.mark.integration
@pytest.mark.asyncio
class TestConcurrentCodes:

    async def test_concurrent_planners_get_distinct_codes(self, session_factory):
        async def allocate():
            async with session_factory() as session:
                code = await next_batch_code(session, 2026)
                session.add(_batch(code))
                await session.commit()
                return code

        codes = await asyncio.gather(*(allocate() for _ in range(8)))

        assert len(set(codes)) == 8
        assert sorted(codes) == [f"BATCH-2026-{n:04d}" for n in range(1, 9)]
