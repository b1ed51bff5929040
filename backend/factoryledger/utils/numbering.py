"""Human-readable production batch codes.

Format:
  BATCH-<year>-<seq:4>          e.g. BATCH-2025-0007 (sequence resets yearly)
  BATCH-<year>-<ms:4>-<hex:4>   fallback when the sequence cannot be claimed

The next sequence value is max(highest existing suffix for the year, the
year's BatchSequence counter) + 1.  Claiming it is a compare-and-swap on the
counter row, so two concurrent planners never receive the same code.

Fallback codes carry an extra segment and therefore never match the
sequence pattern; they cannot push the sequence forward.
"""

import logging
import re
import secrets
import time

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from factoryledger.config import settings
from factoryledger.models.production_batch import BatchSequence, ProductionBatch
from factoryledger.utils.clock import utcnow

logger = logging.getLogger(__name__)

SEQ_WIDTH = 4


def format_batch_code(year: int, seq: int) -> str:
    return f"{settings.batch_code_prefix}-{year}-{seq:0{SEQ_WIDTH}d}"


def _sequence_pattern(year: int) -> re.Pattern:
    return re.compile(rf"^{re.escape(settings.batch_code_prefix)}-{year}-(\d+)$")


async def _highest_existing_suffix(db: AsyncSession, year: int) -> int:
    """Largest numeric suffix among this year's sequence-format codes."""
    prefix = f"{settings.batch_code_prefix}-{year}-"
    result = await db.execute(
        select(ProductionBatch.human_id).where(ProductionBatch.human_id.like(f"{prefix}%"))
    )
    pattern = _sequence_pattern(year)
    highest = 0
    for (code,) in result.all():
        match = pattern.match(code)
        if match:
            highest = max(highest, int(match.group(1)))
    return highest


async def _claim_next(db: AsyncSession, year: int) -> int | None:
    """One claim attempt.  Returns the claimed value, or None if we lost the race."""
    async with db.begin_nested():
        row = (
            await db.execute(
                select(BatchSequence.last_value).where(BatchSequence.year == year)
            )
        ).one_or_none()
        highest = await _highest_existing_suffix(db, year)

        if row is None:
            candidate = highest + 1
            try:
                async with db.begin_nested():
                    db.add(BatchSequence(year=year, last_value=candidate, updated_at=utcnow()))
                    await db.flush()
            except IntegrityError:
                # Another planner created the year's row first
                return None
            return candidate

        (last_value,) = row
        candidate = max(last_value, highest) + 1
        result = await db.execute(
            update(BatchSequence)
            .where(BatchSequence.year == year, BatchSequence.last_value == last_value)
            .values(last_value=candidate, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        return candidate


def _fallback_code(year: int) -> str:
    ms = int(time.time() * 1000) % 10000
    return f"{settings.batch_code_prefix}-{year}-{ms:04d}-{secrets.token_hex(2)}"


async def _code_exists(db: AsyncSession, code: str) -> bool:
    result = await db.execute(
        select(ProductionBatch.id).where(ProductionBatch.human_id == code)
    )
    return result.scalar_one_or_none() is not None


async def _fallback(db: AsyncSession, year: int) -> str:
    code = _fallback_code(year)
    try:
        for _ in range(settings.batch_code_max_attempts):
            if not await _code_exists(db, code):
                return code
            code = _fallback_code(year)
    except SQLAlchemyError:
        logger.warning(
            f"Could not verify fallback batch code {code}; using it unchecked",
            exc_info=True,
        )
    return code


async def next_batch_code(db: AsyncSession, year: int | None = None) -> str:
    """Allocate the next BATCH-<year>-NNNN code.

    Never raises for allocation problems: database errors or a sequence
    that keeps moving under contention produce a fallback code instead.
    """
    year = year or utcnow().year

    try:
        for attempt in range(1, settings.batch_code_max_attempts + 1):
            value = await _claim_next(db, year)
            if value is not None:
                return format_batch_code(year, value)
            logger.info(
                f"Batch sequence for {year} moved under us (attempt {attempt}), retrying",
                extra={"year": year, "attempt": attempt},
            )
        logger.warning(
            f"Batch sequence for {year} still contended after "
            f"{settings.batch_code_max_attempts} attempts; using fallback code",
            extra={"year": year},
        )
    except SQLAlchemyError:
        logger.warning(
            f"Batch sequence for {year} unavailable; using fallback code",
            exc_info=True,
            extra={"year": year},
        )

    return await _fallback(db, year)


async def peek_batch_code(db: AsyncSession, year: int | None = None) -> str:
    """The code the next plan would most likely receive.  Claims nothing."""
    year = year or utcnow().year
    last_value = (
        await db.execute(select(BatchSequence.last_value).where(BatchSequence.year == year))
    ).scalar_one_or_none() or 0
    highest = await _highest_existing_suffix(db, year)
    return format_batch_code(year, max(last_value, highest) + 1)
