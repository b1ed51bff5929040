"""Lightweight helper for recording activity log entries.

Usage:
    await log_activity(
        db, actor_id, action="completed", entity_type="production_batch",
        entity_id=batch.id, entity_code=batch.human_id,
        summary="Completed BATCH-2025-0007: 240 bottles",
    )

The row is added to the current session and committed with the
enclosing transaction.  No extra flush is performed.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from factoryledger.models.activity_log import ActivityLog


async def log_activity(
    db: AsyncSession,
    actor_id: str | None,
    *,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    entity_code: str | None = None,
    summary: str | None = None,
    details: dict | None = None,
) -> None:
    """Append an activity log entry to the current DB session."""
    entry = ActivityLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_code=entity_code,
        summary=summary,
        details=details,
    )
    db.add(entry)
