"""ActivityLog — immutable audit trail for stock postings and batch transitions.

Records who did what, when, and to which entity.  Rows are appended in the
same transaction as the change they describe, so a rolled-back posting
leaves no activity row behind.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from factoryledger.database import Base
from factoryledger.utils.clock import utcnow


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── Who ────────────────────────────────────────────────────
    actor_id: Mapped[str | None] = mapped_column(String(36), index=True)

    # ── What ───────────────────────────────────────────────────
    # purchased | damaged | consumed | planned | started | completed |
    # cancelled | account_created | threshold_updated | recipe_updated
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # ── Target ─────────────────────────────────────────────────
    # stock_account | production_batch | product
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[str | None] = mapped_column(String(36))
    entity_code: Mapped[str | None] = mapped_column(String(100))

    # ── Context ────────────────────────────────────────────────
    summary: Mapped[str | None] = mapped_column(Text)
    details: Mapped[dict | None] = mapped_column(JSON)

    # ── Timestamp ──────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )
