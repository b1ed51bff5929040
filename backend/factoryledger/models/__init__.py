"""Aggregate model imports for Alembic auto-detection."""

# ── Inventory ────────────────────────────────────────────────
from factoryledger.models.stock_account import StockAccount  # noqa: F401
from factoryledger.models.stock_transaction import StockTransaction  # noqa: F401
from factoryledger.models.stock_lot import StockLot  # noqa: F401

# ── Production ───────────────────────────────────────────────
from factoryledger.models.production_batch import BatchSequence, ProductionBatch  # noqa: F401
from factoryledger.models.recipe import ProductRecipe  # noqa: F401
from factoryledger.models.finished_good import FinishedGood  # noqa: F401

# ── Audit ────────────────────────────────────────────────────
from factoryledger.models.activity_log import ActivityLog  # noqa: F401

__all__ = [
    "StockAccount", "StockTransaction", "StockLot",
    "ProductionBatch", "BatchSequence", "ProductRecipe", "FinishedGood",
    "ActivityLog",
]
