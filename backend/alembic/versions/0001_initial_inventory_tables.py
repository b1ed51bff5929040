"""Initial schema — stock accounts, ledger, FIFO lots, production batches.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-18

Run with:
    alembic upgrade head
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    # ── Stock ────────────────────────────────────────────────

    op.create_table(
        "stock_accounts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False, index=True),
        sa.Column("unit", sa.String(20), nullable=False),
        sa.Column("current_quantity", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("minimum_threshold", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("capacity_ml", sa.Numeric(10, 2)),
        sa.Column("unit_price", sa.Numeric(14, 4)),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint("current_quantity >= 0", name="ck_stock_accounts_non_negative"),
        sa.CheckConstraint("kind IN ('raw_material', 'bottle')", name="ck_stock_accounts_kind"),
    )

    op.create_table(
        "stock_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(36), sa.ForeignKey("stock_accounts.id"), nullable=False, index=True),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 3), nullable=False),
        sa.Column("unit_cost", sa.Numeric(14, 4)),
        sa.Column("total_cost", sa.Numeric(16, 4)),
        sa.Column("lot_id", sa.Integer()),
        sa.Column("reference", sa.String(100), index=True),
        sa.Column("notes", sa.Text()),
        sa.Column("recorded_by", sa.String(36)),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity > 0", name="ck_stock_transactions_positive"),
    )
    op.create_index(
        "ix_stock_transactions_account_created", "stock_transactions", ["account_id", "created_at"]
    )

    op.create_table(
        "stock_lots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("material_id", sa.String(36), sa.ForeignKey("stock_accounts.id"), nullable=False, index=True),
        sa.Column("source_transaction_id", sa.Integer(), sa.ForeignKey("stock_transactions.id"), nullable=False),
        sa.Column("unit_cost", sa.Numeric(14, 4), nullable=False),
        sa.Column("quantity_received", sa.Numeric(14, 3), nullable=False),
        sa.Column("quantity_remaining", sa.Numeric(14, 3), nullable=False),
        sa.Column("received_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("quantity_remaining >= 0", name="ck_stock_lots_remaining_non_negative"),
        sa.CheckConstraint(
            "quantity_remaining <= quantity_received",
            name="ck_stock_lots_remaining_le_received",
        ),
    )
    op.create_index("ix_stock_lots_fifo", "stock_lots", ["material_id", "received_at", "id"])

    # ── Production ───────────────────────────────────────────

    op.create_table(
        "production_batches",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("human_id", sa.String(50), nullable=False, unique=True, index=True),
        sa.Column("product_id", sa.String(36), nullable=False, index=True),
        sa.Column("status", sa.String(20), server_default="planned", index=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("planned_items", sa.JSON(), nullable=False),
        sa.Column("planned_date", sa.Date()),
        sa.Column("planned_notes", sa.Text()),
        sa.Column("material_requirements", sa.JSON()),
        sa.Column("insufficient_materials", sa.JSON()),
        sa.Column("actual_items", sa.JSON()),
        sa.Column("actual_materials", sa.JSON()),
        sa.Column("brix_before", sa.Numeric(6, 2)),
        sa.Column("brix_after", sa.Numeric(6, 2)),
        sa.Column("acidity_before", sa.Numeric(6, 3)),
        sa.Column("acidity_after", sa.Numeric(6, 3)),
        sa.Column("quality_images", sa.JSON()),
        sa.Column("execution_notes", sa.Text()),
        sa.Column("total_material_cost", sa.Numeric(16, 4)),
        sa.Column("total_bottle_cost", sa.Numeric(16, 4)),
        sa.Column("total_volume_ml", sa.Numeric(16, 2)),
        sa.Column("unit_cost_per_ml", sa.Numeric(16, 6)),
        sa.Column("cost_breakdown", sa.JSON()),
        sa.Column("planned_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("planned_by", sa.String(36)),
        sa.Column("started_at", sa.DateTime()),
        sa.Column("started_by", sa.String(36)),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("completed_by", sa.String(36)),
        sa.Column("cancelled_at", sa.DateTime()),
        sa.Column("cancelled_by", sa.String(36)),
        sa.Column("cancelled_reason", sa.Text()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), index=True),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('planned', 'in_progress', 'completed', 'cancelled')",
            name="ck_production_batches_status",
        ),
    )

    op.create_table(
        "batch_sequences",
        sa.Column("year", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "product_recipes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("product_id", sa.String(36), nullable=False, index=True),
        sa.Column("material_id", sa.String(36), sa.ForeignKey("stock_accounts.id"), nullable=False),
        sa.Column("quantity_per_liter", sa.Numeric(14, 4), nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("product_id", "material_id", name="uq_product_recipes_product_material"),
    )

    op.create_table(
        "finished_goods",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("production_batch_id", sa.String(36), sa.ForeignKey("production_batches.id"), nullable=False, index=True),
        sa.Column("product_id", sa.String(36), nullable=False, index=True),
        sa.Column("bottle_type_id", sa.String(36), sa.ForeignKey("stock_accounts.id"), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 3), nullable=False),
        sa.Column("unit_cost", sa.Numeric(16, 4), nullable=False),
        sa.Column("total_cost", sa.Numeric(16, 4), nullable=False),
        sa.Column("manufactured_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    # ── Audit ────────────────────────────────────────────────

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("actor_id", sa.String(36), index=True),
        sa.Column("action", sa.String(50), nullable=False, index=True),
        sa.Column("entity_type", sa.String(50), nullable=False, index=True),
        sa.Column("entity_id", sa.String(36)),
        sa.Column("entity_code", sa.String(100)),
        sa.Column("summary", sa.Text()),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), index=True),
    )


def downgrade() -> None:
    for table in (
        "activity_logs",
        "finished_goods",
        "product_recipes",
        "batch_sequences",
        "production_batches",
        "stock_lots",
        "stock_transactions",
        "stock_accounts",
    ):
        op.drop_table(table)
