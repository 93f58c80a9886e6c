"""
Initial database schema for the brokerage ledger.

Creates the two tables the engine works on: ``asset_balances`` (one
row per account and asset, with total and usable amounts) and
``orders``.  They correspond to the SQLAlchemy metadata defined in
``brokerage/src/brokerage/services/db.py``.  Amount columns use the same
``Amount`` type so SQLite stores them as exact text.

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa

from alembic import op

from brokerage.services.db import AMOUNT

# revision identifiers, used by Alembic.
revision = "20261019_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create asset_balances and orders tables."""
    op.create_table(
        "asset_balances",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("asset", sa.String(16), nullable=False),
        sa.Column(
            "total",
            AMOUNT,
            nullable=False,
            server_default="0",
        ),
        sa.Column(
            "usable",
            AMOUNT,
            nullable=False,
            server_default="0",
        ),
        sa.UniqueConstraint("account_id", "asset", name="uq_asset_balances_account_asset"),
        sa.CheckConstraint("usable >= 0", name="ck_asset_balances_usable_non_negative"),
        sa.CheckConstraint("usable <= total", name="ck_asset_balances_usable_le_total"),
    )
    op.create_index("ix_asset_balances_account_id", "asset_balances", ["account_id"])
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("asset", sa.String(16), nullable=False),
        sa.Column("side", sa.String(4), nullable=False),
        sa.Column("size", AMOUNT, nullable=False),
        sa.Column("price", AMOUNT, nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("size > 0", name="ck_orders_size_positive"),
        sa.CheckConstraint("price > 0", name="ck_orders_price_positive"),
    )
    op.create_index("ix_orders_account_id", "orders", ["account_id"])
    op.create_index("ix_orders_status", "orders", ["status"])
    op.create_index("ix_orders_created_at", "orders", ["created_at"])


def downgrade() -> None:
    """Drop orders and asset_balances tables."""
    op.drop_index("ix_orders_created_at", table_name="orders")
    op.drop_index("ix_orders_status", table_name="orders")
    op.drop_index("ix_orders_account_id", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_asset_balances_account_id", table_name="asset_balances")
    op.drop_table("asset_balances")
