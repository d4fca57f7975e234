"""Maker attribution on trades and the cancels table.

Revision ID: 002_order_reconciliation
Revises: 001_initial
Create Date: 2026-10-18 00:01:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "002_order_reconciliation"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("trades", sa.Column("maker_open_orders_account", sa.String(44), nullable=True))
    op.add_column("trades", sa.Column("maker_side", sa.String(3), nullable=True))
    op.add_column("trades", sa.Column("maker_client_order_id", sa.Numeric(20, 0), nullable=True))
    op.add_column("trades", sa.Column("maker_order_id", sa.BigInteger(), nullable=True))
    op.create_index(
        "idx_trades_maker_open_orders", "trades", ["market_id", "maker_open_orders_account"]
    )

    op.create_table(
        "cancels",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("market_id", sa.String(44), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("target", sa.Numeric(20, 0), nullable=False),
        sa.Column("open_orders_account", sa.String(44), nullable=True),
        sa.Column("signature", sa.String(88), nullable=False),
        sa.Column("slot", sa.BigInteger(), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("signature", "market_id", "kind", "target", name="uq_cancels_instruction"),
    )
    op.create_index("idx_cancels_market_target", "cancels", ["market_id", "kind", "target"])


def downgrade() -> None:
    op.drop_index("idx_cancels_market_target", table_name="cancels")
    op.drop_table("cancels")

    op.drop_index("idx_trades_maker_open_orders", table_name="trades")
    op.drop_column("trades", "maker_order_id")
    op.drop_column("trades", "maker_client_order_id")
    op.drop_column("trades", "maker_side")
    op.drop_column("trades", "maker_open_orders_account")
