"""Initial schema: markets, orders, trades and the event log.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "markets",
        sa.Column("id", sa.String(44), nullable=False),
        sa.Column("base_mint", sa.String(44), nullable=False),
        sa.Column("quote_mint", sa.String(44), nullable=False),
        sa.Column("symbol", sa.String(64), nullable=False),
        sa.Column("base_decimals", sa.Integer(), nullable=False),
        sa.Column("quote_decimals", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_markets_symbol", "markets", ["symbol"])
    op.create_index("idx_markets_created_at", "markets", ["created_at"])

    op.create_table(
        "orders",
        sa.Column("market_id", sa.String(44), nullable=False),
        sa.Column("order_id", sa.BigInteger(), nullable=False),
        sa.Column("user_address", sa.String(44), nullable=False),
        sa.Column("open_orders_account", sa.String(44), nullable=True),
        sa.Column("client_order_id", sa.Numeric(20, 0), nullable=True),
        sa.Column("side", sa.String(3), nullable=False),
        sa.Column("order_type", sa.String(24), nullable=False),
        sa.Column("price", sa.BigInteger(), nullable=False),
        sa.Column("quantity", sa.BigInteger(), nullable=False),
        sa.Column("filled", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("slot", sa.BigInteger(), nullable=False),
        sa.Column("signature", sa.String(88), nullable=False),
        sa.Column("indexed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("market_id", "order_id"),
    )
    op.create_index("idx_orders_book", "orders", ["market_id", "side", "status", "price"])
    op.create_index("idx_orders_user_ts", "orders", ["user_address", "timestamp"])
    op.create_index("idx_orders_open_orders_account", "orders", ["market_id", "open_orders_account"])

    op.create_table(
        "trades",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("market_id", sa.String(44), nullable=False),
        sa.Column("maker", sa.String(44), nullable=False),
        sa.Column("taker", sa.String(44), nullable=False),
        sa.Column("side", sa.String(4), nullable=False),
        sa.Column("price", sa.BigInteger(), nullable=False),
        sa.Column("quantity", sa.BigInteger(), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("slot", sa.BigInteger(), nullable=False),
        sa.Column("signature", sa.String(88), nullable=False),
        sa.Column("seq_num", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("signature", "market_id", "timestamp", "seq_num", name="uq_trades_fill"),
    )
    op.create_index("idx_trades_market_ts", "trades", ["market_id", "timestamp"])
    op.create_index("idx_trades_maker_ts", "trades", ["maker", "timestamp"])
    op.create_index("idx_trades_taker_ts", "trades", ["taker", "timestamp"])

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("market_id", sa.String(44), nullable=True),
        sa.Column("user_address", sa.String(44), nullable=True),
        sa.Column("signature", sa.String(88), nullable=False),
        sa.Column("slot", sa.BigInteger(), nullable=False),
        sa.Column("timestamp", sa.BigInteger(), nullable=False),
        sa.Column("data", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("signature", "event_type", "slot", name="uq_events_signature_type_slot"),
    )
    op.create_index("idx_events_market_ts", "events", ["market_id", "timestamp"])
    op.create_index("idx_events_slot", "events", ["slot"])


def downgrade() -> None:
    op.drop_index("idx_events_slot", table_name="events")
    op.drop_index("idx_events_market_ts", table_name="events")
    op.drop_table("events")

    op.drop_index("idx_trades_taker_ts", table_name="trades")
    op.drop_index("idx_trades_maker_ts", table_name="trades")
    op.drop_index("idx_trades_market_ts", table_name="trades")
    op.drop_table("trades")

    op.drop_index("idx_orders_open_orders_account", table_name="orders")
    op.drop_index("idx_orders_user_ts", table_name="orders")
    op.drop_index("idx_orders_book", table_name="orders")
    op.drop_table("orders")

    op.drop_index("idx_markets_created_at", table_name="markets")
    op.drop_index("idx_markets_symbol", table_name="markets")
    op.drop_table("markets")
