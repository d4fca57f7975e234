"""SQLAlchemy models for persistent storage.

This module defines the database schema for indexed markets, orders,
trades, cancels and the classified event log.

Domain timestamps (``created_at`` on markets, ``timestamp`` on orders,
trades, cancels and events) are unix milliseconds; bookkeeping columns are
timezone-aware datetimes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

OPEN_STATUSES = ("open", "partially_filled")


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class MarketModel(Base):
    """Markets discovered by scanning program accounts."""

    __tablename__ = "markets"

    id: Mapped[str] = mapped_column(String(44), primary_key=True)  # market account address
    base_mint: Mapped[str] = mapped_column(String(44), nullable=False)
    quote_mint: Mapped[str] = mapped_column(String(44), nullable=False)
    symbol: Mapped[str] = mapped_column(String(64), nullable=False)
    base_decimals: Mapped[int] = mapped_column(Integer, nullable=False)
    quote_decimals: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_markets_symbol", "symbol"),
        Index("idx_markets_created_at", "created_at"),
    )


class OrderModel(Base):
    """Orders placed on a market, keyed by the program order id."""

    __tablename__ = "orders"

    market_id: Mapped[str] = mapped_column(String(44), primary_key=True)
    order_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)

    user_address: Mapped[str] = mapped_column(String(44), nullable=False)
    open_orders_account: Mapped[str | None] = mapped_column(String(44), nullable=True)
    # u64 does not fit BIGINT
    client_order_id: Mapped[Decimal | None] = mapped_column(Numeric(20, 0), nullable=True)

    side: Mapped[str] = mapped_column(String(3), nullable=False)  # bid/ask
    order_type: Mapped[str] = mapped_column(String(24), nullable=False)
    price: Mapped[int] = mapped_column(BigInteger, nullable=False)  # price lots
    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)  # base lots
    filled: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # open|partially_filled|filled|cancelled

    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    slot: Mapped[int] = mapped_column(BigInteger, nullable=False)
    signature: Mapped[str] = mapped_column(String(88), nullable=False)

    indexed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_orders_book", "market_id", "side", "status", "price"),
        Index("idx_orders_user_ts", "user_address", "timestamp"),
        Index("idx_orders_open_orders_account", "market_id", "open_orders_account"),
    )


class TradeModel(Base):
    """Matched fills, from the taker's perspective."""

    __tablename__ = "trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    market_id: Mapped[str] = mapped_column(String(44), nullable=False)
    maker: Mapped[str] = mapped_column(String(44), nullable=False)
    taker: Mapped[str] = mapped_column(String(44), nullable=False)
    side: Mapped[str] = mapped_column(String(4), nullable=False)  # buy/sell
    price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)

    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    slot: Mapped[int] = mapped_column(BigInteger, nullable=False)
    signature: Mapped[str] = mapped_column(String(88), nullable=False)
    # Fill sequence within the market; distinguishes fills of one transaction.
    seq_num: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Maker side of the fill, kept so an order indexed later can claim it.
    maker_open_orders_account: Mapped[str | None] = mapped_column(String(44), nullable=True)
    maker_side: Mapped[str | None] = mapped_column(String(3), nullable=True)
    maker_client_order_id: Mapped[Decimal | None] = mapped_column(Numeric(20, 0), nullable=True)
    # NULL until the volume is applied to a maker order
    maker_order_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("signature", "market_id", "timestamp", "seq_num", name="uq_trades_fill"),
        Index("idx_trades_market_ts", "market_id", "timestamp"),
        Index("idx_trades_maker_ts", "maker", "timestamp"),
        Index("idx_trades_taker_ts", "taker", "timestamp"),
        Index("idx_trades_maker_open_orders", "market_id", "maker_open_orders_account"),
    )


class EventModel(Base):
    """Audit log of every classified program event."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    market_id: Mapped[str | None] = mapped_column(String(44), nullable=True)
    user_address: Mapped[str | None] = mapped_column(String(44), nullable=True)
    signature: Mapped[str] = mapped_column(String(88), nullable=False)
    slot: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    data: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("signature", "event_type", "slot", name="uq_events_signature_type_slot"),
        Index("idx_events_market_ts", "market_id", "timestamp"),
        Index("idx_events_slot", "slot"),
    )


class CancelModel(Base):
    """Cancel instructions seen on chain.

    Kept so an order indexed after its cancel still ends up cancelled.
    ``kind`` says whether ``target`` is a program order id or a client
    order id (the latter scoped to ``open_orders_account``).
    """

    __tablename__ = "cancels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    market_id: Mapped[str] = mapped_column(String(44), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)  # order_id|client_order_id
    target: Mapped[Decimal] = mapped_column(Numeric(20, 0), nullable=False)
    open_orders_account: Mapped[str | None] = mapped_column(String(44), nullable=True)

    signature: Mapped[str] = mapped_column(String(88), nullable=False)
    slot: Mapped[int] = mapped_column(BigInteger, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("signature", "market_id", "kind", "target", name="uq_cancels_instruction"),
        Index("idx_cancels_market_target", "market_id", "kind", "target"),
    )
