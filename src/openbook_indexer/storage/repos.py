"""Repository pattern implementations for data access.

This module provides data access abstractions for markets, orders, trades,
cancels and the event log. Writes are single statements with a conflict
policy, so replaying the same chain data is harmless.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import aliased

from openbook_indexer.storage.models import (
    OPEN_STATUSES,
    CancelModel,
    EventModel,
    MarketModel,
    OrderModel,
    TradeModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
DEFAULT_OPEN_ORDERS_LIMIT = 1000
UNKNOWN_SYMBOL = "UNKNOWN/UNKNOWN"

SortOrder = Literal["asc", "desc"]


class InsertOutcome(str, Enum):
    """Result of an insert-if-absent write."""

    INSERTED = "inserted"
    ALREADY_PRESENT = "already_present"

    @property
    def inserted(self) -> bool:
        return self is InsertOutcome.INSERTED


def _dialect_insert(session: AsyncSession, model: type[Any]) -> Any:
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


def _now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


def _int(value: Any) -> int:
    # SUM over BIGINT comes back as Decimal on PostgreSQL
    return int(value) if value is not None else 0


@dataclass
class MarketDTO:
    """Data transfer object for markets."""

    id: str
    base_mint: str
    quote_mint: str
    symbol: str
    base_decimals: int
    quote_decimals: int
    created_at: int
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: MarketModel) -> MarketDTO:
        return cls(
            id=model.id,
            base_mint=model.base_mint,
            quote_mint=model.quote_mint,
            symbol=model.symbol,
            base_decimals=model.base_decimals,
            quote_decimals=model.quote_decimals,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


class MarketRepository:
    """Repository for scanned markets."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, dto: MarketDTO, *, now: datetime | None = None) -> InsertOutcome:
        """Insert a market, or only touch ``updated_at`` when it already exists."""
        now = now or datetime.now(UTC)
        existing = await self.session.execute(select(MarketModel.id).where(MarketModel.id == dto.id))
        known = existing.scalar_one_or_none() is not None
        stmt = _dialect_insert(self.session, MarketModel).values(
            id=dto.id,
            base_mint=dto.base_mint,
            quote_mint=dto.quote_mint,
            symbol=dto.symbol,
            base_decimals=dto.base_decimals,
            quote_decimals=dto.quote_decimals,
            created_at=dto.created_at,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(index_elements=["id"], set_={"updated_at": now})
        await self.session.execute(stmt)
        await self.session.flush()
        return InsertOutcome.ALREADY_PRESENT if known else InsertOutcome.INSERTED

    async def get_by_id(self, market_id: str) -> MarketDTO | None:
        result = await self.session.execute(select(MarketModel).where(MarketModel.id == market_id))
        model = result.scalar_one_or_none()
        return MarketDTO.from_model(model) if model else None

    async def get_by_symbol_or_id(self, key: str) -> MarketDTO | None:
        """Resolve a market by symbol first, then by address."""
        result = await self.session.execute(
            select(MarketModel)
            .where(MarketModel.symbol == key)
            .order_by(MarketModel.created_at.asc(), MarketModel.id.asc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        if model is not None:
            return MarketDTO.from_model(model)
        return await self.get_by_id(key)

    async def get_markets(self, *, limit: int = 100) -> list[MarketDTO]:
        result = await self.session.execute(
            select(MarketModel).order_by(MarketModel.created_at.desc()).limit(limit)
        )
        return [MarketDTO.from_model(m) for m in result.scalars().all()]

    async def get_symbol(self, market_id: str) -> str:
        result = await self.session.execute(
            select(MarketModel.symbol).where(MarketModel.id == market_id)
        )
        symbol = result.scalar_one_or_none()
        return symbol if symbol is not None else UNKNOWN_SYMBOL


@dataclass
class OrderDTO:
    """Data transfer object for orders."""

    market_id: str
    order_id: int
    user_address: str
    side: str
    order_type: str
    price: int
    quantity: int
    timestamp: int
    slot: int
    signature: str
    filled: int = 0
    status: str = "open"
    open_orders_account: str | None = None
    client_order_id: int | None = None
    indexed_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def remaining(self) -> int:
        return self.quantity - self.filled

    @classmethod
    def from_model(cls, model: OrderModel) -> OrderDTO:
        return cls(
            market_id=model.market_id,
            order_id=model.order_id,
            user_address=model.user_address,
            side=model.side,
            order_type=model.order_type,
            price=model.price,
            quantity=model.quantity,
            timestamp=model.timestamp,
            slot=model.slot,
            signature=model.signature,
            filled=model.filled,
            status=model.status,
            open_orders_account=model.open_orders_account,
            client_order_id=int(model.client_order_id) if model.client_order_id is not None else None,
            indexed_at=model.indexed_at,
            updated_at=model.updated_at,
        )


@dataclass(frozen=True)
class PriceLevel:
    price: int
    quantity: int


@dataclass(frozen=True)
class OrderBookDepth:
    """Aggregated open interest per price, best price first on each side."""

    bids: list[PriceLevel]
    asks: list[PriceLevel]


@dataclass(frozen=True)
class OpenOrderValue:
    """Funds a user has locked in resting orders on one market."""

    market_id: str
    symbol: str
    locked_quote: int  # Σ remaining × price over bids
    locked_base: int  # Σ remaining over asks


class OrderRepository:
    """Repository for orders and their fill/cancel lifecycle."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: OrderDTO, *, now: datetime | None = None) -> InsertOutcome:
        """Insert an order unless ``(market_id, order_id)`` already exists."""
        now = now or datetime.now(UTC)
        stmt = _dialect_insert(self.session, OrderModel).values(
            market_id=dto.market_id,
            order_id=dto.order_id,
            user_address=dto.user_address,
            open_orders_account=dto.open_orders_account,
            client_order_id=dto.client_order_id,
            side=dto.side,
            order_type=dto.order_type,
            price=dto.price,
            quantity=dto.quantity,
            filled=dto.filled,
            status=dto.status,
            timestamp=dto.timestamp,
            slot=dto.slot,
            signature=dto.signature,
            indexed_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=["market_id", "order_id"]).returning(
            OrderModel.order_id
        )
        result = await self.session.execute(stmt)
        inserted = result.first() is not None
        await self.session.flush()
        return InsertOutcome.INSERTED if inserted else InsertOutcome.ALREADY_PRESENT

    async def get(self, market_id: str, order_id: int) -> OrderDTO | None:
        result = await self.session.execute(
            select(OrderModel).where(
                OrderModel.market_id == market_id, OrderModel.order_id == order_id
            )
        )
        model = result.scalar_one_or_none()
        return OrderDTO.from_model(model) if model else None

    @staticmethod
    def _fill_values(quantity: int, now: datetime) -> dict[str, Any]:
        completes = OrderModel.filled + quantity >= OrderModel.quantity
        return {
            "filled": case((completes, OrderModel.quantity), else_=OrderModel.filled + quantity),
            "status": case((completes, "filled"), else_="partially_filled"),
            "updated_at": now,
        }

    async def apply_fill(
        self,
        *,
        market_id: str,
        open_orders_account: str,
        side: str,
        quantity: int,
        client_order_id: int | None = None,
        price: int | None = None,
        slot: int | None = None,
        now: datetime | None = None,
    ) -> int | None:
        """Add fill volume to the oldest matching open order.

        ``filled`` is capped at ``quantity`` and the status moves to
        ``partially_filled`` or ``filled``. Orders placed after ``slot`` are
        never matched. Returns the updated order id, or None.
        """
        now = now or datetime.now(UTC)
        # aliased so the subquery is not correlated to the UPDATE target
        candidate = aliased(OrderModel)
        conditions = [
            candidate.market_id == market_id,
            candidate.open_orders_account == open_orders_account,
            candidate.side == side,
            candidate.status.in_(OPEN_STATUSES),
        ]
        if client_order_id is not None:
            conditions.append(candidate.client_order_id == client_order_id)
        if price is not None:
            conditions.append(candidate.price == price)
        if slot is not None:
            conditions.append(candidate.slot <= slot)

        target = (
            select(candidate.order_id)
            .where(*conditions)
            .order_by(candidate.timestamp.asc(), candidate.order_id.asc())
            .limit(1)
            .scalar_subquery()
        )
        stmt = (
            update(OrderModel)
            .where(OrderModel.market_id == market_id, OrderModel.order_id == target)
            .values(**self._fill_values(quantity, now))
            .returning(OrderModel.order_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def add_fill(
        self, *, market_id: str, order_id: int, quantity: int, now: datetime | None = None
    ) -> bool:
        """Add fill volume to one known open order."""
        now = now or datetime.now(UTC)
        stmt = (
            update(OrderModel)
            .where(
                OrderModel.market_id == market_id,
                OrderModel.order_id == order_id,
                OrderModel.status.in_(OPEN_STATUSES),
            )
            .values(**self._fill_values(quantity, now))
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return bool(result.rowcount)

    async def cancel_by_client_order_id(
        self,
        *,
        market_id: str,
        open_orders_account: str,
        client_order_id: int,
        slot: int | None = None,
        now: datetime | None = None,
    ) -> int:
        """Cancel open orders with this client id placed at or before ``slot``."""
        now = now or datetime.now(UTC)
        conditions = [
            OrderModel.market_id == market_id,
            OrderModel.open_orders_account == open_orders_account,
            OrderModel.client_order_id == client_order_id,
            OrderModel.status.in_(OPEN_STATUSES),
        ]
        if slot is not None:
            conditions.append(OrderModel.slot <= slot)
        stmt = (
            update(OrderModel)
            .where(*conditions)
            .values(status="cancelled", updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def cancel_by_order_id(
        self, *, market_id: str, order_id: int, now: datetime | None = None
    ) -> int:
        now = now or datetime.now(UTC)
        stmt = (
            update(OrderModel)
            .where(
                OrderModel.market_id == market_id,
                OrderModel.order_id == order_id,
                OrderModel.status.in_(OPEN_STATUSES),
            )
            .values(status="cancelled", updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def find_owner(self, *, market_id: str, open_orders_account: str) -> str | None:
        """Wallet that placed orders through ``open_orders_account``."""
        result = await self.session.execute(
            select(OrderModel.user_address)
            .where(
                OrderModel.market_id == market_id,
                OrderModel.open_orders_account == open_orders_account,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_user_orders(
        self, user_address: str, *, market_id: str | None = None, limit: int = 100
    ) -> list[OrderDTO]:
        stmt = select(OrderModel).where(OrderModel.user_address == user_address)
        if market_id is not None:
            stmt = stmt.where(OrderModel.market_id == market_id)
        stmt = stmt.order_by(OrderModel.timestamp.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return [OrderDTO.from_model(m) for m in result.scalars().all()]

    async def get_open_orders(
        self, *, market_id: str | None = None, user_address: str | None = None
    ) -> list[OrderDTO]:
        """Open orders, optionally narrowed; unfiltered reads are capped."""
        stmt = select(OrderModel).where(OrderModel.status.in_(OPEN_STATUSES))
        if market_id is not None:
            stmt = stmt.where(OrderModel.market_id == market_id)
        if user_address is not None:
            stmt = stmt.where(OrderModel.user_address == user_address)
        stmt = stmt.order_by(OrderModel.timestamp.desc())
        if market_id is None and user_address is None:
            stmt = stmt.limit(DEFAULT_OPEN_ORDERS_LIMIT)
        result = await self.session.execute(stmt)
        return [OrderDTO.from_model(m) for m in result.scalars().all()]

    async def _levels(self, market_id: str, side: str, limit: int) -> list[PriceLevel]:
        remaining = func.sum(OrderModel.quantity - OrderModel.filled)
        price_order = OrderModel.price.desc() if side == "bid" else OrderModel.price.asc()
        stmt = (
            select(OrderModel.price, remaining)
            .where(
                OrderModel.market_id == market_id,
                OrderModel.side == side,
                OrderModel.status.in_(OPEN_STATUSES),
            )
            .group_by(OrderModel.price)
            .order_by(price_order)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [PriceLevel(price=int(price), quantity=_int(qty)) for price, qty in result.all()]

    async def get_depth(self, market_id: str, *, limit: int = 20) -> OrderBookDepth:
        return OrderBookDepth(
            bids=await self._levels(market_id, "bid", limit),
            asks=await self._levels(market_id, "ask", limit),
        )

    async def _best_price(self, market_id: str, side: str) -> int | None:
        best = func.max(OrderModel.price) if side == "bid" else func.min(OrderModel.price)
        result = await self.session.execute(
            select(best).where(
                OrderModel.market_id == market_id,
                OrderModel.side == side,
                OrderModel.status.in_(OPEN_STATUSES),
            )
        )
        value = result.scalar_one_or_none()
        return int(value) if value is not None else None

    async def get_best_bid(self, market_id: str) -> int | None:
        return await self._best_price(market_id, "bid")

    async def get_best_ask(self, market_id: str) -> int | None:
        return await self._best_price(market_id, "ask")

    async def _liquidity(self, market_id: str, side: str) -> int:
        result = await self.session.execute(
            select(func.sum(OrderModel.quantity - OrderModel.filled)).where(
                OrderModel.market_id == market_id,
                OrderModel.side == side,
                OrderModel.status.in_(OPEN_STATUSES),
            )
        )
        return _int(result.scalar_one_or_none())

    async def get_bid_liquidity(self, market_id: str) -> int:
        return await self._liquidity(market_id, "bid")

    async def get_ask_liquidity(self, market_id: str) -> int:
        return await self._liquidity(market_id, "ask")

    async def get_user_open_order_value(self, user_address: str) -> list[OpenOrderValue]:
        remaining = OrderModel.quantity - OrderModel.filled
        locked_quote = func.sum(case((OrderModel.side == "bid", remaining * OrderModel.price), else_=0))
        locked_base = func.sum(case((OrderModel.side == "ask", remaining), else_=0))
        stmt = (
            select(MarketModel.id, MarketModel.symbol, locked_quote, locked_base)
            .join(MarketModel, MarketModel.id == OrderModel.market_id)
            .where(
                OrderModel.user_address == user_address,
                OrderModel.status.in_(OPEN_STATUSES),
            )
            .group_by(MarketModel.id, MarketModel.symbol)
            .order_by(MarketModel.symbol.asc())
        )
        result = await self.session.execute(stmt)
        return [
            OpenOrderValue(
                market_id=market_id,
                symbol=symbol,
                locked_quote=_int(quote),
                locked_base=_int(base),
            )
            for market_id, symbol, quote, base in result.all()
        ]


@dataclass
class TradeDTO:
    """Data transfer object for trades."""

    market_id: str
    maker: str
    taker: str
    side: str
    price: int
    quantity: int
    timestamp: int
    slot: int
    signature: str
    seq_num: int = 0
    maker_open_orders_account: str | None = None
    maker_side: str | None = None
    maker_client_order_id: int | None = None
    maker_order_id: int | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TradeModel) -> TradeDTO:
        return cls(
            market_id=model.market_id,
            maker=model.maker,
            taker=model.taker,
            side=model.side,
            price=model.price,
            quantity=model.quantity,
            timestamp=model.timestamp,
            slot=model.slot,
            signature=model.signature,
            seq_num=model.seq_num,
            maker_open_orders_account=model.maker_open_orders_account,
            maker_side=model.maker_side,
            maker_client_order_id=(
                int(model.maker_client_order_id) if model.maker_client_order_id is not None else None
            ),
            maker_order_id=model.maker_order_id,
            created_at=model.created_at,
        )


class TradeRepository:
    """Repository for persisted trades."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: TradeDTO, *, now: datetime | None = None) -> InsertOutcome:
        now = now or datetime.now(UTC)
        stmt = _dialect_insert(self.session, TradeModel).values(
            market_id=dto.market_id,
            maker=dto.maker,
            taker=dto.taker,
            side=dto.side,
            price=dto.price,
            quantity=dto.quantity,
            timestamp=dto.timestamp,
            slot=dto.slot,
            signature=dto.signature,
            seq_num=dto.seq_num,
            maker_open_orders_account=dto.maker_open_orders_account,
            maker_side=dto.maker_side,
            maker_client_order_id=dto.maker_client_order_id,
            maker_order_id=dto.maker_order_id,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_nothing(
            index_elements=["signature", "market_id", "timestamp", "seq_num"]
        ).returning(TradeModel.id)
        result = await self.session.execute(stmt)
        inserted = result.first() is not None
        await self.session.flush()
        return InsertOutcome.INSERTED if inserted else InsertOutcome.ALREADY_PRESENT

    async def set_maker_order(self, dto: TradeDTO, order_id: int) -> None:
        await self.session.execute(
            update(TradeModel)
            .where(
                TradeModel.signature == dto.signature,
                TradeModel.market_id == dto.market_id,
                TradeModel.timestamp == dto.timestamp,
                TradeModel.seq_num == dto.seq_num,
            )
            .values(maker_order_id=order_id)
            .execution_options(synchronize_session=False)
        )

    async def claim_unattributed_fills(self, order: OrderDTO) -> int:
        """Attribute stored fills whose maker order was not indexed yet.

        Candidates share the order's open orders account, side and price and
        happened at or after its slot. They are claimed oldest first until the
        order is full. Returns the claimed volume, capped at the remainder.
        """
        if order.open_orders_account is None:
            return 0
        conditions = [
            TradeModel.market_id == order.market_id,
            TradeModel.maker_open_orders_account == order.open_orders_account,
            TradeModel.maker_side == order.side,
            TradeModel.price == order.price,
            TradeModel.slot >= order.slot,
            TradeModel.maker_order_id.is_(None),
        ]
        if order.client_order_id is not None:
            conditions.append(
                or_(
                    TradeModel.maker_client_order_id.is_(None),
                    TradeModel.maker_client_order_id == order.client_order_id,
                )
            )
        result = await self.session.execute(
            select(TradeModel.id, TradeModel.quantity)
            .where(*conditions)
            .order_by(TradeModel.slot.asc(), TradeModel.seq_num.asc(), TradeModel.id.asc())
        )

        remaining = order.remaining
        claimed = 0
        trade_ids: list[int] = []
        for trade_id, quantity in result.all():
            if claimed >= remaining:
                break
            trade_ids.append(trade_id)
            claimed += quantity

        if trade_ids:
            await self.session.execute(
                update(TradeModel)
                .where(TradeModel.id.in_(trade_ids))
                .values(maker_order_id=order.order_id)
                .execution_options(synchronize_session=False)
            )
        return min(claimed, remaining)

    async def resolve_owner(self, *, market_id: str, open_orders_account: str, owner: str) -> int:
        """Replace a raw open orders address on stored trades with its wallet."""
        updated = 0
        for column in (TradeModel.maker, TradeModel.taker):
            result = await self.session.execute(
                update(TradeModel)
                .where(TradeModel.market_id == market_id, column == open_orders_account)
                .values({column.key: owner})
                .execution_options(synchronize_session=False)
            )
            updated += int(result.rowcount or 0)
        return updated

    @staticmethod
    def _ordering(order: SortOrder) -> list[Any]:
        if order == "asc":
            return [TradeModel.timestamp.asc(), TradeModel.id.asc()]
        return [TradeModel.timestamp.desc(), TradeModel.id.desc()]

    async def get_trades(
        self, market_id: str, *, limit: int = 100, order: SortOrder = "desc"
    ) -> list[TradeDTO]:
        stmt = (
            select(TradeModel)
            .where(TradeModel.market_id == market_id)
            .order_by(*self._ordering(order))
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [TradeDTO.from_model(m) for m in result.scalars().all()]

    async def get_user_trades(
        self,
        user_address: str,
        *,
        market_id: str | None = None,
        limit: int = 100,
        order: SortOrder = "desc",
    ) -> list[TradeDTO]:
        stmt = select(TradeModel).where(
            or_(TradeModel.maker == user_address, TradeModel.taker == user_address)
        )
        if market_id is not None:
            stmt = stmt.where(TradeModel.market_id == market_id)
        stmt = stmt.order_by(*self._ordering(order)).limit(limit)
        result = await self.session.execute(stmt)
        return [TradeDTO.from_model(m) for m in result.scalars().all()]

    async def get_user_24h_volume(self, user_address: str, *, now_ms: int | None = None) -> int:
        """Σ quantity × price over the user's trades in the trailing 24 hours."""
        since = (now_ms if now_ms is not None else _now_ms()) - DAY_MS
        result = await self.session.execute(
            select(func.sum(TradeModel.quantity * TradeModel.price)).where(
                or_(TradeModel.maker == user_address, TradeModel.taker == user_address),
                TradeModel.timestamp >= since,
            )
        )
        return _int(result.scalar_one_or_none())


@dataclass
class EventDTO:
    """Data transfer object for event log records."""

    event_type: str
    signature: str
    slot: int
    timestamp: int
    market_id: str | None = None
    user_address: str | None = None
    data: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: EventModel) -> EventDTO:
        return cls(
            event_type=model.event_type,
            signature=model.signature,
            slot=model.slot,
            timestamp=model.timestamp,
            market_id=model.market_id,
            user_address=model.user_address,
            data=model.data,
            created_at=model.created_at,
        )


class EventRepository:
    """Repository for the classified event audit log."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: EventDTO, *, now: datetime | None = None) -> InsertOutcome:
        now = now or datetime.now(UTC)
        stmt = _dialect_insert(self.session, EventModel).values(
            event_type=dto.event_type,
            market_id=dto.market_id,
            user_address=dto.user_address,
            signature=dto.signature,
            slot=dto.slot,
            timestamp=dto.timestamp,
            data=dto.data,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_nothing(
            index_elements=["signature", "event_type", "slot"]
        ).returning(EventModel.id)
        result = await self.session.execute(stmt)
        inserted = result.first() is not None
        await self.session.flush()
        return InsertOutcome.INSERTED if inserted else InsertOutcome.ALREADY_PRESENT

    async def list_for_signature(self, signature: str) -> list[EventDTO]:
        result = await self.session.execute(
            select(EventModel).where(EventModel.signature == signature).order_by(EventModel.id.asc())
        )
        return [EventDTO.from_model(m) for m in result.scalars().all()]

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(EventModel))
        return int(result.scalar_one())


CANCEL_BY_ORDER_ID = "order_id"
CANCEL_BY_CLIENT_ORDER_ID = "client_order_id"


@dataclass
class CancelDTO:
    """Data transfer object for cancel instructions."""

    market_id: str
    kind: str
    target: int
    signature: str
    slot: int
    timestamp: int
    open_orders_account: str | None = None

    @classmethod
    def from_model(cls, model: CancelModel) -> CancelDTO:
        return cls(
            market_id=model.market_id,
            kind=model.kind,
            target=int(model.target),
            signature=model.signature,
            slot=model.slot,
            timestamp=model.timestamp,
            open_orders_account=model.open_orders_account,
        )


class CancelRepository:
    """Repository for cancel instructions, matched against orders indexed later."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert(self, dto: CancelDTO, *, now: datetime | None = None) -> InsertOutcome:
        now = now or datetime.now(UTC)
        stmt = _dialect_insert(self.session, CancelModel).values(
            market_id=dto.market_id,
            kind=dto.kind,
            target=dto.target,
            open_orders_account=dto.open_orders_account,
            signature=dto.signature,
            slot=dto.slot,
            timestamp=dto.timestamp,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_nothing(
            index_elements=["signature", "market_id", "kind", "target"]
        ).returning(CancelModel.id)
        result = await self.session.execute(stmt)
        inserted = result.first() is not None
        await self.session.flush()
        return InsertOutcome.INSERTED if inserted else InsertOutcome.ALREADY_PRESENT

    async def has_cancel_for(self, order: OrderDTO) -> bool:
        """Whether a cancel at or after the order's slot targets it."""
        targets = [and_(CancelModel.kind == CANCEL_BY_ORDER_ID, CancelModel.target == order.order_id)]
        if order.client_order_id is not None and order.open_orders_account is not None:
            targets.append(
                and_(
                    CancelModel.kind == CANCEL_BY_CLIENT_ORDER_ID,
                    CancelModel.target == order.client_order_id,
                    CancelModel.open_orders_account == order.open_orders_account,
                )
            )
        result = await self.session.execute(
            select(CancelModel.id)
            .where(
                CancelModel.market_id == order.market_id,
                CancelModel.slot >= order.slot,
                or_(*targets),
            )
            .limit(1)
        )
        return result.first() is not None
