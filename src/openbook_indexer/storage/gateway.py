"""Persistence gateway: one session per call over the repositories.

Callers never hold a session. Each write commits on its own, so concurrent
feeds can share a gateway without coordinating.

Fills and cancels are stored even when their order is not indexed yet. An
order inserted later claims them, so the final state does not depend on the
order in which transactions are routed.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from openbook_indexer.storage.models import OPEN_STATUSES
from openbook_indexer.storage.repos import (
    CANCEL_BY_CLIENT_ORDER_ID,
    CANCEL_BY_ORDER_ID,
    CancelDTO,
    CancelRepository,
    EventDTO,
    EventRepository,
    InsertOutcome,
    MarketDTO,
    MarketRepository,
    OpenOrderValue,
    OrderBookDepth,
    OrderDTO,
    OrderRepository,
    SortOrder,
    TradeDTO,
    TradeRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from openbook_indexer.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class PersistenceGateway:
    """Idempotent writes and read-side aggregations for indexed state."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    @property
    def db(self) -> DatabaseManager:
        return self._db

    # Writes

    async def upsert_market(self, market: MarketDTO) -> InsertOutcome:
        async with self._db.get_async_session() as session:
            return await MarketRepository(session).upsert(market)

    async def insert_order(self, order: OrderDTO) -> InsertOutcome:
        """Insert an order and apply fills and cancels that were seen before it."""
        async with self._db.get_async_session() as session:
            outcome = await OrderRepository(session).insert(order)
            if outcome.inserted:
                await self._reconcile_order(session, order)
            return outcome

    async def _reconcile_order(self, session: AsyncSession, order: OrderDTO) -> None:
        if order.open_orders_account is not None:
            await TradeRepository(session).resolve_owner(
                market_id=order.market_id,
                open_orders_account=order.open_orders_account,
                owner=order.user_address,
            )
        if order.status not in OPEN_STATUSES:
            return

        orders = OrderRepository(session)
        claimed = await TradeRepository(session).claim_unattributed_fills(order)
        if claimed:
            await orders.add_fill(
                market_id=order.market_id, order_id=order.order_id, quantity=claimed
            )
            logger.debug(
                "Order %s/%d claimed %d lots of earlier fills",
                order.market_id,
                order.order_id,
                claimed,
            )

        if await CancelRepository(session).has_cancel_for(order):
            await orders.cancel_by_order_id(market_id=order.market_id, order_id=order.order_id)
            logger.debug(
                "Order %s/%d was cancelled before it was indexed", order.market_id, order.order_id
            )

    async def insert_trade(self, trade: TradeDTO) -> InsertOutcome:
        async with self._db.get_async_session() as session:
            return await TradeRepository(session).insert(trade)

    async def log_event(
        self,
        event_type: str,
        *,
        signature: str,
        slot: int,
        timestamp: int,
        market_id: str | None = None,
        user_address: str | None = None,
    ) -> InsertOutcome:
        async with self._db.get_async_session() as session:
            return await EventRepository(session).insert(
                EventDTO(
                    event_type=event_type,
                    signature=signature,
                    slot=slot,
                    timestamp=timestamp,
                    market_id=market_id,
                    user_address=user_address,
                )
            )

    async def record_fill(
        self,
        trade: TradeDTO,
        *,
        maker_open_orders_account: str,
        maker_side: str,
        maker_client_order_id: int | None = None,
    ) -> InsertOutcome:
        """Store a trade and, only if it is new, add its volume to the maker order.

        Both writes share one transaction, so a replayed fill never counts twice.
        The fill price is the maker's resting price, so it narrows the match
        even when a client order id is given. A fill whose maker order is not
        indexed yet is kept unattributed until that order is inserted.
        """
        trade = replace(
            trade,
            maker_open_orders_account=maker_open_orders_account,
            maker_side=maker_side,
            maker_client_order_id=maker_client_order_id,
            maker_order_id=None,
        )
        async with self._db.get_async_session() as session:
            trades = TradeRepository(session)
            outcome = await trades.insert(trade)
            if not outcome.inserted:
                return outcome

            orders = OrderRepository(session)
            order_id: int | None = None
            if maker_client_order_id is not None:
                order_id = await orders.apply_fill(
                    market_id=trade.market_id,
                    open_orders_account=maker_open_orders_account,
                    side=maker_side,
                    quantity=trade.quantity,
                    client_order_id=maker_client_order_id,
                    price=trade.price,
                    slot=trade.slot,
                )
            if order_id is None:
                order_id = await orders.apply_fill(
                    market_id=trade.market_id,
                    open_orders_account=maker_open_orders_account,
                    side=maker_side,
                    quantity=trade.quantity,
                    price=trade.price,
                    slot=trade.slot,
                )
            if order_id is None:
                logger.debug(
                    "No indexed maker order for fill %s (market=%s, open_orders=%s)",
                    trade.signature,
                    trade.market_id,
                    maker_open_orders_account,
                )
            else:
                await trades.set_maker_order(trade, order_id)
            return outcome

    async def cancel_order_by_client_order_id(
        self,
        *,
        market_id: str,
        open_orders_account: str,
        client_order_id: int,
        signature: str,
        slot: int,
        timestamp: int,
    ) -> int:
        """Record the cancel and close matching orders placed at or before ``slot``."""
        async with self._db.get_async_session() as session:
            await CancelRepository(session).insert(
                CancelDTO(
                    market_id=market_id,
                    kind=CANCEL_BY_CLIENT_ORDER_ID,
                    target=client_order_id,
                    open_orders_account=open_orders_account,
                    signature=signature,
                    slot=slot,
                    timestamp=timestamp,
                )
            )
            return await OrderRepository(session).cancel_by_client_order_id(
                market_id=market_id,
                open_orders_account=open_orders_account,
                client_order_id=client_order_id,
                slot=slot,
            )

    async def cancel_order(
        self, *, market_id: str, order_id: int, signature: str, slot: int, timestamp: int
    ) -> int:
        async with self._db.get_async_session() as session:
            await CancelRepository(session).insert(
                CancelDTO(
                    market_id=market_id,
                    kind=CANCEL_BY_ORDER_ID,
                    target=order_id,
                    signature=signature,
                    slot=slot,
                    timestamp=timestamp,
                )
            )
            return await OrderRepository(session).cancel_by_order_id(
                market_id=market_id, order_id=order_id
            )

    # Reads

    async def get_market(self, market_id: str) -> MarketDTO | None:
        async with self._db.get_async_session() as session:
            return await MarketRepository(session).get_by_id(market_id)

    async def get_market_by_symbol_or_id(self, key: str) -> MarketDTO | None:
        async with self._db.get_async_session() as session:
            return await MarketRepository(session).get_by_symbol_or_id(key)

    async def get_markets(self, *, limit: int = 100) -> list[MarketDTO]:
        async with self._db.get_async_session() as session:
            return await MarketRepository(session).get_markets(limit=limit)

    async def get_market_symbol(self, market_id: str) -> str:
        async with self._db.get_async_session() as session:
            return await MarketRepository(session).get_symbol(market_id)

    async def get_order(self, market_id: str, order_id: int) -> OrderDTO | None:
        async with self._db.get_async_session() as session:
            return await OrderRepository(session).get(market_id, order_id)

    async def find_order_owner(self, *, market_id: str, open_orders_account: str) -> str | None:
        async with self._db.get_async_session() as session:
            return await OrderRepository(session).find_owner(
                market_id=market_id, open_orders_account=open_orders_account
            )

    async def get_depth(self, market_id: str, *, limit: int = 20) -> OrderBookDepth:
        async with self._db.get_async_session() as session:
            return await OrderRepository(session).get_depth(market_id, limit=limit)

    async def get_best_bid(self, market_id: str) -> int | None:
        async with self._db.get_async_session() as session:
            return await OrderRepository(session).get_best_bid(market_id)

    async def get_best_ask(self, market_id: str) -> int | None:
        async with self._db.get_async_session() as session:
            return await OrderRepository(session).get_best_ask(market_id)

    async def get_bid_liquidity(self, market_id: str) -> int:
        async with self._db.get_async_session() as session:
            return await OrderRepository(session).get_bid_liquidity(market_id)

    async def get_ask_liquidity(self, market_id: str) -> int:
        async with self._db.get_async_session() as session:
            return await OrderRepository(session).get_ask_liquidity(market_id)

    async def get_user_orders(
        self, user_address: str, *, market_id: str | None = None, limit: int = 100
    ) -> list[OrderDTO]:
        async with self._db.get_async_session() as session:
            return await OrderRepository(session).get_user_orders(
                user_address, market_id=market_id, limit=limit
            )

    async def get_open_orders(
        self, *, market_id: str | None = None, user_address: str | None = None
    ) -> list[OrderDTO]:
        async with self._db.get_async_session() as session:
            return await OrderRepository(session).get_open_orders(
                market_id=market_id, user_address=user_address
            )

    async def get_user_open_order_value(self, user_address: str) -> list[OpenOrderValue]:
        async with self._db.get_async_session() as session:
            return await OrderRepository(session).get_user_open_order_value(user_address)

    async def get_trades(
        self, market_id: str, *, limit: int = 100, order: SortOrder = "desc"
    ) -> list[TradeDTO]:
        async with self._db.get_async_session() as session:
            return await TradeRepository(session).get_trades(market_id, limit=limit, order=order)

    async def get_user_trades(
        self,
        user_address: str,
        *,
        market_id: str | None = None,
        limit: int = 100,
        order: SortOrder = "desc",
    ) -> list[TradeDTO]:
        async with self._db.get_async_session() as session:
            return await TradeRepository(session).get_user_trades(
                user_address, market_id=market_id, limit=limit, order=order
            )

    async def get_user_24h_volume(self, user_address: str, *, now_ms: int | None = None) -> int:
        async with self._db.get_async_session() as session:
            return await TradeRepository(session).get_user_24h_volume(user_address, now_ms=now_ms)

    async def get_events_for_signature(self, signature: str) -> list[EventDTO]:
        async with self._db.get_async_session() as session:
            return await EventRepository(session).list_for_signature(signature)

    async def count_events(self) -> int:
        async with self._db.get_async_session() as session:
            return await EventRepository(session).count()
