"""Tests for storage repositories."""

from dataclasses import replace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from openbook_indexer.storage.repos import (
    CANCEL_BY_CLIENT_ORDER_ID,
    CANCEL_BY_ORDER_ID,
    DAY_MS,
    UNKNOWN_SYMBOL,
    CancelDTO,
    CancelRepository,
    EventDTO,
    EventRepository,
    InsertOutcome,
    MarketDTO,
    MarketRepository,
    OrderDTO,
    OrderRepository,
    PriceLevel,
    TradeDTO,
    TradeRepository,
)

MARKET = "market-sol-usdc"
OTHER_MARKET = "market-bonk-sol"
USER = "wallet-user"
MAKER = "wallet-maker"

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """Create an async session for testing."""
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


def _market(market_id: str = MARKET, symbol: str = "SOL/USDC", created_at: int = 1) -> MarketDTO:
    return MarketDTO(
        id=market_id,
        base_mint="mint-base",
        quote_mint="mint-quote",
        symbol=symbol,
        base_decimals=8,
        quote_decimals=6,
        created_at=created_at,
    )


def _order(
    order_id: int,
    *,
    side: str = "bid",
    price: int = 100,
    quantity: int = 10,
    filled: int = 0,
    status: str = "open",
    user: str = USER,
    market_id: str = MARKET,
    timestamp: int = 1000,
) -> OrderDTO:
    return OrderDTO(
        market_id=market_id,
        order_id=order_id,
        user_address=user,
        side=side,
        order_type="limit",
        price=price,
        quantity=quantity,
        filled=filled,
        status=status,
        timestamp=timestamp,
        slot=1,
        signature=f"sig-{order_id}",
        open_orders_account="oo-user",
    )


def _trade(
    *,
    price: int,
    quantity: int,
    timestamp: int,
    seq_num: int = 0,
    signature: str = "sig-trade",
    maker: str = MAKER,
    taker: str = USER,
) -> TradeDTO:
    return TradeDTO(
        market_id=MARKET,
        maker=maker,
        taker=taker,
        side="buy",
        price=price,
        quantity=quantity,
        timestamp=timestamp,
        slot=1,
        signature=signature,
        seq_num=seq_num,
    )


# ============================================================================
# MarketRepository Tests
# ============================================================================


class TestMarketRepository:
    """Tests for MarketRepository."""

    async def test_upsert_is_idempotent(self, async_session: AsyncSession) -> None:
        repo = MarketRepository(async_session)
        await repo.upsert(_market())
        await repo.upsert(_market(symbol="RENAMED"))

        markets = await repo.get_markets()
        assert len(markets) == 1
        assert markets[0].symbol == "SOL/USDC"

    async def test_upsert_reports_outcome(self, async_session: AsyncSession) -> None:
        repo = MarketRepository(async_session)

        assert await repo.upsert(_market()) == InsertOutcome.INSERTED
        assert await repo.upsert(_market()) == InsertOutcome.ALREADY_PRESENT
        assert await repo.upsert(_market(OTHER_MARKET, symbol="BONK/SOL")) == InsertOutcome.INSERTED

    async def test_symbol_or_id_lookup(self, async_session: AsyncSession) -> None:
        repo = MarketRepository(async_session)
        await repo.upsert(_market())

        by_symbol = await repo.get_by_symbol_or_id("SOL/USDC")
        by_id = await repo.get_by_symbol_or_id(MARKET)

        assert by_symbol is not None and by_symbol.id == MARKET
        assert by_id is not None and by_id.id == MARKET
        assert await repo.get_by_symbol_or_id("NOPE/NOPE") is None

    async def test_symbol_fallback(self, async_session: AsyncSession) -> None:
        repo = MarketRepository(async_session)
        await repo.upsert(_market())

        assert await repo.get_symbol(MARKET) == "SOL/USDC"
        assert await repo.get_symbol("unknown") == UNKNOWN_SYMBOL


# ============================================================================
# OrderRepository Tests
# ============================================================================


class TestOrderRepository:
    """Tests for OrderRepository."""

    async def test_insert_if_absent(self, async_session: AsyncSession) -> None:
        repo = OrderRepository(async_session)

        assert await repo.insert(_order(1)) == InsertOutcome.INSERTED
        assert await repo.insert(_order(1, price=999)) == InsertOutcome.ALREADY_PRESENT

        order = await repo.get(MARKET, 1)
        assert order is not None
        assert order.price == 100

    async def test_same_order_id_on_two_markets(self, async_session: AsyncSession) -> None:
        repo = OrderRepository(async_session)

        assert await repo.insert(_order(1)) == InsertOutcome.INSERTED
        assert await repo.insert(_order(1, market_id=OTHER_MARKET)) == InsertOutcome.INSERTED

    async def test_depth_aggregates_open_orders(self, async_session: AsyncSession) -> None:
        repo = OrderRepository(async_session)
        await repo.insert(_order(1, price=100, quantity=10))
        await repo.insert(_order(2, price=100, quantity=5, filled=2, status="partially_filled"))
        await repo.insert(_order(3, price=90, quantity=4))
        await repo.insert(_order(4, price=110, quantity=7, status="cancelled"))
        await repo.insert(_order(5, side="ask", price=130, quantity=1))
        await repo.insert(_order(6, side="ask", price=120, quantity=3))
        await repo.insert(_order(7, side="ask", price=115, quantity=3, filled=3, status="filled"))

        depth = await repo.get_depth(MARKET)

        assert depth.bids == [PriceLevel(100, 13), PriceLevel(90, 4)]
        assert depth.asks == [PriceLevel(120, 3), PriceLevel(130, 1)]

        limited = await repo.get_depth(MARKET, limit=1)
        assert limited.bids == [PriceLevel(100, 13)]

    async def test_best_prices_and_liquidity(self, async_session: AsyncSession) -> None:
        repo = OrderRepository(async_session)
        await repo.insert(_order(1, price=100, quantity=10))
        await repo.insert(_order(2, price=95, quantity=7))
        await repo.insert(_order(3, side="ask", price=120, quantity=3))
        await repo.insert(_order(4, side="ask", price=110, quantity=2, status="cancelled"))

        assert await repo.get_best_bid(MARKET) == 100
        assert await repo.get_best_ask(MARKET) == 120
        assert await repo.get_bid_liquidity(MARKET) == 17
        assert await repo.get_ask_liquidity(MARKET) == 3

    async def test_empty_book(self, async_session: AsyncSession) -> None:
        repo = OrderRepository(async_session)

        assert await repo.get_best_bid(MARKET) is None
        assert await repo.get_best_ask(MARKET) is None
        assert await repo.get_bid_liquidity(MARKET) == 0
        depth = await repo.get_depth(MARKET)
        assert depth.bids == [] and depth.asks == []

    async def test_open_orders_filters(self, async_session: AsyncSession) -> None:
        repo = OrderRepository(async_session)
        await repo.insert(_order(1))
        await repo.insert(_order(2, status="filled"))
        await repo.insert(_order(3, user="someone-else"))
        await repo.insert(_order(4, market_id=OTHER_MARKET))

        assert {o.order_id for o in await repo.get_open_orders(market_id=MARKET)} == {1, 3}
        assert {o.order_id for o in await repo.get_open_orders(user_address=USER)} == {1, 4}
        assert len(await repo.get_open_orders()) == 3

    async def test_user_open_order_value(self, async_session: AsyncSession) -> None:
        await MarketRepository(async_session).upsert(_market())
        repo = OrderRepository(async_session)
        await repo.insert(_order(1, price=100, quantity=10, filled=4, status="partially_filled"))
        await repo.insert(_order(2, side="ask", price=120, quantity=3))
        await repo.insert(_order(3, price=50, quantity=10, status="cancelled"))

        values = await repo.get_user_open_order_value(USER)

        assert len(values) == 1
        assert values[0].symbol == "SOL/USDC"
        assert values[0].locked_quote == 600
        assert values[0].locked_base == 3

    async def test_user_orders_newest_first(self, async_session: AsyncSession) -> None:
        repo = OrderRepository(async_session)
        await repo.insert(_order(1, timestamp=1000))
        await repo.insert(_order(2, timestamp=3000))
        await repo.insert(_order(3, timestamp=2000, market_id=OTHER_MARKET))

        assert [o.order_id for o in await repo.get_user_orders(USER)] == [2, 3, 1]
        assert [o.order_id for o in await repo.get_user_orders(USER, market_id=MARKET)] == [2, 1]

    async def test_find_owner(self, async_session: AsyncSession) -> None:
        repo = OrderRepository(async_session)
        await repo.insert(_order(1))

        assert await repo.find_owner(market_id=MARKET, open_orders_account="oo-user") == USER
        assert await repo.find_owner(market_id=MARKET, open_orders_account="oo-other") is None

    async def test_apply_fill_returns_order_and_skips_later_orders(
        self, async_session: AsyncSession
    ) -> None:
        repo = OrderRepository(async_session)
        await repo.insert(replace(_order(1, side="ask", timestamp=1000), slot=10))
        fill = {"market_id": MARKET, "open_orders_account": "oo-user", "side": "ask", "quantity": 3}

        assert await repo.apply_fill(**fill, slot=9) is None
        assert await repo.apply_fill(**fill, slot=10) == 1

        order = await repo.get(MARKET, 1)
        assert order is not None
        assert (order.filled, order.status) == (3, "partially_filled")

    async def test_cancel_by_client_order_id_respects_slot(self, async_session: AsyncSession) -> None:
        repo = OrderRepository(async_session)
        await repo.insert(replace(_order(1), slot=10, client_order_id=7))

        cancel = {"market_id": MARKET, "open_orders_account": "oo-user", "client_order_id": 7}
        assert await repo.cancel_by_client_order_id(**cancel, slot=9) == 0
        assert await repo.cancel_by_client_order_id(**cancel, slot=10) == 1


# ============================================================================
# TradeRepository Tests
# ============================================================================


class TestTradeRepository:
    """Tests for TradeRepository."""

    async def test_insert_deduplicates_on_fill_key(self, async_session: AsyncSession) -> None:
        repo = TradeRepository(async_session)

        assert await repo.insert(_trade(price=100, quantity=5, timestamp=1)) == InsertOutcome.INSERTED
        assert (
            await repo.insert(_trade(price=100, quantity=5, timestamp=1))
            == InsertOutcome.ALREADY_PRESENT
        )
        assert (
            await repo.insert(_trade(price=100, quantity=5, timestamp=1, seq_num=1))
            == InsertOutcome.INSERTED
        )

        assert len(await repo.get_trades(MARKET)) == 2

    async def test_ordering(self, async_session: AsyncSession) -> None:
        repo = TradeRepository(async_session)
        for i, ts in enumerate((3000, 1000, 2000)):
            await repo.insert(_trade(price=100, quantity=1, timestamp=ts, signature=f"s{i}"))

        newest = await repo.get_trades(MARKET)
        oldest = await repo.get_trades(MARKET, order="asc", limit=2)

        assert [t.timestamp for t in newest] == [3000, 2000, 1000]
        assert [t.timestamp for t in oldest] == [1000, 2000]

    async def test_user_trades_as_maker_or_taker(self, async_session: AsyncSession) -> None:
        repo = TradeRepository(async_session)
        await repo.insert(_trade(price=1, quantity=1, timestamp=1, signature="a"))
        await repo.insert(_trade(price=1, quantity=1, timestamp=2, signature="b", maker=USER, taker="x"))
        await repo.insert(_trade(price=1, quantity=1, timestamp=3, signature="c", maker="x", taker="y"))

        assert {t.signature for t in await repo.get_user_trades(USER)} == {"a", "b"}

    async def test_24h_volume(self, async_session: AsyncSession) -> None:
        repo = TradeRepository(async_session)
        now = 10 * DAY_MS
        await repo.insert(_trade(price=100, quantity=5, timestamp=now - 1000, signature="a"))
        await repo.insert(_trade(price=200, quantity=2, timestamp=now - 2000, signature="b", maker=USER, taker="x"))
        await repo.insert(_trade(price=999, quantity=9, timestamp=now - DAY_MS - 1, signature="old"))

        assert await repo.get_user_24h_volume(USER, now_ms=now) == 900
        assert await repo.get_user_24h_volume("nobody", now_ms=now) == 0

    async def test_claim_unattributed_fills(self, async_session: AsyncSession) -> None:
        repo = TradeRepository(async_session)
        order = replace(_order(1, side="ask", price=100, quantity=10), slot=5, client_order_id=7)
        maker_side = {"maker_open_orders_account": "oo-user", "maker_side": "ask"}

        def fill(signature: str, quantity: int, **changes) -> TradeDTO:
            trade = _trade(price=100, quantity=quantity, timestamp=1, signature=signature)
            fields = {"slot": 6, "maker_client_order_id": 7, **maker_side, **changes}
            return replace(trade, **fields)

        await repo.insert(fill("a", 4))
        await repo.insert(fill("b", 4))
        await repo.insert(fill("c", 4))
        await repo.insert(fill("wrong-price", 4, price=101))
        await repo.insert(fill("wrong-client", 4, maker_client_order_id=8))
        await repo.insert(fill("before-order", 4, slot=4))
        await repo.insert(fill("claimed", 4, maker_order_id=99))

        assert await repo.claim_unattributed_fills(order) == 10
        assert await repo.claim_unattributed_fills(order) == 0

        trades = await repo.get_trades(MARKET, limit=20)
        assert {t.signature for t in trades if t.maker_order_id == 1} == {"a", "b", "c"}

    async def test_resolve_owner(self, async_session: AsyncSession) -> None:
        repo = TradeRepository(async_session)
        await repo.insert(_trade(price=1, quantity=1, timestamp=1, signature="a", maker="oo-user"))
        await repo.insert(_trade(price=1, quantity=1, timestamp=2, signature="b", taker="oo-user"))

        updated = await repo.resolve_owner(
            market_id=MARKET, open_orders_account="oo-user", owner="wallet-owner"
        )

        assert updated == 2
        assert {t.signature for t in await repo.get_user_trades("wallet-owner")} == {"a", "b"}


# ============================================================================
# EventRepository Tests
# ============================================================================


class TestEventRepository:
    """Tests for EventRepository."""

    async def test_duplicate_events_are_ignored(self, async_session: AsyncSession) -> None:
        repo = EventRepository(async_session)
        event = EventDTO(event_type="PlaceOrder", signature="sig", slot=5, timestamp=1000)

        assert await repo.insert(event) == InsertOutcome.INSERTED
        assert await repo.insert(event) == InsertOutcome.ALREADY_PRESENT
        assert (
            await repo.insert(EventDTO(event_type="Fill", signature="sig", slot=5, timestamp=1000))
            == InsertOutcome.INSERTED
        )

        assert await repo.count() == 2
        assert [e.event_type for e in await repo.list_for_signature("sig")] == ["PlaceOrder", "Fill"]


# ============================================================================
# CancelRepository Tests
# ============================================================================


def _cancel(kind: str, target: int, *, slot: int = 5, signature: str = "sig-cancel") -> CancelDTO:
    return CancelDTO(
        market_id=MARKET,
        kind=kind,
        target=target,
        signature=signature,
        slot=slot,
        timestamp=5000,
        open_orders_account="oo-user" if kind == CANCEL_BY_CLIENT_ORDER_ID else None,
    )


class TestCancelRepository:
    """Tests for CancelRepository."""

    async def test_duplicate_cancels_are_ignored(self, async_session: AsyncSession) -> None:
        repo = CancelRepository(async_session)

        assert await repo.insert(_cancel(CANCEL_BY_ORDER_ID, 1)) == InsertOutcome.INSERTED
        assert await repo.insert(_cancel(CANCEL_BY_ORDER_ID, 1)) == InsertOutcome.ALREADY_PRESENT
        assert await repo.insert(_cancel(CANCEL_BY_ORDER_ID, 2)) == InsertOutcome.INSERTED

    async def test_has_cancel_for_order_id(self, async_session: AsyncSession) -> None:
        repo = CancelRepository(async_session)
        await repo.insert(_cancel(CANCEL_BY_ORDER_ID, 1))

        assert await repo.has_cancel_for(_order(1))
        assert not await repo.has_cancel_for(_order(2))
        assert not await repo.has_cancel_for(_order(1, market_id=OTHER_MARKET))

    async def test_has_cancel_for_client_order_id(self, async_session: AsyncSession) -> None:
        repo = CancelRepository(async_session)
        await repo.insert(_cancel(CANCEL_BY_CLIENT_ORDER_ID, 7))

        assert await repo.has_cancel_for(replace(_order(1), client_order_id=7))
        assert not await repo.has_cancel_for(replace(_order(1), client_order_id=8))
        assert not await repo.has_cancel_for(replace(_order(1), client_order_id=7, open_orders_account="oo-x"))

    async def test_cancel_before_order_does_not_apply(self, async_session: AsyncSession) -> None:
        repo = CancelRepository(async_session)
        await repo.insert(_cancel(CANCEL_BY_CLIENT_ORDER_ID, 7, slot=5))

        assert not await repo.has_cancel_for(replace(_order(1), client_order_id=7, slot=6))
