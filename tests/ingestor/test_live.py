"""Tests for the live consumer and ingestion counters."""

from collections.abc import AsyncIterator, Iterable
from unittest.mock import AsyncMock, MagicMock

import pytest

from openbook_indexer.ingestor.live import IngestionCounters, LiveConsumer
from openbook_indexer.ingestor.log_stream import StreamClosedError
from openbook_indexer.ingestor.models import LogNotification
from openbook_indexer.ingestor.router import EventRouter
from openbook_indexer.ingestor.rpc import RpcRequestError

PLACE_ORDER_LOGS = ("Program log: Instruction: PlaceOrder",)


def _notification(signature: str, slot: int, *, err: object = None, logs=PLACE_ORDER_LOGS) -> LogNotification:
    return LogNotification(signature=signature, slot=slot, logs=tuple(logs), err=err)


async def _stream(items: Iterable[LogNotification]) -> AsyncIterator[LogNotification]:
    for item in items:
        yield item


@pytest.fixture
def mock_router() -> MagicMock:
    router = MagicMock(spec=EventRouter)
    router.handle_transaction = AsyncMock(return_value=1)
    return router


@pytest.fixture
def mock_rpc(place_order_tx, pubkey) -> MagicMock:
    rpc = MagicMock()
    rpc.get_transaction = AsyncMock(return_value=place_order_tx(user=pubkey(1), market=pubkey(2)))
    return rpc


class TestIngestionCounters:
    def test_starts_at_zero(self) -> None:
        snapshot = IngestionCounters().snapshot()

        assert snapshot.events_processed == 0
        assert snapshot.blocks_indexed == 0
        assert snapshot.current_slot == 0
        assert snapshot.errors == 0

    def test_record(self) -> None:
        counters = IngestionCounters()
        counters.record_transaction(3)
        counters.record_transaction(0)
        counters.record_block(10)
        counters.record_block(8)
        counters.record_error()

        snapshot = counters.snapshot()
        assert snapshot.transactions_processed == 2
        assert snapshot.events_processed == 3
        assert snapshot.blocks_indexed == 2
        assert snapshot.current_slot == 10
        assert snapshot.errors == 1

    def test_current_slot_never_decreases(self) -> None:
        counters = IngestionCounters()
        counters.set_current_slot(7)
        counters.set_current_slot(5)

        assert counters.current_slot == 7


class TestLiveConsumer:
    """Tests for LiveConsumer."""

    async def test_routes_notification(self, mock_rpc, mock_router) -> None:
        counters = IngestionCounters()
        consumer = LiveConsumer(mock_rpc, mock_router, counters)

        handled = await consumer.process(_notification("sig", 5))

        assert handled == 1
        mock_rpc.get_transaction.assert_awaited_once()
        assert counters.snapshot().events_processed == 1
        assert counters.current_slot == 5

    async def test_skips_failed_transactions(self, mock_rpc, mock_router) -> None:
        consumer = LiveConsumer(mock_rpc, mock_router, IngestionCounters())

        assert await consumer.process(_notification("sig", 5, err={"Custom": 1})) == 0
        mock_rpc.get_transaction.assert_not_awaited()

    async def test_skips_unclassified_logs(self, mock_rpc, mock_router) -> None:
        consumer = LiveConsumer(mock_rpc, mock_router, IngestionCounters())

        assert await consumer.process(_notification("sig", 5, logs=["Program log: hello"])) == 0
        mock_rpc.get_transaction.assert_not_awaited()

    async def test_rpc_error_is_counted(self, mock_rpc, mock_router) -> None:
        mock_rpc.get_transaction = AsyncMock(side_effect=RpcRequestError("timeout"))
        counters = IngestionCounters()
        consumer = LiveConsumer(mock_rpc, mock_router, counters)

        assert await consumer.process(_notification("sig", 5)) == 0
        assert counters.snapshot().errors == 1
        mock_router.handle_transaction.assert_not_awaited()

    async def test_missing_transaction(self, mock_rpc, mock_router) -> None:
        mock_rpc.get_transaction = AsyncMock(return_value=None)
        counters = IngestionCounters()
        consumer = LiveConsumer(mock_rpc, mock_router, counters)

        assert await consumer.process(_notification("sig", 5)) == 0
        assert counters.snapshot().transactions_processed == 0

    async def test_routing_error_is_counted(self, mock_rpc, mock_router) -> None:
        mock_router.handle_transaction = AsyncMock(side_effect=RuntimeError("boom"))
        counters = IngestionCounters()
        consumer = LiveConsumer(mock_rpc, mock_router, counters)

        assert await consumer.process(_notification("sig", 5)) == 0
        assert counters.snapshot().errors == 1

    async def test_counts_blocks_on_slot_change(self, mock_rpc, mock_router) -> None:
        counters = IngestionCounters()
        consumer = LiveConsumer(mock_rpc, mock_router, counters)

        await consumer.process(_notification("a", 5))
        await consumer.process(_notification("b", 5))
        assert counters.snapshot().blocks_indexed == 0

        await consumer.process(_notification("c", 6))
        assert counters.snapshot().blocks_indexed == 1

    async def test_run_raises_when_stream_ends(self, mock_rpc, mock_router) -> None:
        counters = IngestionCounters()
        consumer = LiveConsumer(mock_rpc, mock_router, counters)

        with pytest.raises(StreamClosedError):
            await consumer.run(_stream([_notification("a", 5), _notification("b", 6)]))

        snapshot = counters.snapshot()
        assert snapshot.transactions_processed == 2
        assert snapshot.blocks_indexed == 2
        assert snapshot.current_slot == 6

    async def test_run_on_empty_stream(self, mock_rpc, mock_router) -> None:
        consumer = LiveConsumer(mock_rpc, mock_router, IngestionCounters())

        with pytest.raises(StreamClosedError, match="Stream ended unexpectedly"):
            await consumer.run(_stream([]))
