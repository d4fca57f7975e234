"""Live consumer for the program's log subscription."""

from __future__ import annotations

import logging
import threading
from collections.abc import AsyncIterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from openbook_indexer.ingestor.classifier import classify_log_lines
from openbook_indexer.ingestor.log_stream import StreamClosedError
from openbook_indexer.ingestor.rpc import SolanaRpcError

if TYPE_CHECKING:
    from openbook_indexer.ingestor.models import LogNotification
    from openbook_indexer.ingestor.router import EventRouter
    from openbook_indexer.ingestor.rpc import SolanaRpcClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CountersSnapshot:
    events_processed: int
    blocks_indexed: int
    current_slot: int
    transactions_processed: int
    errors: int


class IngestionCounters:
    """Throughput counters shared by the ingest loops and the stats reporter.

    Updates and reads take a lock, so the reporter can sample from another
    task or thread without tearing.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events_processed = 0
        self._blocks_indexed = 0
        self._current_slot = 0
        self._transactions_processed = 0
        self._errors = 0

    def record_transaction(self, events: int) -> None:
        with self._lock:
            self._transactions_processed += 1
            self._events_processed += events

    def record_block(self, slot: int) -> None:
        with self._lock:
            self._blocks_indexed += 1
            self._current_slot = max(self._current_slot, slot)

    def set_current_slot(self, slot: int) -> None:
        with self._lock:
            self._current_slot = max(self._current_slot, slot)

    def record_error(self) -> None:
        with self._lock:
            self._errors += 1

    @property
    def current_slot(self) -> int:
        with self._lock:
            return self._current_slot

    def snapshot(self) -> CountersSnapshot:
        with self._lock:
            return CountersSnapshot(
                events_processed=self._events_processed,
                blocks_indexed=self._blocks_indexed,
                current_slot=self._current_slot,
                transactions_processed=self._transactions_processed,
                errors=self._errors,
            )


class LiveConsumer:
    """Classifies and routes every log notification of the subscription.

    Example:
        ```python
        consumer = LiveConsumer(rpc, router, counters)
        await consumer.run(subscription.notifications())
        ```
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        router: EventRouter,
        counters: IngestionCounters,
        *,
        commitment: str | None = None,
    ) -> None:
        self._rpc = rpc
        self._router = router
        self._counters = counters
        self._commitment = commitment
        self._last_slot: int | None = None
        self._slot_events = 0

    @property
    def counters(self) -> IngestionCounters:
        return self._counters

    async def run(self, notifications: AsyncIterable[LogNotification]) -> None:
        """Consume until the stream ends.

        Raises:
            StreamClosedError: Always, once the upstream stream stops
                yielding. The feed is unbounded, so running out is not a
                normal exit.
        """
        async for notification in notifications:
            await self.process(notification)
        self._finish_slot()
        raise StreamClosedError("Stream ended unexpectedly")

    def _finish_slot(self) -> None:
        if self._last_slot is None:
            return
        self._counters.record_block(self._last_slot)
        if self._slot_events:
            logger.info("Slot %d: %d events", self._last_slot, self._slot_events)
        self._slot_events = 0

    async def process(self, notification: LogNotification) -> int:
        """Handle one notification and return the number of events routed."""
        if self._last_slot is not None and notification.slot != self._last_slot:
            self._finish_slot()
        self._last_slot = notification.slot
        self._counters.set_current_slot(notification.slot)

        if notification.err is not None:
            logger.debug("Skipping failed transaction %s", notification.signature)
            return 0

        tags = classify_log_lines(notification.logs)
        if not tags:
            return 0

        try:
            tx = await self._rpc.get_transaction(notification.signature, commitment=self._commitment)
        except SolanaRpcError as e:
            self._counters.record_error()
            logger.warning("Failed to fetch transaction %s: %s", notification.signature, e)
            return 0
        if tx is None:
            logger.warning("Transaction %s not found", notification.signature)
            return 0

        timestamp = tx.timestamp_ms or int(datetime.now(UTC).timestamp() * 1000)
        try:
            handled = await self._router.handle_transaction(tx, tags, timestamp=timestamp)
        except Exception as e:
            self._counters.record_error()
            logger.warning("Failed to route transaction %s: %s", notification.signature, e)
            return 0

        self._counters.record_transaction(handled)
        self._slot_events += handled
        return handled
