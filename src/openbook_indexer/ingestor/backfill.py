"""Historical backfill over the program's signature history.

Pages through ``getSignaturesForAddress`` newest-first, fetching and routing
each successful transaction. Writes are idempotent and order-independent, so
walking history backwards, overlapping with the live consumer or re-running a
backfill all leave the same rows.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from openbook_indexer.ingestor.classifier import classify_log_lines
from openbook_indexer.ingestor.rpc import SolanaRpcError

if TYPE_CHECKING:
    from openbook_indexer.ingestor.live import IngestionCounters
    from openbook_indexer.ingestor.models import SignatureInfo
    from openbook_indexer.ingestor.router import EventRouter
    from openbook_indexer.ingestor.rpc import SolanaRpcClient

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_PAGE_SIZE = 100
DEFAULT_TX_DELAY_SECONDS = 0.01
DEFAULT_PAGE_DELAY_SECONDS = 0.1
DEFAULT_MAX_CONCURRENCY = 1


@dataclass(frozen=True)
class BackfillResult:
    transactions_processed: int
    events_processed: int
    pages: int
    failures: int
    elapsed_seconds: float

    @property
    def transactions_per_second(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.transactions_processed / self.elapsed_seconds


class BackfillController:
    """Drives one pass over the program's transaction history.

    Example:
        ```python
        controller = BackfillController(rpc, router, program_id)
        result = await controller.run()
        print(f"{result.transactions_processed} transactions backfilled")
        ```
    """

    def __init__(
        self,
        rpc: SolanaRpcClient,
        router: EventRouter,
        program_id: str,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        tx_delay_seconds: float = DEFAULT_TX_DELAY_SECONDS,
        page_delay_seconds: float = DEFAULT_PAGE_DELAY_SECONDS,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        max_pages: int | None = None,
        commitment: str | None = None,
        counters: IngestionCounters | None = None,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be positive")
        self._rpc = rpc
        self._router = router
        self._program_id = program_id
        self._page_size = page_size
        self._tx_delay = tx_delay_seconds
        self._page_delay = page_delay_seconds
        self._max_concurrency = max_concurrency
        self._max_pages = max_pages
        self._commitment = commitment
        self._counters = counters

        self._transactions = 0
        self._events = 0
        self._failures = 0

    async def run(self) -> BackfillResult:
        """Process pages until an empty one comes back or ``max_pages`` is hit.

        Per-transaction failures are logged and counted; RPC failures while
        listing signatures propagate.
        """
        started = time.monotonic()
        self._transactions = self._events = self._failures = 0
        before: str | None = None
        pages = 0

        logger.info("Starting backfill for program %s", self._program_id)
        while self._max_pages is None or pages < self._max_pages:
            page = await self._rpc.get_signatures_for_address(
                self._program_id,
                before=before,
                limit=self._page_size,
                commitment=self._commitment,
            )
            if not page:
                break
            pages += 1

            await self._process_page(page)
            before = page[-1].signature

            elapsed = time.monotonic() - started
            logger.info(
                "Backfill page %d: %d signatures, %d transactions total (%.1f tx/s)",
                pages,
                len(page),
                self._transactions,
                self._transactions / elapsed if elapsed > 0 else 0.0,
            )
            if self._page_delay > 0:
                await asyncio.sleep(self._page_delay)

        result = BackfillResult(
            transactions_processed=self._transactions,
            events_processed=self._events,
            pages=pages,
            failures=self._failures,
            elapsed_seconds=time.monotonic() - started,
        )
        logger.info(
            "Backfill complete: %d transactions, %d events, %d failures in %.1fs",
            result.transactions_processed,
            result.events_processed,
            result.failures,
            result.elapsed_seconds,
        )
        return result

    async def _process_page(self, page: list[SignatureInfo]) -> None:
        pending = [sig for sig in page if sig.err is None]
        skipped = len(page) - len(pending)
        if skipped:
            logger.debug("Skipping %d failed transactions", skipped)

        if self._max_concurrency == 1:
            for sig in pending:
                await self._process_signature(sig)
                if self._tx_delay > 0:
                    await asyncio.sleep(self._tx_delay)
            return

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def bounded(sig: SignatureInfo) -> None:
            async with semaphore:
                await self._process_signature(sig)
                if self._tx_delay > 0:
                    await asyncio.sleep(self._tx_delay)

        await asyncio.gather(*(bounded(sig) for sig in pending))

    async def _process_signature(self, sig: SignatureInfo) -> None:
        try:
            tx = await self._rpc.get_transaction(sig.signature, commitment=self._commitment)
        except SolanaRpcError as e:
            self._failures += 1
            logger.warning("Failed to fetch transaction %s: %s", sig.signature, e)
            return
        if tx is None:
            logger.debug("Transaction %s not available", sig.signature)
            return

        tags = classify_log_lines(tx.log_messages)
        if not tags:
            return

        timestamp = sig.timestamp_ms or tx.timestamp_ms or int(datetime.now(UTC).timestamp() * 1000)
        try:
            handled = await self._router.handle_transaction(tx, tags, timestamp=timestamp)
        except Exception as e:
            self._failures += 1
            logger.warning("Failed to route transaction %s: %s", sig.signature, e)
            return

        self._transactions += 1
        self._events += handled
        if self._counters is not None:
            self._counters.record_transaction(handled)
