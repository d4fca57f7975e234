"""Ingestion supervisor for the OpenBook indexer.

This module provides the Pipeline class that wires the storage layer, RPC
client and log subscription together and runs the ingestion phases:

    market scan -> backfill -> live consumer (+ periodic stats reporter)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from openbook_indexer.config import Settings, get_settings, is_valid_pubkey
from openbook_indexer.ingestor.backfill import BackfillController, BackfillResult
from openbook_indexer.ingestor.live import IngestionCounters, LiveConsumer
from openbook_indexer.ingestor.log_stream import LogStreamError, LogSubscription, StreamClosedError
from openbook_indexer.ingestor.router import EventRouter
from openbook_indexer.ingestor.rpc import SolanaRpcClient, SolanaRpcError
from openbook_indexer.scan.market_scanner import MarketScanner
from openbook_indexer.storage.database import DatabaseManager
from openbook_indexer.storage.gateway import PersistenceGateway

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """Raised when a prerequisite of the indexer is unavailable at startup."""


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    markets_indexed: int = 0
    backfill: BackfillResult | None = None
    head_slot: int | None = None
    lag_slots: int | None = None
    last_error: str | None = None


class Pipeline:
    """Main orchestrator for the indexer.

    Startup validates the program id, the store and the RPC node, scans
    markets, backfills history and opens the log subscription. Any failure
    of a prerequisite raises :class:`StartupError` and leaves nothing running.

    Example:
        ```python
        from openbook_indexer.config import get_settings
        from openbook_indexer.pipeline import Pipeline

        pipeline = Pipeline(get_settings())
        await pipeline.run()  # returns only on error or stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        db_manager: DatabaseManager | None = None,
        rpc_client: SolanaRpcClient | None = None,
        log_subscription: LogSubscription | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            db_manager: Pre-built database manager (tests, embedding).
            rpc_client: Pre-built RPC client.
            log_subscription: Pre-built, not yet connected, log subscription.
        """
        self._settings = settings or get_settings()

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()
        self._counters = IngestionCounters()

        self._db_manager = db_manager
        self._rpc = rpc_client
        self._subscription = log_subscription
        self._gateway: PersistenceGateway | None = None
        self._router: EventRouter | None = None
        self._live: LiveConsumer | None = None

        self._stop_event: asyncio.Event | None = None
        self._live_task: asyncio.Task[None] | None = None
        self._stats_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def counters(self) -> IngestionCounters:
        return self._counters

    @property
    def gateway(self) -> PersistenceGateway | None:
        return self._gateway

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    async def start(self) -> None:
        """Run the startup phases and launch the live consumer.

        Raises:
            RuntimeError: If pipeline is already running.
            StartupError: If a prerequisite is unavailable.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")
        logger.debug("Settings: %s", self._settings.redacted_summary())

        try:
            await self._initialize_components()
            await self._run_startup_phases()
            await self._connect_subscription()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Validate prerequisites and build the ingestion components."""
        settings = self._settings
        program_id = settings.openbook.program_id
        if not is_valid_pubkey(program_id):
            raise StartupError(f"Invalid program id: {program_id!r}")

        if self._db_manager is None:
            self._db_manager = DatabaseManager(
                settings.database.url,
                pool_size=settings.database.pool_size,
                max_overflow=settings.database.max_overflow,
                echo=settings.database.echo,
            )
        try:
            await self._db_manager.ping()
        except Exception as e:
            raise StartupError(f"Database unreachable: {e}") from e
        logger.info("Database connection verified")

        if self._rpc is None:
            self._rpc = SolanaRpcClient(
                settings.solana.rpc_url,
                fallback_rpc_url=settings.solana.fallback_rpc_url,
                commitment=settings.solana.commitment,
                max_requests_per_second=settings.solana.max_requests_per_second,
                request_timeout_seconds=settings.solana.request_timeout_seconds,
            )
        try:
            head = await self._rpc.get_slot()
        except SolanaRpcError as e:
            raise StartupError(f"RPC node unreachable: {e}") from e
        self._stats.head_slot = head
        logger.info("RPC connection verified (slot %d)", head)

        if settings.database.create_schema:
            await self._db_manager.init_schema_async()

        self._gateway = PersistenceGateway(self._db_manager)
        self._router = EventRouter(self._gateway, program_id)
        self._live = LiveConsumer(
            self._rpc, self._router, self._counters, commitment=settings.solana.commitment
        )

    async def _run_startup_phases(self) -> None:
        """Market scan then backfill; failures here are logged, not fatal."""
        if self._rpc is None or self._gateway is None or self._router is None:
            raise RuntimeError("Pipeline components are not initialized")
        settings = self._settings
        program_id = settings.openbook.program_id

        if settings.scanner.enabled:
            scanner = MarketScanner(
                self._rpc,
                self._gateway,
                program_id,
                base_decimals=settings.scanner.base_decimals,
                quote_decimals=settings.scanner.quote_decimals,
            )
            try:
                result = await scanner.scan_markets()
                self._stats.markets_indexed = await scanner.index_markets(result.markets)
            except SolanaRpcError as e:
                logger.warning("Market scan failed: %s", e)

        if settings.backfill.enabled:
            controller = BackfillController(
                self._rpc,
                self._router,
                program_id,
                page_size=settings.backfill.page_size,
                tx_delay_seconds=settings.backfill.tx_delay_seconds,
                page_delay_seconds=settings.backfill.page_delay_seconds,
                max_concurrency=settings.backfill.max_concurrency,
                max_pages=settings.backfill.max_pages,
                commitment=settings.solana.commitment,
                counters=self._counters,
            )
            try:
                self._stats.backfill = await controller.run()
            except SolanaRpcError as e:
                logger.warning("Backfill aborted: %s", e)

    async def _connect_subscription(self) -> None:
        if self._subscription is None:
            self._subscription = LogSubscription(
                ws_url=self._settings.solana.ws_url,
                program_id=self._settings.openbook.program_id,
                commitment=self._settings.solana.commitment,
            )
        try:
            await self._subscription.connect()
        except LogStreamError as e:
            raise StartupError(f"Log subscription failed: {e}") from e

    async def _start_background_services(self) -> None:
        """Start the live consumer and the stats reporter."""
        logger.debug("Starting live consumer...")
        self._live_task = asyncio.create_task(self._run_live_consumer())
        logger.debug("Starting stats reporter...")
        self._stats_task = asyncio.create_task(self._run_stats_loop())

    async def _run_live_consumer(self) -> None:
        if self._live is None or self._subscription is None:
            raise RuntimeError("Live consumer is not initialized")
        try:
            await self._live.run(self._subscription.notifications())
        except StreamClosedError as e:
            logger.error("Live consumer stopped: %s", e)
            self._stats.last_error = str(e)
            raise

    async def _run_stats_loop(self) -> None:
        if not self._stop_event:
            return

        interval = self._settings.stats_interval_seconds
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                break
            except TimeoutError:
                pass
            await self.report_stats()

    async def report_stats(self) -> None:
        """Log counters and the lag behind the chain head."""
        snapshot = self._counters.snapshot()
        head: int | None = None
        if self._rpc is not None:
            try:
                head = await self._rpc.get_slot()
            except SolanaRpcError as e:
                logger.warning("Failed to fetch head slot: %s", e)
        if head is not None:
            self._stats.head_slot = head
            self._stats.lag_slots = head - snapshot.current_slot if snapshot.current_slot else None

        logger.info(
            "Stats: %d events, %d transactions, %d blocks, slot %d, lag %s slots, %d errors",
            snapshot.events_processed,
            snapshot.transactions_processed,
            snapshot.blocks_indexed,
            snapshot.current_slot,
            self._stats.lag_slots if self._stats.lag_slots is not None else "?",
            snapshot.errors,
        )

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        tasks = [t for t in (self._live_task, self._stats_task) if t is not None]
        for task in tasks:
            task.cancel()
        # finished tasks keep their outcome; gather collects it instead of re-raising
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.debug("Background task ended with %s", result)
        self._live_task = None
        self._stats_task = None

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._subscription:
            await self._subscription.close()
            self._subscription = None

        if self._rpc:
            await self._rpc.close()
            self._rpc = None

        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        logger.debug("Resources cleaned up")

    async def run(self) -> None:
        """Start the pipeline and run until the stream ends or stop() is called.

        Raises:
            StartupError: If startup fails.
            StreamClosedError: If the log subscription ends.
        """
        await self.start()
        if self._stop_event is None or self._live_task is None:
            raise RuntimeError("Pipeline did not start its live consumer")

        stop_waiter = asyncio.create_task(self._stop_event.wait())
        try:
            done, _ = await asyncio.wait(
                {self._live_task, stop_waiter}, return_when=asyncio.FIRST_COMPLETED
            )
            if self._live_task in done:
                self._live_task.result()
        except asyncio.CancelledError:
            pass
        finally:
            stop_waiter.cancel()
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
