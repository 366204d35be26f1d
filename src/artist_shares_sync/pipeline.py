"""Main pipeline orchestrator for the artist shares sync engine.

This module provides the Pipeline class that wires together the chain
client, the trade ledger, the candle aggregator, the snapshot computer and
the broadcast sink, and manages startup backfill and live subscriptions.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis

from artist_shares_sync.broadcast import BroadcastSink, NullBroadcastSink, RedisBroadcastSink
from artist_shares_sync.chain.client import ChainClient, UpstreamUnavailableError
from artist_shares_sync.chain.factory import ArtistSharesFactory
from artist_shares_sync.config import Settings, get_settings
from artist_shares_sync.financials.cache import SnapshotCache
from artist_shares_sync.financials.models import FallbackPolicy, FinancialSnapshot
from artist_shares_sync.financials.snapshot import FinancialSnapshotComputer, TraderVolumeService
from artist_shares_sync.ingestor.backfill import BackfillReport, TradeBackfiller
from artist_shares_sync.ingestor.subscriptions import EventSubscriptionManager
from artist_shares_sync.ledger.candles import CandleAggregator, Timeframe
from artist_shares_sync.ledger.trades import TradeLedger
from artist_shares_sync.registry import ContractRegistry
from artist_shares_sync.storage.database import DatabaseManager

if TYPE_CHECKING:
    from artist_shares_sync.storage.repos import CandleDTO

logger = logging.getLogger(__name__)


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
    backfill_completed: bool = False
    backfill_report: BackfillReport | None = None
    contracts_discovered: int = 0
    contracts_subscribed: int = 0
    last_error: str | None = None


class Pipeline:
    """Main pipeline orchestrator.

    Pipeline flow:
        Log streams -> Subscription Manager -> Trade Ledger -> Candles
        -> Snapshot cache invalidation/recompute -> Broadcast

    Startup clears cached snapshots, optionally wipes market data
    (DEV_MODE), registers contracts deployed by the factory (when
    CHAIN_FACTORY_ADDRESS is set), runs the historical backfill for at most
    BACKFILL_TIMEOUT_SECONDS and then subscribes every registered contract.
    A backfill still running at that point keeps going in the background;
    live candle updates for the artists it is loading stay held until their
    candles are rebuilt from the ledger.

    Example:
        ```python
        from artist_shares_sync.pipeline import Pipeline

        async with Pipeline() as pipeline:
            await pipeline.register_contract(7, "0x...")
            snapshot = await pipeline.compute_snapshot(7)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        db_manager: DatabaseManager | None = None,
        redis: Redis | None = None,
        chain_client: ChainClient | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, do not publish to broadcast channels.
            db_manager: Pre-built database manager (not disposed on stop).
            redis: Pre-built Redis client (not closed on stop).
            chain_client: Pre-built chain client (not closed on stop).
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        self._db_manager: DatabaseManager | None = db_manager
        self._redis: Redis | None = redis
        self._chain_client: ChainClient | None = chain_client
        self._owns_db = db_manager is None
        self._owns_redis = redis is None
        self._owns_chain = chain_client is None

        self._registry: ContractRegistry | None = None
        self._ledger: TradeLedger | None = None
        self._candles: CandleAggregator | None = None
        self._cache: SnapshotCache | None = None
        self._snapshots: FinancialSnapshotComputer | None = None
        self._trader_volumes: TraderVolumeService | None = None
        self._sink: BroadcastSink | None = None
        self._subscriptions: EventSubscriptionManager | None = None
        self._backfiller: TradeBackfiller | None = None

        self._stop_event: asyncio.Event | None = None
        self._backfill_task: asyncio.Task[BackfillReport] | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._state == PipelineState.RUNNING

    @property
    def subscriptions(self) -> EventSubscriptionManager:
        if self._subscriptions is None:
            raise RuntimeError("Pipeline is not started")
        return self._subscriptions

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._prepare_state()
            await self._sync_factory_contracts()
            await self._run_startup_backfill()
            self._stats.contracts_subscribed = await self.subscriptions.subscribe_all()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info(
                "Pipeline started (contracts=%d, dry_run=%s)",
                self._stats.contracts_subscribed,
                self._dry_run,
            )
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._stop_background_services()
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
        settings = self._settings

        if self._redis is None:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)

        if self._db_manager is None:
            logger.debug("Initializing database manager...")
            self._db_manager = DatabaseManager(settings.database.url)

        if self._chain_client is None:
            logger.debug("Initializing chain client...")
            self._chain_client = ChainClient(
                settings.chain.rpc_url,
                fallback_rpc_url=settings.chain.fallback_rpc_url,
                max_requests_per_second=settings.chain.max_requests_per_second,
                call_timeout_seconds=settings.chain.call_timeout_seconds,
                poa=settings.chain.poa,
            )

        fallback = FallbackPolicy.from_settings(settings.fallback)
        self._registry = ContractRegistry(self._db_manager)
        self._ledger = TradeLedger(self._db_manager)
        self._candles = CandleAggregator(self._db_manager)
        self._cache = SnapshotCache(
            self._redis,
            snapshot_ttl_seconds=settings.snapshot.cache_ttl_seconds,
            trader_volume_ttl_seconds=settings.snapshot.trader_volume_cache_ttl_seconds,
            key_prefix=settings.broadcast.channel_prefix,
        )
        self._snapshots = FinancialSnapshotComputer(
            client=self._chain_client,
            ledger=self._ledger,
            registry=self._registry,
            cache=self._cache,
            fallback=fallback,
            read_timeout_seconds=settings.chain.call_timeout_seconds,
        )
        self._trader_volumes = TraderVolumeService(ledger=self._ledger, cache=self._cache)

        if self._dry_run:
            self._sink = NullBroadcastSink()
        else:
            self._sink = RedisBroadcastSink(self._redis, channel_prefix=settings.broadcast.channel_prefix)

        self._subscriptions = EventSubscriptionManager(
            client=self._chain_client,
            registry=self._registry,
            ledger=self._ledger,
            candles=self._candles,
            snapshots=self._snapshots,
            trader_volumes=self._trader_volumes,
            sink=self._sink,
            fallback=fallback,
            poll_interval_seconds=settings.chain.poll_interval_seconds,
            chunk_size=settings.chain.logs_chunk_size_blocks,
            replay_blocks=settings.chain.stream_replay_blocks,
        )
        self._backfiller = TradeBackfiller(
            client=self._chain_client,
            registry=self._registry,
            ledger=self._ledger,
            manager=self._subscriptions,
            lookback_blocks=settings.backfill.lookback_blocks,
            chunk_size=settings.chain.logs_chunk_size_blocks,
        )

    async def _prepare_state(self) -> None:
        if self._cache is None or self._ledger is None:
            raise RuntimeError("Pipeline components are not initialized")
        removed = await self._cache.clear()
        logger.info("Cleared %d cached snapshot entries", removed)
        if self._settings.dev_mode:
            logger.warning("DEV_MODE enabled: wiping trades and candles")
            await self._ledger.reset()

    async def _sync_factory_contracts(self) -> None:
        factory_address = self._settings.chain.factory_address
        if not factory_address:
            logger.debug("No factory configured, skipping contract discovery")
            return
        if self._registry is None or self._chain_client is None:
            raise RuntimeError("Pipeline components are not initialized")

        factory = ArtistSharesFactory(self._chain_client, factory_address)
        try:
            synced = await self._registry.sync_from_factory(
                factory,
                from_block=self._settings.chain.factory_from_block,
            )
        except UpstreamUnavailableError as e:
            logger.warning("Factory contract discovery failed: %s", e)
            return
        except Exception as e:
            logger.error("Factory contract discovery failed: %s", e, exc_info=True)
            return
        self._stats.contracts_discovered = synced

    async def _run_startup_backfill(self) -> None:
        if not self._settings.backfill.enabled or self._backfiller is None:
            logger.info("Startup backfill disabled")
            return

        # Holds must be in place before any contract is subscribed.
        plan = await self._backfiller.plan()
        self._backfill_task = asyncio.create_task(self._backfiller.run(plan), name="startup-backfill")
        self._backfill_task.add_done_callback(self._on_backfill_done)
        timeout = self._settings.backfill.timeout_seconds
        done, _ = await asyncio.wait({self._backfill_task}, timeout=timeout)
        if not done:
            logger.warning(
                "Backfill still running after %.0fs; subscribing now and continuing in background",
                timeout,
            )

    def _on_backfill_done(self, task: asyncio.Task[BackfillReport]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._stats.last_error = str(error)
            logger.error("Startup backfill failed: %s", error)
            return
        self._stats.backfill_completed = True
        self._stats.backfill_report = task.result()

    async def _stop_background_services(self) -> None:
        if self._subscriptions:
            logger.debug("Stopping contract subscriptions...")
            await self._subscriptions.stop()

        if self._backfill_task:
            if not self._backfill_task.done():
                self._backfill_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._backfill_task
            self._backfill_task = None

    async def _cleanup(self) -> None:
        if self._chain_client and self._owns_chain:
            await self._chain_client.aclose()
            self._chain_client = None

        if self._db_manager and self._owns_db:
            await self._db_manager.dispose_async()
            self._db_manager = None

        if self._redis and self._owns_redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    def _require_running(self) -> None:
        if self._state not in (PipelineState.RUNNING, PipelineState.STARTING):
            raise RuntimeError(f"Pipeline is not running (state={self._state})")

    async def register_contract(self, artist_id: int, contract_address: str, *, subscribe: bool = True) -> bool:
        """Record an artist's contract and optionally start ingesting it.

        Returns:
            True if a new subscription was opened.
        """
        self._require_running()
        if self._registry is None:
            raise RuntimeError("Pipeline is not started")
        await self._registry.register(artist_id, contract_address)
        if not subscribe:
            return False
        return await self.subscriptions.subscribe(contract_address)

    async def subscribe(self, contract_address: str) -> bool:
        self._require_running()
        return await self.subscriptions.subscribe(contract_address)

    async def compute_snapshot(self, artist_id: int) -> FinancialSnapshot:
        self._require_running()
        if self._snapshots is None:
            raise RuntimeError("Pipeline is not started")
        return await self._snapshots.compute(artist_id)

    async def candles(
        self,
        artist_id: int,
        timeframe: Timeframe | str,
        *,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[CandleDTO]:
        self._require_running()
        if self._candles is None:
            raise RuntimeError("Pipeline is not started")
        return await self._candles.candles(artist_id, timeframe, since=since, limit=limit)

    async def trade_volume_24h(self, address: str) -> Decimal:
        self._require_running()
        if self._trader_volumes is None:
            raise RuntimeError("Pipeline is not started")
        return await self._trader_volumes.trade_volume_24h(address)

    async def run(self) -> None:
        """Start the pipeline and run until stop() is called or the task is cancelled."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    def request_stop(self) -> None:
        if self._stop_event:
            self._stop_event.set()

    async def __aenter__(self) -> Pipeline:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()
