"""Per-contract event subscriptions and trade ingestion.

Every subscribed contract gets a log stream and a single consumer task, so
its events are handled strictly in chain order. Contracts are independent:
a failure while setting up or processing one never affects another.

For each buy/sell event:

1. drop it if the tx hash was already seen here or is already recorded
2. normalize it into a Trade (ETH/USD from the contract oracle or fallback)
3. record it in the ledger
4. invalidate cached snapshot and trader volume
5. fold it into the candles, unless they are held for a running backfill
6. publish the trade and the recomputed snapshot
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING

from artist_shares_sync.chain.contract import ShareContract
from artist_shares_sync.chain.events import (
    ContractEvent,
    CurveCompletedEvent,
    SellLimitUpdatedEvent,
    TradeEvent,
)
from artist_shares_sync.financials.snapshot import read_reserve_usd_rate
from artist_shares_sync.ingestor.log_stream import (
    DEFAULT_CHUNK_SIZE_BLOCKS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    ContractLogStream,
)
from artist_shares_sync.ingestor.models import Trade
from artist_shares_sync.ledger.trades import DuplicateTradeError
from artist_shares_sync.numeric import from_price_units, from_wei, normalize_address

if TYPE_CHECKING:
    from artist_shares_sync.broadcast import BroadcastSink
    from artist_shares_sync.chain.client import ChainClient
    from artist_shares_sync.financials.models import FallbackPolicy
    from artist_shares_sync.financials.snapshot import FinancialSnapshotComputer, TraderVolumeService
    from artist_shares_sync.ledger.candles import CandleAggregator
    from artist_shares_sync.ledger.trades import TradeLedger
    from artist_shares_sync.registry import ContractRegistry

logger = logging.getLogger(__name__)

DEFAULT_SEEN_CAPACITY = 100_000


@dataclass
class SubscriptionStats:
    events_received: int = 0
    trades_recorded: int = 0
    duplicates_skipped: int = 0
    errors: int = 0


class SeenHashes:
    """Bounded insertion-ordered set of recently processed tx hashes."""

    def __init__(self, capacity: int = DEFAULT_SEEN_CAPACITY) -> None:
        self._capacity = capacity
        self._items: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, tx_hash: object) -> bool:
        return isinstance(tx_hash, str) and tx_hash.lower() in self._items

    def __len__(self) -> int:
        return len(self._items)

    def add(self, tx_hash: str) -> None:
        key = tx_hash.lower()
        self._items[key] = None
        self._items.move_to_end(key)
        while len(self._items) > self._capacity:
            self._items.popitem(last=False)

    def clear(self) -> None:
        self._items.clear()


@dataclass
class _Subscription:
    artist_id: int
    stream: ContractLogStream
    consumer: asyncio.Task[None]


class EventSubscriptionManager:
    """Owns the set of subscribed contracts and the ingestion path."""

    def __init__(
        self,
        *,
        client: ChainClient,
        registry: ContractRegistry,
        ledger: TradeLedger,
        candles: CandleAggregator,
        snapshots: FinancialSnapshotComputer,
        trader_volumes: TraderVolumeService,
        sink: BroadcastSink,
        fallback: FallbackPolicy,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        chunk_size: int = DEFAULT_CHUNK_SIZE_BLOCKS,
        replay_blocks: int = 0,
        seen_capacity: int = DEFAULT_SEEN_CAPACITY,
    ) -> None:
        self._client = client
        self._registry = registry
        self._ledger = ledger
        self._candles = candles
        self._snapshots = snapshots
        self._trader_volumes = trader_volumes
        self._sink = sink
        self._fallback = fallback
        self._poll_interval = poll_interval_seconds
        self._chunk_size = chunk_size
        self._replay_blocks = replay_blocks

        self._lock = asyncio.Lock()
        self._subscriptions: dict[str, _Subscription] = {}
        self._seen = SeenHashes(seen_capacity)
        self._stats = SubscriptionStats()
        # Recording a trade and folding it into candles happen under the
        # artist's lock; artists in _candle_holds are recorded only.
        self._artist_locks: dict[int, asyncio.Lock] = {}
        self._candle_holds: set[int] = set()

    @property
    def stats(self) -> SubscriptionStats:
        return self._stats

    @property
    def subscribed(self) -> frozenset[str]:
        return frozenset(self._subscriptions)

    @property
    def seen(self) -> SeenHashes:
        return self._seen

    def stream_for(self, address: str) -> ContractLogStream | None:
        sub = self._subscriptions.get(address.lower())
        return sub.stream if sub else None

    def _artist_lock(self, artist_id: int) -> asyncio.Lock:
        lock = self._artist_locks.get(artist_id)
        if lock is None:
            lock = self._artist_locks[artist_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Candle holds
    # ------------------------------------------------------------------

    def is_candles_held(self, artist_id: int) -> bool:
        return artist_id in self._candle_holds

    def hold_candles(self, artist_id: int) -> None:
        """Record the artist's trades without touching candles until released.

        Used while older trades are still being backfilled, since candles
        are only correct when trades are folded in time order.
        """
        self._candle_holds.add(artist_id)

    async def release_candles(self, artist_id: int) -> int:
        """Rebuild the artist's candles from the ledger and resume live updates.

        Returns:
            Number of timeframes rebuilt.
        """
        async with self._artist_lock(artist_id):
            try:
                return await self._candles.rebuild(artist_id)
            finally:
                self._candle_holds.discard(artist_id)

    async def fill_missing_candles(self, artist_id: int) -> int:
        """Build candles from the ledger for timeframes that have none."""
        async with self._artist_lock(artist_id):
            return await self._candles.backfill(artist_id)

    # ------------------------------------------------------------------
    # Subscription lifecycle
    # ------------------------------------------------------------------

    async def subscribe(self, contract_address: str) -> bool:
        """Start ingesting a contract's events.

        Returns:
            True if a new subscription was opened, False if the contract was
            already subscribed or has no registered artist.

        Raises:
            InvalidAddressError: If the address is malformed.
        """
        address = normalize_address(contract_address)
        async with self._lock:
            if address in self._subscriptions:
                logger.debug("Already subscribed to %s", address)
                return False

            artist_id = await self._registry.artist_for(address)
            if artist_id is None:
                logger.warning("No artist registered for contract %s, not subscribing", address)
                return False

            stream = ContractLogStream(
                self._client,
                address,
                replay_blocks=self._replay_blocks,
                poll_interval_seconds=self._poll_interval,
                chunk_size=self._chunk_size,
            )
            consumer = asyncio.create_task(
                self._consume(artist_id, stream),
                name=f"ingest:{address}",
            )
            stream.start()
            self._subscriptions[address] = _Subscription(artist_id=artist_id, stream=stream, consumer=consumer)

        logger.info("Subscribed to contract %s (artist=%s)", address, artist_id)
        return True

    async def subscribe_all(self) -> int:
        """Subscribe every registered contract.

        Returns:
            Number of new subscriptions.
        """
        opened = 0
        for entry in await self._registry.all():
            try:
                if await self.subscribe(entry.contract_address):
                    opened += 1
            except Exception as e:
                logger.error(
                    "Failed to subscribe contract %s (artist=%s): %s",
                    entry.contract_address,
                    entry.artist_id,
                    e,
                )
        return opened

    async def stop(self) -> None:
        """Cancel every stream and consumer."""
        async with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        for sub in subscriptions:
            await sub.stream.stop()
            sub.consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sub.consumer
        if subscriptions:
            logger.info("Stopped %d contract subscriptions", len(subscriptions))

    async def _consume(self, artist_id: int, stream: ContractLogStream) -> None:
        while True:
            event = await stream.queue.get()
            try:
                await self.handle_event(artist_id, event)
            finally:
                stream.queue.task_done()

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def handle_event(self, artist_id: int, event: ContractEvent) -> None:
        """Process one decoded event; failures are logged and counted."""
        self._stats.events_received += 1
        try:
            if isinstance(event, TradeEvent):
                await self.ingest_trade_event(artist_id, event)
            elif isinstance(event, SellLimitUpdatedEvent):
                logger.info(
                    "Daily sell limit updated artist=%s limit_usd=%s",
                    artist_id,
                    from_price_units(event.new_limit_raw),
                )
                await self._refresh_snapshot(artist_id)
            elif isinstance(event, CurveCompletedEvent):
                logger.info(
                    "Curve completed artist=%s eth_liquidity=%s token_liquidity=%s",
                    artist_id,
                    from_wei(event.eth_liquidity_raw),
                    from_wei(event.token_liquidity_raw),
                )
                await self._refresh_snapshot(artist_id)
                await self._sink.publish_curve_completed(
                    artist_id,
                    {
                        "artistId": artist_id,
                        "contractAddress": event.position.contract_address,
                        "ethLiquidity": str(from_wei(event.eth_liquidity_raw)),
                        "tokenLiquidity": str(from_wei(event.token_liquidity_raw)),
                        "txHash": event.position.tx_hash,
                        "message": "Bonding curve completed",
                    },
                )
        except Exception as e:
            self._stats.errors += 1
            logger.error(
                "Failed to process event artist=%s tx=%s: %s",
                artist_id,
                event.position.tx_hash,
                e,
                exc_info=True,
            )

    async def ingest_trade_event(
        self,
        artist_id: int,
        event: TradeEvent,
        *,
        broadcast: bool = True,
    ) -> Trade | None:
        """Normalize, record and fan out one trade event.

        Returns:
            The recorded trade, or None if it was a duplicate.
        """
        tx_hash = event.position.tx_hash.lower()
        if tx_hash in self._seen:
            self._stats.duplicates_skipped += 1
            return None
        if await self._ledger.has_trade(tx_hash):
            self._seen.add(tx_hash)
            self._stats.duplicates_skipped += 1
            return None

        contract = ShareContract(self._client, event.position.contract_address)
        rate = await read_reserve_usd_rate(contract, self._fallback)
        trade = Trade.from_event(event, artist_id=artist_id, eth_usd_rate=rate)

        async with self._artist_lock(artist_id):
            try:
                await self._ledger.record_trade(trade)
            except DuplicateTradeError:
                logger.debug("Trade %s recorded concurrently, skipping", tx_hash)
                self._seen.add(tx_hash)
                self._stats.duplicates_skipped += 1
                return None
            self._seen.add(tx_hash)
            self._stats.trades_recorded += 1

            await self._snapshots.invalidate(artist_id)
            await self._trader_volumes.invalidate(trade.trader_address)
            if artist_id in self._candle_holds:
                logger.debug("Candles held for artist=%s, deferring tx=%s", artist_id, tx_hash)
            else:
                await self._candles.apply_trade(trade)

        if broadcast:
            await self._sink.publish_trade(artist_id, trade)
            snapshot = await self._snapshots.recompute(artist_id)
            await self._sink.publish_snapshot(artist_id, snapshot)

        logger.info(
            "Ingested %s artist=%s tx=%s amount=%s amount_usd=%s",
            trade.side.value,
            artist_id,
            tx_hash,
            trade.amount,
            trade.amount_usd,
        )
        return trade

    async def _refresh_snapshot(self, artist_id: int) -> None:
        await self._snapshots.invalidate(artist_id)
        snapshot = await self._snapshots.recompute(artist_id)
        await self._sink.publish_snapshot(artist_id, snapshot)
