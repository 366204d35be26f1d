"""Historical trade backfill at startup.

Contracts whose artist has no recorded trades are scanned over a bounded
block window. Events go through the same dedup and normalization path as
live ingestion (without broadcasting). Live candle updates for those
artists are held while their history is loaded and the candles are rebuilt
from the ledger afterwards, so late backfilled trades never land after
newer live ones. Artists that already have trades only get candles for
timeframes that have none.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from artist_shares_sync.chain.abi import TRADE_TOPICS
from artist_shares_sync.chain.client import UpstreamUnavailableError
from artist_shares_sync.chain.events import TradeEvent
from artist_shares_sync.ingestor.log_stream import DEFAULT_CHUNK_SIZE_BLOCKS, fetch_events

if TYPE_CHECKING:
    from artist_shares_sync.chain.client import ChainClient
    from artist_shares_sync.ingestor.subscriptions import EventSubscriptionManager
    from artist_shares_sync.ledger.trades import TradeLedger
    from artist_shares_sync.registry import ContractRegistry
    from artist_shares_sync.storage.repos import ArtistContractDTO

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_BLOCKS = 5760 * 30


@dataclass
class BackfillReport:
    contracts_scanned: int = 0
    contracts_skipped: int = 0
    trades_recorded: int = 0
    candle_timeframes_rebuilt: int = 0
    failed_contracts: list[str] = field(default_factory=list)


@dataclass
class BackfillPlan:
    """Registered contracts split by whether their history must be scanned."""

    to_scan: list[ArtistContractDTO] = field(default_factory=list)
    up_to_date: list[ArtistContractDTO] = field(default_factory=list)


class TradeBackfiller:
    """Backfills trades and candles for registered contracts."""

    def __init__(
        self,
        *,
        client: ChainClient,
        registry: ContractRegistry,
        ledger: TradeLedger,
        manager: EventSubscriptionManager,
        lookback_blocks: int = DEFAULT_LOOKBACK_BLOCKS,
        chunk_size: int = DEFAULT_CHUNK_SIZE_BLOCKS,
    ) -> None:
        self._client = client
        self._registry = registry
        self._ledger = ledger
        self._manager = manager
        self._lookback_blocks = lookback_blocks
        self._chunk_size = chunk_size

    async def plan(self) -> BackfillPlan:
        """Decide which contracts to scan and hold their live candle updates.

        Must complete before the contracts are subscribed.
        """
        plan = BackfillPlan()
        for entry in await self._registry.all():
            try:
                has_trades = await self._ledger.trade_count(entry.artist_id) > 0
            except Exception as e:
                logger.error("Could not plan backfill for artist=%s: %s", entry.artist_id, e)
                continue
            if has_trades:
                plan.up_to_date.append(entry)
            else:
                plan.to_scan.append(entry)
                self._manager.hold_candles(entry.artist_id)
        return plan

    async def backfill_contract(self, artist_id: int, address: str, *, head: int) -> int:
        """Scan one contract's recent history.

        Returns:
            Number of trades recorded.
        """
        from_block = max(0, head - self._lookback_blocks)
        events = await fetch_events(
            self._client,
            address,
            from_block=from_block,
            to_block=head,
            chunk_size=self._chunk_size,
            topics=TRADE_TOPICS,
        )
        recorded = 0
        for event in events:
            if not isinstance(event, TradeEvent):
                continue
            trade = await self._manager.ingest_trade_event(artist_id, event, broadcast=False)
            if trade is not None:
                recorded += 1
        logger.info(
            "Backfilled artist=%s contract=%s blocks=%d..%d events=%d recorded=%d",
            artist_id,
            address,
            from_block,
            head,
            len(events),
            recorded,
        )
        return recorded

    async def run(self, plan: BackfillPlan | None = None) -> BackfillReport:
        report = BackfillReport()
        if plan is None:
            plan = await self.plan()
        if not plan.to_scan and not plan.up_to_date:
            logger.info("No registered contracts to backfill")
            return report

        for entry in plan.up_to_date:
            report.contracts_skipped += 1
            try:
                report.candle_timeframes_rebuilt += await self._manager.fill_missing_candles(entry.artist_id)
            except Exception as e:
                logger.error("Candle backfill failed for artist=%s: %s", entry.artist_id, e)

        head: int | None = None
        for entry in plan.to_scan:
            try:
                if head is None:
                    head = await self._client.get_block_number()
                report.trades_recorded += await self.backfill_contract(
                    entry.artist_id, entry.contract_address, head=head
                )
                report.contracts_scanned += 1
            except UpstreamUnavailableError as e:
                report.failed_contracts.append(entry.contract_address)
                logger.warning("Backfill failed for contract %s: %s", entry.contract_address, e)
            except Exception as e:
                report.failed_contracts.append(entry.contract_address)
                logger.error("Backfill failed for contract %s: %s", entry.contract_address, e, exc_info=True)

            try:
                report.candle_timeframes_rebuilt += await self._manager.release_candles(entry.artist_id)
            except Exception as e:
                logger.error("Candle rebuild failed for artist=%s: %s", entry.artist_id, e)

        logger.info(
            "Backfill complete: scanned=%d skipped=%d trades=%d candle_timeframes=%d failed=%d",
            report.contracts_scanned,
            report.contracts_skipped,
            report.trades_recorded,
            report.candle_timeframes_rebuilt,
            len(report.failed_contracts),
        )
        return report
