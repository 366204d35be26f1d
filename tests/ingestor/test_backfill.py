"""Tests for the startup trade backfill."""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from artist_shares_sync.chain.abi import SHARES_BOUGHT_TOPIC, SHARES_SOLD_TOPIC, TRADE_TOPICS
from artist_shares_sync.chain.client import UpstreamUnavailableError
from artist_shares_sync.chain.events import LogPosition, Side, TradeEvent
from artist_shares_sync.financials.models import FallbackPolicy
from artist_shares_sync.ingestor.backfill import TradeBackfiller
from artist_shares_sync.ingestor.subscriptions import EventSubscriptionManager
from artist_shares_sync.ledger.candles import CandleAggregator, Timeframe
from artist_shares_sync.ledger.trades import TradeLedger
from artist_shares_sync.registry import ContractRegistry

TS = int(datetime(2026, 10, 19, 12, 0, tzinfo=UTC).timestamp())


def _log(contract: str, topic: str, tx_byte: str, amount_tokens: int, ts: int = TS) -> dict:
    words = (amount_tokens * 10**18, 10**8, amount_tokens * 10**15, ts)
    return {
        "address": contract,
        "topics": [topic, "0x" + "00" * 12 + "ab" * 20],
        "data": "0x" + "".join(f"{w:064x}" for w in words),
        "transactionHash": "0x" + tx_byte * 32,
        "blockNumber": 9_500,
        "logIndex": 0,
    }


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock()
    client.get_block_number = AsyncMock(return_value=10_000)
    client.get_logs = AsyncMock(return_value=[])
    client.call_function = AsyncMock(return_value=3000 * 10**8)
    return client


@pytest.fixture
def sink() -> MagicMock:
    sink = MagicMock()
    sink.publish_trade = AsyncMock()
    sink.publish_snapshot = AsyncMock()
    return sink


@pytest.fixture
async def registry(db, contract_address) -> ContractRegistry:
    registry = ContractRegistry(db)
    await registry.register(7, contract_address)
    return registry


@pytest.fixture
def backfiller(client, registry, db, sink) -> TradeBackfiller:
    ledger = TradeLedger(db)
    candles = CandleAggregator(db)
    snapshots = MagicMock()
    snapshots.invalidate = AsyncMock()
    trader_volumes = MagicMock()
    trader_volumes.invalidate = AsyncMock()
    manager = EventSubscriptionManager(
        client=client,
        registry=registry,
        ledger=ledger,
        candles=candles,
        snapshots=snapshots,
        trader_volumes=trader_volumes,
        sink=sink,
        fallback=FallbackPolicy(),
    )
    return TradeBackfiller(
        client=client,
        registry=registry,
        ledger=ledger,
        manager=manager,
        lookback_blocks=5_000,
        chunk_size=2_000,
    )


class TestBackfill:
    @pytest.mark.asyncio
    async def test_scans_lookback_window_in_chunks(self, backfiller, client):
        await backfiller.run()

        filters = [c.args[0] for c in client.get_logs.await_args_list]
        assert [(f["fromBlock"], f["toBlock"]) for f in filters] == [(5_000, 6_999), (7_000, 8_999), (9_000, 10_000)]
        assert all(f["topics"] == [list(TRADE_TOPICS)] for f in filters)

    @pytest.mark.asyncio
    async def test_records_trades_and_candles_without_broadcasting(
        self, backfiller, client, db, sink, contract_address
    ):
        client.get_logs.side_effect = [
            [],
            [_log(contract_address, SHARES_BOUGHT_TOPIC, "01", 10)],
            [_log(contract_address, SHARES_SOLD_TOPIC, "02", 4), _log(contract_address, SHARES_BOUGHT_TOPIC, "01", 10)],
        ]

        report = await backfiller.run()

        assert report.contracts_scanned == 1
        assert report.trades_recorded == 2
        assert report.failed_contracts == []
        assert await TradeLedger(db).trade_count(7) == 2
        candles = await CandleAggregator(db).candles(7, Timeframe.D1)
        assert candles[0].trade_count == 2
        sink.publish_trade.assert_not_called()

    @pytest.mark.asyncio
    async def test_artists_with_trades_are_skipped(self, backfiller, client, db, trade_factory):
        await TradeLedger(db).record_trade(trade_factory(artist_id=7))

        report = await backfiller.run()

        assert report.contracts_skipped == 1
        assert report.contracts_scanned == 0
        client.get_logs.assert_not_called()
        # Candles are still rebuilt from the existing ledger.
        assert report.candle_timeframes_rebuilt == len(Timeframe)

    @pytest.mark.asyncio
    async def test_upstream_failure_is_reported(self, backfiller, client, contract_address):
        client.get_logs.side_effect = UpstreamUnavailableError("down")

        report = await backfiller.run()

        assert report.failed_contracts == [contract_address]
        assert report.trades_recorded == 0
        assert not backfiller._manager.is_candles_held(7)

    @pytest.mark.asyncio
    async def test_plan_holds_only_contracts_without_history(self, backfiller, registry, db, trade_factory):
        await registry.register(8, "0x" + "8" * 40)
        await TradeLedger(db).record_trade(trade_factory(artist_id=8))

        plan = await backfiller.plan()

        assert [e.artist_id for e in plan.to_scan] == [7]
        assert [e.artist_id for e in plan.up_to_date] == [8]
        assert backfiller._manager.is_candles_held(7)
        assert not backfiller._manager.is_candles_held(8)

    @pytest.mark.asyncio
    async def test_live_trade_during_backfill_keeps_candles_in_time_order(
        self, backfiller, client, db, contract_address
    ):
        manager = backfiller._manager
        live = TradeEvent(
            position=LogPosition(contract_address, "0x" + "99" * 32, 9_900, 0),
            side=Side.BUY,
            trader="0x" + "cd" * 20,
            amount_raw=10 * 10**18,
            price_raw=10**8,
            eth_raw=2 * 10**16,
            timestamp=datetime.fromtimestamp(TS + 300, tz=UTC),
        )
        calls = 0

        async def get_logs(_filter):
            nonlocal calls
            calls += 1
            if calls == 1:
                # A newer trade streams in while older history is still loading.
                await manager.ingest_trade_event(7, live, broadcast=False)
            if calls == 3:
                return [_log(contract_address, SHARES_BOUGHT_TOPIC, "01", 10)]
            return []

        client.get_logs.side_effect = get_logs

        report = await backfiller.run()

        assert report.trades_recorded == 1
        assert not manager.is_candles_held(7)
        (day,) = await CandleAggregator(db).candles(7, Timeframe.D1)
        assert day.trade_count == 2
        # 10 tokens for 0.01 ETH at 3000 USD/ETH, then the live 0.02 ETH buy.
        assert day.open == Decimal(3)
        assert day.close == Decimal(6)

    @pytest.mark.asyncio
    async def test_no_contracts(self, db, client):
        registry = ContractRegistry(db)
        backfiller = TradeBackfiller(
            client=client,
            registry=registry,
            ledger=TradeLedger(db),
            manager=MagicMock(),
        )

        report = await backfiller.run()

        assert report.contracts_scanned == 0
        client.get_block_number.assert_not_called()
