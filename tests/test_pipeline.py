"""Tests for the main pipeline orchestrator."""

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from eth_abi import encode
from web3 import AsyncWeb3

from artist_shares_sync.broadcast import NullBroadcastSink, RedisBroadcastSink
from artist_shares_sync.chain.abi import ARTIST_TOKEN_CREATED_TOPIC
from artist_shares_sync.chain.client import UpstreamUnavailableError
from artist_shares_sync.config import Settings
from artist_shares_sync.ingestor.backfill import BackfillReport, TradeBackfiller
from artist_shares_sync.ledger.trades import TradeLedger
from artist_shares_sync.pipeline import Pipeline, PipelineState


@pytest.fixture
def mock_settings():
    """Create mock settings for testing."""
    redis = MagicMock()
    redis.url = "redis://localhost:6379"

    database = MagicMock()
    database.url = "sqlite+aiosqlite:///:memory:"

    chain = MagicMock()
    chain.rpc_url = "http://localhost:8545"
    chain.fallback_rpc_url = None
    chain.max_requests_per_second = 25
    chain.call_timeout_seconds = 1.0
    chain.poll_interval_seconds = 0.01
    chain.logs_chunk_size_blocks = 10_000
    chain.stream_replay_blocks = 0
    chain.poa = False
    chain.factory_address = None
    chain.factory_from_block = 0

    backfill = MagicMock()
    backfill.enabled = True
    backfill.timeout_seconds = 5.0
    backfill.lookback_blocks = 1_000

    fallback = MagicMock()
    fallback.reserve_usd_rate = Decimal("3500")
    fallback.price_usd = Decimal("0.0000005")
    fallback.target_reserve = Decimal("19.7")

    snapshot = MagicMock()
    snapshot.cache_ttl_seconds = 300
    snapshot.trader_volume_cache_ttl_seconds = 300

    broadcast = MagicMock()
    broadcast.channel_prefix = "artist-shares:"

    settings = MagicMock(spec=Settings)
    settings.redis = redis
    settings.database = database
    settings.chain = chain
    settings.backfill = backfill
    settings.fallback = fallback
    settings.snapshot = snapshot
    settings.broadcast = broadcast
    settings.dev_mode = False
    settings.dry_run = True
    return settings


@pytest.fixture
def mock_redis():
    async def scan_iter(match):
        for key in ():
            yield key

    redis = MagicMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock()
    redis.delete = AsyncMock(return_value=0)
    redis.publish = AsyncMock(return_value=0)
    redis.aclose = AsyncMock()
    redis.scan_iter = scan_iter
    return redis


@pytest.fixture
def mock_chain():
    chain = MagicMock()
    chain.get_block_number = AsyncMock(return_value=5_000)
    chain.get_logs = AsyncMock(return_value=[])
    chain.call_function = AsyncMock(return_value=3000 * 10**8)
    chain.aclose = AsyncMock()
    return chain


@pytest.fixture
def pipeline(mock_settings, db, mock_redis, mock_chain) -> Pipeline:
    return Pipeline(mock_settings, db_manager=db, redis=mock_redis, chain_client=mock_chain)


class TestPipelineState:
    """Tests for pipeline state management."""

    def test_initial_state_is_stopped(self, mock_settings):
        """Pipeline should start in stopped state."""
        pipeline = Pipeline(mock_settings)
        assert pipeline.state == PipelineState.STOPPED
        assert not pipeline.is_running

    def test_initial_stats(self, mock_settings):
        stats = Pipeline(mock_settings).stats
        assert stats.started_at is None
        assert stats.backfill_completed is False
        assert stats.contracts_subscribed == 0


class TestPipelineInitialization:
    """Tests for pipeline initialization."""

    def test_dry_run_from_settings(self, mock_settings):
        """Pipeline should use dry_run from settings by default."""
        mock_settings.dry_run = True
        assert Pipeline(mock_settings)._dry_run is True

        mock_settings.dry_run = False
        assert Pipeline(mock_settings)._dry_run is False

    def test_dry_run_override(self, mock_settings):
        """Pipeline should allow overriding dry_run."""
        mock_settings.dry_run = False
        assert Pipeline(mock_settings, dry_run=True)._dry_run is True

    def test_uses_get_settings_when_none_provided(self):
        """Pipeline should call get_settings if no settings provided."""
        with patch("artist_shares_sync.pipeline.get_settings") as mock_get:
            mock_get.return_value = MagicMock(spec=Settings)
            mock_get.return_value.dry_run = False
            Pipeline()
            mock_get.assert_called_once()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, pipeline, mock_chain, mock_redis):
        await pipeline.start()
        try:
            assert pipeline.state == PipelineState.RUNNING
            assert pipeline.stats.started_at is not None
            assert pipeline.stats.backfill_completed is True
            assert isinstance(pipeline.stats.backfill_report, BackfillReport)
            assert isinstance(pipeline._sink, NullBroadcastSink)
        finally:
            await pipeline.stop()

        assert pipeline.state == PipelineState.STOPPED
        # Injected resources belong to the caller.
        mock_chain.aclose.assert_not_called()
        mock_redis.aclose.assert_not_called()

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, pipeline):
        await pipeline.start()
        try:
            with pytest.raises(RuntimeError):
                await pipeline.start()
        finally:
            await pipeline.stop()

    @pytest.mark.asyncio
    async def test_redis_sink_when_not_dry_run(self, mock_settings, db, mock_redis, mock_chain):
        mock_settings.dry_run = False
        async with Pipeline(mock_settings, db_manager=db, redis=mock_redis, chain_client=mock_chain) as pipeline:
            assert isinstance(pipeline._sink, RedisBroadcastSink)

    @pytest.mark.asyncio
    async def test_dev_mode_wipes_market_data(self, mock_settings, pipeline, db, trade_factory):
        await TradeLedger(db).record_trade(trade_factory())
        mock_settings.dev_mode = True
        mock_settings.backfill.enabled = False

        async with pipeline:
            assert await TradeLedger(db).trade_count(1) == 0

    @pytest.mark.asyncio
    async def test_slow_backfill_continues_in_background(self, mock_settings, pipeline):
        mock_settings.backfill.timeout_seconds = 0.05
        release = asyncio.Event()

        async def slow_run(self, plan=None):
            await release.wait()
            return BackfillReport()

        with patch.object(TradeBackfiller, "run", slow_run):
            await pipeline.start()
            try:
                assert pipeline.state == PipelineState.RUNNING
                assert pipeline.stats.backfill_completed is False
                release.set()
                await asyncio.sleep(0.01)
                assert pipeline.stats.backfill_completed is True
            finally:
                await pipeline.stop()

    @pytest.mark.asyncio
    async def test_backfill_failure_does_not_stop_startup(self, pipeline):
        async def broken_run(self, plan=None):
            raise RuntimeError("rpc exploded")

        with patch.object(TradeBackfiller, "run", broken_run):
            async with pipeline:
                assert pipeline.state == PipelineState.RUNNING
                assert pipeline.stats.backfill_completed is False
                assert pipeline.stats.last_error == "rpc exploded"

    @pytest.mark.asyncio
    async def test_run_until_stop_requested(self, pipeline):
        task = asyncio.create_task(pipeline.run())
        for _ in range(100):
            if pipeline.is_running:
                break
            await asyncio.sleep(0.01)

        pipeline.request_stop()
        await asyncio.wait_for(task, timeout=5)

        assert pipeline.state == PipelineState.STOPPED


class TestOperations:
    @pytest.mark.asyncio
    async def test_operations_require_running_pipeline(self, pipeline, contract_address):
        with pytest.raises(RuntimeError):
            await pipeline.register_contract(7, contract_address)
        with pytest.raises(RuntimeError):
            await pipeline.compute_snapshot(7)

    @pytest.mark.asyncio
    async def test_startup_steps_require_initialized_components(self, pipeline):
        with pytest.raises(RuntimeError, match="not initialized"):
            await pipeline._prepare_state()

    @pytest.mark.asyncio
    async def test_register_contract_subscribes(self, pipeline, contract_address):
        async with pipeline:
            assert await pipeline.register_contract(7, contract_address) is True
            assert await pipeline.subscribe(contract_address) is False
            assert contract_address in pipeline.subscriptions.subscribed

    @pytest.mark.asyncio
    async def test_register_without_subscribe(self, pipeline, contract_address):
        async with pipeline:
            assert await pipeline.register_contract(7, contract_address, subscribe=False) is False
            assert pipeline.subscriptions.subscribed == frozenset()

    @pytest.mark.asyncio
    async def test_queries(self, pipeline):
        async with pipeline:
            snapshot = await pipeline.compute_snapshot(42)
            assert snapshot.artist_id == 42
            assert snapshot.market_cap_usd == Decimal(0)
            assert await pipeline.candles(42, "1H") == []
            assert await pipeline.trade_volume_24h("bogus") == Decimal("0.00")


FACTORY = "0x" + "f" * 40
TOKEN = "0x" + "7" * 40


def _token_created_log() -> dict:
    data = encode(["address", "string", "string"], [AsyncWeb3.to_checksum_address(TOKEN), "7", "Nova"])
    return {
        "address": FACTORY,
        "topics": [ARTIST_TOKEN_CREATED_TOPIC],
        "data": "0x" + data.hex(),
        "transactionHash": "0x" + "12" * 32,
        "blockNumber": 4_000,
        "logIndex": 0,
    }


class TestFactoryDiscovery:
    @pytest.fixture
    def factory_chain(self, mock_settings, mock_chain):
        mock_settings.chain.factory_address = FACTORY

        async def call_function(_address, _abi, name, *_args):
            if name == "getDeployedTokens":
                return [AsyncWeb3.to_checksum_address(TOKEN), "0x" + "0" * 40]
            if name == "getTokenByArtistId":
                return AsyncWeb3.to_checksum_address(TOKEN)
            return 3000 * 10**8

        async def get_logs(filter_params):
            if filter_params["topics"] == [[ARTIST_TOKEN_CREATED_TOPIC]]:
                return [_token_created_log()]
            return []

        mock_chain.call_function = AsyncMock(side_effect=call_function)
        mock_chain.get_logs = AsyncMock(side_effect=get_logs)
        return mock_chain

    @pytest.mark.asyncio
    async def test_deployed_contracts_are_registered_and_subscribed(self, factory_chain, pipeline):
        async with pipeline:
            assert pipeline.stats.contracts_discovered == 1
            assert pipeline.stats.contracts_subscribed == 1
            assert TOKEN in pipeline.subscriptions.subscribed

    @pytest.mark.asyncio
    async def test_factory_failure_does_not_stop_startup(self, factory_chain, pipeline):
        factory_chain.call_function = AsyncMock(side_effect=UpstreamUnavailableError("rpc down"))

        async with pipeline:
            assert pipeline.state == PipelineState.RUNNING
            assert pipeline.stats.contracts_discovered == 0
            assert pipeline.subscriptions.subscribed == frozenset()
