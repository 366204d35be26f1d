"""Tests for the polling contract log stream."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from web3 import AsyncWeb3

from artist_shares_sync.chain.abi import SHARES_BOUGHT_TOPIC, TRADE_TOPICS
from artist_shares_sync.chain.client import UpstreamUnavailableError
from artist_shares_sync.chain.events import TradeEvent
from artist_shares_sync.ingestor.log_stream import (
    ContractLogStream,
    StreamState,
    build_filter,
    fetch_events,
)

CONTRACT = "0x1234567890abcdef1234567890abcdef12345678"


def _log(block: int, index: int = 0, *, data_words: int = 4) -> dict:
    return {
        "address": CONTRACT,
        "topics": [SHARES_BOUGHT_TOPIC, "0x" + "00" * 12 + "ab" * 20],
        "data": "0x" + "".join(f"{i + 1:064x}" for i in range(data_words)),
        "transactionHash": f"0x{block:032x}{index:032x}",
        "blockNumber": block,
        "logIndex": index,
    }


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock()
    client.get_block_number = AsyncMock(return_value=1_000)
    client.get_logs = AsyncMock(return_value=[])
    return client


class TestBuildFilter:
    def test_filter_shape(self):
        f = build_filter(CONTRACT, from_block=1, to_block=2, topics=TRADE_TOPICS)

        assert f["address"] == AsyncWeb3.to_checksum_address(CONTRACT)
        assert f["fromBlock"] == 1
        assert f["toBlock"] == 2
        assert f["topics"] == [list(TRADE_TOPICS)]


class TestFetchEvents:
    @pytest.mark.asyncio
    async def test_scans_in_chunks(self, client):
        await fetch_events(client, CONTRACT, from_block=0, to_block=2_500, chunk_size=1_000)

        ranges = [(c.args[0]["fromBlock"], c.args[0]["toBlock"]) for c in client.get_logs.await_args_list]
        assert ranges == [(0, 999), (1_000, 1_999), (2_000, 2_500)]

    @pytest.mark.asyncio
    async def test_malformed_logs_are_skipped(self, client):
        client.get_logs.return_value = [_log(5, 0, data_words=2), _log(5, 1)]

        events = await fetch_events(client, CONTRACT, from_block=0, to_block=10)

        assert len(events) == 1
        assert isinstance(events[0], TradeEvent)
        assert events[0].position.log_index == 1


class TestPollOnce:
    @pytest.mark.asyncio
    async def test_first_poll_replays_recent_blocks(self, client):
        client.get_logs.return_value = [_log(950), _log(990)]
        stream = ContractLogStream(client, CONTRACT, replay_blocks=100)

        queued = await stream.poll_once()

        assert queued == 2
        assert client.get_logs.await_args.args[0]["fromBlock"] == 900
        assert stream.queue.qsize() == 2
        assert stream.stats.last_block == 1_000

    @pytest.mark.asyncio
    async def test_subsequent_polls_continue_after_head(self, client):
        stream = ContractLogStream(client, CONTRACT, start_block=1_000)
        await stream.poll_once()

        client.get_block_number.return_value = 1_005
        client.get_logs.reset_mock()
        await stream.poll_once()

        f = client.get_logs.await_args.args[0]
        assert (f["fromBlock"], f["toBlock"]) == (1_001, 1_005)

    @pytest.mark.asyncio
    async def test_no_new_blocks(self, client):
        stream = ContractLogStream(client, CONTRACT, start_block=1_001)
        assert await stream.poll_once() == 0
        client.get_logs.assert_not_called()


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_backs_off_on_upstream_errors(self, client):
        client.get_block_number.side_effect = UpstreamUnavailableError("down")
        stream = ContractLogStream(client, CONTRACT, poll_interval_seconds=0.01, max_backoff_seconds=0.02)

        stream.start()
        for _ in range(100):
            if stream.stats.poll_errors >= 2:
                break
            await asyncio.sleep(0.01)

        assert stream.state == StreamState.BACKING_OFF
        assert stream.stats.last_error == "down"
        await stream.stop()
        assert stream.state == StreamState.STOPPED

    @pytest.mark.asyncio
    async def test_recovers_after_errors(self, client):
        client.get_block_number.side_effect = [UpstreamUnavailableError("down"), 10, 10, 10, 10, 10]
        stream = ContractLogStream(client, CONTRACT, start_block=10, poll_interval_seconds=0.01)

        stream.start()
        for _ in range(100):
            if stream.stats.polls >= 1:
                break
            await asyncio.sleep(0.01)
        await stream.stop()

        assert stream.stats.poll_errors == 1
        assert stream.stats.polls >= 1
