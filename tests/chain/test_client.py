"""Tests for the chain client."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from web3 import AsyncWeb3

from artist_shares_sync.chain.client import ChainClient, RateLimiter, UpstreamUnavailableError


def _client(**kwargs) -> ChainClient:
    kwargs.setdefault("retry_delay_seconds", 0)
    kwargs.setdefault("max_requests_per_second", 1000)
    return ChainClient("http://primary.invalid", **kwargs)


class _BlockNumber:
    """Stand-in for `w3.eth` whose block_number is awaitable."""

    def __init__(self, value: int) -> None:
        self._value = value

    @property
    def block_number(self):
        async def _get():
            return self._value

        return _get()


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_acquire_consumes_tokens(self):
        limiter = RateLimiter.create(10)
        await limiter.acquire()
        assert limiter.tokens < 10


class TestGetLogs:
    @pytest.mark.asyncio
    async def test_logs_sorted_by_block_and_index(self):
        client = _client()
        client._w3 = MagicMock()
        client._w3.eth.get_logs = AsyncMock(
            return_value=[
                {"blockNumber": 2, "logIndex": 0},
                {"blockNumber": 1, "logIndex": 5},
                {"blockNumber": 1, "logIndex": 1},
            ]
        )

        logs = await client.get_logs({"fromBlock": 0, "toBlock": 2})

        assert [(log["blockNumber"], log["logIndex"]) for log in logs] == [(1, 1), (1, 5), (2, 0)]

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        client = _client(max_retries=3)
        client._w3 = MagicMock()
        client._w3.eth.get_logs = AsyncMock(side_effect=[OSError("reset"), []])

        assert await client.get_logs({}) == []
        assert client._w3.eth.get_logs.await_count == 2

    @pytest.mark.asyncio
    async def test_fails_over_to_fallback(self):
        client = _client(fallback_rpc_url="http://fallback.invalid", max_retries=2)
        client._w3 = MagicMock()
        client._w3.eth.get_logs = AsyncMock(side_effect=OSError("down"))
        client._w3_fallback = MagicMock()
        client._w3_fallback.eth.get_logs = AsyncMock(return_value=[{"blockNumber": 1, "logIndex": 0}])

        logs = await client.get_logs({})

        assert len(logs) == 1
        assert client._w3.eth.get_logs.await_count == 2
        assert client._primary_healthy is False

    @pytest.mark.asyncio
    async def test_unhealthy_primary_skipped_until_recovery_interval(self):
        client = _client(fallback_rpc_url="http://fallback.invalid", max_retries=1)
        client._w3 = MagicMock()
        client._w3.eth.get_logs = AsyncMock(side_effect=OSError("down"))
        client._w3_fallback = MagicMock()
        client._w3_fallback.eth.get_logs = AsyncMock(return_value=[])

        await client.get_logs({})
        await client.get_logs({})

        assert client._w3.eth.get_logs.await_count == 1
        assert client._w3_fallback.eth.get_logs.await_count == 2

    @pytest.mark.asyncio
    async def test_all_endpoints_failing_raises(self):
        client = _client(max_retries=2)
        client._w3 = MagicMock()
        client._w3.eth.get_logs = AsyncMock(side_effect=OSError("down"))

        with pytest.raises(UpstreamUnavailableError):
            await client.get_logs({})

    @pytest.mark.asyncio
    async def test_call_timeout_raises_upstream_unavailable(self):
        client = _client(call_timeout_seconds=0.05)

        async def hang(_filter):
            await asyncio.sleep(10)

        client._w3 = MagicMock()
        client._w3.eth.get_logs = hang

        with pytest.raises(UpstreamUnavailableError, match="timed out"):
            await client.get_logs({})


class TestReads:
    @pytest.mark.asyncio
    async def test_get_block_number(self):
        client = _client()
        client._w3 = MagicMock()
        client._w3.eth = _BlockNumber(1234)

        assert await client.get_block_number() == 1234
        assert await client.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_false_when_unreachable(self):
        client = _client(max_retries=1, call_timeout_seconds=0.05)

        class _Down:
            @property
            def block_number(self):
                async def _fail():
                    raise OSError("refused")

                return _fail()

        client._w3 = MagicMock()
        client._w3.eth = _Down()

        assert await client.health_check() is False

    @pytest.mark.asyncio
    async def test_call_function(self):
        client = _client()
        client._w3 = MagicMock()
        contract = client._w3.eth.contract.return_value
        contract.functions.getEthForTokens.return_value.call = AsyncMock(return_value=42)

        result = await client.call_function(
            "0x1234567890abcdef1234567890abcdef12345678",
            [],
            "getEthForTokens",
            10**18,
        )

        assert result == 42
        contract.functions.getEthForTokens.assert_called_once_with(10**18)
        _, kwargs = client._w3.eth.contract.call_args
        assert kwargs["address"] == AsyncWeb3.to_checksum_address("0x1234567890abcdef1234567890abcdef12345678")

    @pytest.mark.asyncio
    async def test_aclose_disconnects_providers(self):
        client = _client()
        client._w3 = MagicMock()
        client._w3.provider.disconnect = AsyncMock()

        await client.aclose()

        client._w3.provider.disconnect.assert_awaited_once()
