"""JSON-RPC client with rate limiting, retries and failover.

This module provides the chain client used for log scans and contract reads:
- Rate limiting to respect provider limits
- Retry logic with exponential backoff
- Failover to secondary RPC URL
- An upper bound on the duration of every call
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0
DEFAULT_CALL_TIMEOUT_SECONDS = 30.0
PRIMARY_RECOVERY_INTERVAL_SECONDS = 60.0

_RETRYABLE_ERRORS = (Web3Exception, TimeoutError, OSError, ValueError)


class ChainClientError(Exception):
    """Base exception for chain client errors."""


class UpstreamUnavailableError(ChainClientError):
    """Raised when the chain cannot be reached within the retry and time budget."""


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> "RateLimiter":
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class ChainClient:
    """Chain client for log scans and read-only contract calls.

    Example:
        ```python
        client = ChainClient(
            "https://rpc.example.org",
            fallback_rpc_url="https://rpc-backup.example.org",
            call_timeout_seconds=10,
        )
        latest = await client.get_block_number()
        logs = await client.get_logs({"address": "0x...", "fromBlock": latest - 100, "toBlock": latest})
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS,
        poa: bool = False,
    ) -> None:
        """Initialize the chain client.

        Args:
            rpc_url: Primary RPC endpoint URL.
            fallback_rpc_url: Optional fallback RPC URL for failover.
            max_requests_per_second: Rate limit for RPC calls.
            max_retries: Maximum retry attempts per endpoint.
            retry_delay_seconds: Initial delay between retries.
            call_timeout_seconds: Upper bound for one call including retries.
            poa: Inject the proof-of-authority extraData middleware.
        """
        self._rpc_url = rpc_url
        self._fallback_rpc_url = fallback_rpc_url
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._call_timeout = call_timeout_seconds
        self._poa = poa

        self._w3 = self._new_web3_client(rpc_url)
        self._w3_fallback: AsyncWeb3[AsyncHTTPProvider] | None = None
        if fallback_rpc_url:
            self._w3_fallback = self._new_web3_client(fallback_rpc_url)

        self._rate_limiter = RateLimiter.create(max_requests_per_second)

        self._primary_healthy = True
        self._last_primary_check = 0.0

    @property
    def call_timeout_seconds(self) -> float:
        return self._call_timeout

    def _new_web3_client(self, rpc_url: str) -> AsyncWeb3[AsyncHTTPProvider]:
        client = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        if self._poa:
            try:
                client.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
            except Exception as e:
                logger.warning("Failed to inject PoA middleware (rpc=%s): %s", rpc_url, e)
        return client

    def _should_try_primary(self) -> bool:
        if self._primary_healthy:
            return True
        now = time.monotonic()
        if now - self._last_primary_check > PRIMARY_RECOVERY_INTERVAL_SECONDS:
            self._last_primary_check = now
            return True
        return False

    async def _attempt(
        self,
        label: str,
        endpoint: str,
        w3: AsyncWeb3[AsyncHTTPProvider],
        call: Callable[[AsyncWeb3[AsyncHTTPProvider]], Awaitable[Any]],
    ) -> tuple[bool, Any, Exception | None]:
        delay = self._retry_delay
        last_error: Exception | None = None
        for attempt in range(self._max_retries):
            try:
                return True, await call(w3), None
            except _RETRYABLE_ERRORS as e:
                last_error = e
                logger.warning(
                    "%s RPC %s failed (attempt %d/%d): %s",
                    endpoint,
                    label,
                    attempt + 1,
                    self._max_retries,
                    e,
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(delay)
                    delay *= 2
        return False, None, last_error

    async def _execute_with_retry(
        self,
        label: str,
        call: Callable[[AsyncWeb3[AsyncHTTPProvider]], Awaitable[Any]],
    ) -> Any:
        """Execute an RPC call with retry and failover logic.

        Raises:
            UpstreamUnavailableError: If all retries and failover fail.
        """
        await self._rate_limiter.acquire()

        last_error: Exception | None = None

        if self._should_try_primary():
            ok, result, last_error = await self._attempt(label, "Primary", self._w3, call)
            if ok:
                self._primary_healthy = True
                return result
            self._primary_healthy = False
            self._last_primary_check = time.monotonic()

        if self._w3_fallback is not None:
            ok, result, err = await self._attempt(label, "Fallback", self._w3_fallback, call)
            if ok:
                logger.info("Fallback RPC succeeded for %s", label)
                return result
            last_error = err or last_error

        raise UpstreamUnavailableError(f"RPC call {label} failed after all retries: {last_error}")

    async def _call(
        self,
        label: str,
        call: Callable[[AsyncWeb3[AsyncHTTPProvider]], Awaitable[Any]],
    ) -> Any:
        try:
            return await asyncio.wait_for(self._execute_with_retry(label, call), timeout=self._call_timeout)
        except TimeoutError as e:
            raise UpstreamUnavailableError(
                f"RPC call {label} timed out after {self._call_timeout:.1f}s"
            ) from e

    async def get_block_number(self) -> int:
        """Return the latest block number."""

        async def _block_number(w3: AsyncWeb3[AsyncHTTPProvider]) -> int:
            return int(await w3.eth.block_number)

        return int(await self._call("block_number", _block_number))

    async def get_logs(self, filter_params: dict[str, Any]) -> list[dict[str, Any]]:
        """Fetch logs via `eth_getLogs` with retry/failover semantics.

        Logs are returned ordered by (blockNumber, logIndex).
        """
        logs = await self._call("get_logs", lambda w3: w3.eth.get_logs(filter_params))
        out = [dict(log) for log in logs]
        out.sort(key=lambda log: (int(log.get("blockNumber") or 0), int(log.get("logIndex") or 0)))
        return out

    async def call_function(
        self,
        contract_address: str,
        abi: Sequence[dict[str, Any]],
        function_name: str,
        *args: Any,
    ) -> Any:
        """Call a read-only contract function at the latest block."""
        address = AsyncWeb3.to_checksum_address(contract_address)

        async def _invoke(w3: AsyncWeb3[AsyncHTTPProvider]) -> Any:
            contract = w3.eth.contract(address=address, abi=list(abi))
            return await getattr(contract.functions, function_name)(*args).call()

        return await self._call(f"{function_name}@{contract_address.lower()}", _invoke)

    async def health_check(self) -> bool:
        """Check if the client can connect to the RPC."""
        try:
            await self.get_block_number()
            return True
        except UpstreamUnavailableError:
            return False

    async def aclose(self) -> None:
        """Close async HTTP provider sessions to avoid leaked aiohttp sessions."""
        providers = [self._w3.provider]
        if self._w3_fallback is not None:
            providers.append(self._w3_fallback.provider)

        for provider in providers:
            disconnect = getattr(provider, "disconnect", None)
            if not callable(disconnect):
                continue
            try:
                result = disconnect()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Failed to close RPC provider session: %s", e)
