"""Financial snapshot computation with read-through caching.

A snapshot combines live contract reads (supply, reserve, prices, daily
sell limit) with the 24h traded volume from the ledger:

- marginal price = reserve quoted for one whole token * ETH/USD
- market cap = sold * marginal price + (total - sold) * display price
- curve progress = reserve locked / target reserve, capped at 100%

When the chain cannot be read in time the last good snapshot is served
marked as degraded, or the all-zero placeholder if there is none.
`compute` never raises.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from artist_shares_sync.chain.client import UpstreamUnavailableError
from artist_shares_sync.chain.contract import ShareContract
from artist_shares_sync.financials.models import FallbackPolicy, FinancialSnapshot, next_utc_midnight
from artist_shares_sync.numeric import (
    WEI_PER_TOKEN,
    from_price_units,
    from_wei,
    is_valid_address,
    round_usd,
)

if TYPE_CHECKING:
    from artist_shares_sync.chain.client import ChainClient
    from artist_shares_sync.financials.cache import SnapshotCache
    from artist_shares_sync.ledger.trades import TradeLedger
    from artist_shares_sync.registry import ContractRegistry

logger = logging.getLogger(__name__)

DEFAULT_READ_TIMEOUT_SECONDS = 30.0
VOLUME_WINDOW = timedelta(hours=24)
_PERCENT_QUANTUM = Decimal("0.01")


class NotConfiguredError(Exception):
    """Raised when an artist has no deployed contract."""


@dataclass(frozen=True)
class CurveState:
    """Raw contract reads scaled to decimal units."""

    total_supply: Decimal
    tokens_sold: Decimal
    tokens_in_curve: int
    reserve_locked: Decimal
    display_price_usd: Decimal
    reserve_for_one_token: Decimal
    daily_sell_limit_usd: Decimal
    reserve_usd_rate: Decimal


async def read_reserve_usd_rate(contract: ShareContract, fallback: FallbackPolicy) -> Decimal:
    """ETH/USD from the contract oracle, or the fallback rate if unusable."""
    try:
        raw = await contract.eth_usd_price()
    except UpstreamUnavailableError as e:
        logger.warning("ETH/USD oracle read failed for %s, using fallback: %s", contract.address, e)
        return fallback.reserve_usd_rate
    if raw <= 0:
        logger.warning("ETH/USD oracle returned %s for %s, using fallback", raw, contract.address)
        return fallback.reserve_usd_rate
    return from_price_units(raw)


class FinancialSnapshotComputer:
    """Computes and caches per-artist financial snapshots."""

    def __init__(
        self,
        *,
        client: ChainClient,
        ledger: TradeLedger,
        registry: ContractRegistry,
        cache: SnapshotCache,
        fallback: FallbackPolicy | None = None,
        read_timeout_seconds: float = DEFAULT_READ_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._ledger = ledger
        self._registry = registry
        self._cache = cache
        self._fallback = fallback or FallbackPolicy()
        self._read_timeout = read_timeout_seconds
        self._clock = clock or (lambda: datetime.now(UTC))
        self._last_good: dict[int, FinancialSnapshot] = {}
        # Bumped on every invalidation; a computation that started under an
        # older generation must not be cached.
        self._generations: dict[int, int] = {}

    def generation(self, artist_id: int) -> int:
        return self._generations.get(artist_id, 0)

    async def compute(self, artist_id: int) -> FinancialSnapshot:
        """Return the cached snapshot or compute a fresh one."""
        cached = await self._cache.get_snapshot(artist_id)
        if cached is not None:
            return cached
        return await self.recompute(artist_id)

    async def recompute(self, artist_id: int) -> FinancialSnapshot:
        """Compute from chain and ledger, bypassing the fresh cache.

        The result is only cached if no invalidation happened while it was
        being computed; a stale result is still returned to the caller.
        """
        generation = self.generation(artist_id)
        try:
            snapshot = await self._compute_uncached(artist_id)
        except NotConfiguredError:
            logger.debug("No contract for artist=%s, serving placeholder snapshot", artist_id)
            return FinancialSnapshot.placeholder(artist_id, now=self._clock())
        except (UpstreamUnavailableError, TimeoutError) as e:
            logger.warning("Snapshot chain reads failed for artist=%s: %s", artist_id, e)
            return self._degraded(artist_id)
        except Exception as e:
            logger.error("Snapshot computation failed for artist=%s: %s", artist_id, e, exc_info=True)
            return self._degraded(artist_id)

        if self.generation(artist_id) != generation:
            logger.debug("Snapshot for artist=%s superseded while computing, not caching", artist_id)
            return snapshot
        self._last_good[artist_id] = snapshot
        await self._cache.put_snapshot(snapshot)
        if self.generation(artist_id) != generation:
            # Invalidated while the write was in flight.
            await self._cache.invalidate_snapshot(artist_id)
        return snapshot

    async def invalidate(self, artist_id: int) -> None:
        """Drop the fresh cache entry; the last good snapshot is kept."""
        self._generations[artist_id] = self.generation(artist_id) + 1
        await self._cache.invalidate_snapshot(artist_id)

    def _degraded(self, artist_id: int) -> FinancialSnapshot:
        last = self._last_good.get(artist_id)
        if last is not None:
            return last.as_degraded()
        return FinancialSnapshot.placeholder(artist_id, now=self._clock()).as_degraded()

    async def _read_curve(self, contract: ShareContract) -> CurveState:
        (
            rate,
            total_supply,
            tokens_sold,
            tokens_in_curve,
            eth_in_curve,
            price_micro,
            reserve_for_one,
            sell_limit,
        ) = await asyncio.gather(
            read_reserve_usd_rate(contract, self._fallback),
            contract.total_supply(),
            contract.tokens_sold(),
            contract.tokens_in_curve(),
            contract.eth_in_curve(),
            contract.current_price_micro_usd(),
            contract.eth_for_tokens(WEI_PER_TOKEN),
            contract.daily_sell_limit_usd(),
        )
        display_price = from_price_units(price_micro)
        if display_price <= 0:
            display_price = self._fallback.price_usd
        return CurveState(
            total_supply=from_wei(total_supply),
            tokens_sold=from_wei(tokens_sold),
            tokens_in_curve=tokens_in_curve // WEI_PER_TOKEN,
            reserve_locked=from_wei(eth_in_curve),
            display_price_usd=display_price,
            reserve_for_one_token=from_wei(reserve_for_one),
            daily_sell_limit_usd=from_price_units(sell_limit),
            reserve_usd_rate=rate,
        )

    async def _compute_uncached(self, artist_id: int) -> FinancialSnapshot:
        address = await self._registry.address_for(artist_id)
        if not address or not is_valid_address(address):
            raise NotConfiguredError(f"artist {artist_id} has no contract")

        contract = ShareContract(self._client, address)
        state = await asyncio.wait_for(self._read_curve(contract), timeout=self._read_timeout)

        now = self._clock()
        volume = await self._ledger.volume_usd_since(artist_id, now - VOLUME_WINDOW)

        marginal_price = state.reserve_for_one_token * state.reserve_usd_rate
        unsold = state.total_supply - state.tokens_sold
        market_cap = state.tokens_sold * marginal_price + unsold * state.display_price_usd
        progress = min(
            Decimal(100),
            state.reserve_locked / self._fallback.target_reserve * Decimal(100),
        ).quantize(_PERCENT_QUANTUM)

        return FinancialSnapshot(
            artist_id=artist_id,
            current_price_usd=state.display_price_usd,
            volume_24h_usd=round_usd(volume),
            market_cap_usd=round_usd(market_cap),
            daily_liquidity_usd=round_usd(state.daily_sell_limit_usd),
            liquidity_percentage=progress,
            available_supply=state.tokens_in_curve,
            next_reset=next_utc_midnight(now),
            reserve_locked_usd=round_usd(state.reserve_locked * state.reserve_usd_rate),
            computed_at=now,
        )


class TraderVolumeService:
    """24h USD volume traded by one wallet, cached per wallet."""

    def __init__(
        self,
        *,
        ledger: TradeLedger,
        cache: SnapshotCache,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._ledger = ledger
        self._cache = cache
        self._clock = clock or (lambda: datetime.now(UTC))

    async def trade_volume_24h(self, address: str) -> Decimal:
        """Sum of the wallet's trade values over the last 24h, in USD cents precision.

        Malformed addresses yield zero.
        """
        if not is_valid_address(address):
            logger.debug("Ignoring volume lookup for invalid address %r", address)
            return Decimal("0.00")
        wallet = address.lower()
        cached = await self._cache.get_trader_volume(wallet)
        if cached is not None:
            return cached
        volume = round_usd(await self._ledger.trader_volume_usd_since(wallet, self._clock() - VOLUME_WINDOW))
        await self._cache.put_trader_volume(wallet, volume)
        return volume

    async def invalidate(self, address: str) -> None:
        await self._cache.invalidate_trader_volume(address)
