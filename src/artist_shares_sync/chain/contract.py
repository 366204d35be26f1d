"""Typed read access to a deployed artist share contract."""

from __future__ import annotations

from typing import TYPE_CHECKING

from artist_shares_sync.chain.abi import SHARES_ABI
from artist_shares_sync.numeric import WEI_PER_TOKEN

if TYPE_CHECKING:
    from artist_shares_sync.chain.client import ChainClient


class ShareContract:
    """Read-only view functions of one bonding-curve contract.

    Every method returns the raw uint256 and raises
    `UpstreamUnavailableError` when the chain cannot be reached in time.
    """

    def __init__(self, client: ChainClient, address: str) -> None:
        self._client = client
        self.address = address.lower()

    async def _read(self, name: str, *args: int) -> int:
        return int(await self._client.call_function(self.address, SHARES_ABI, name, *args))

    async def total_supply(self) -> int:
        return await self._read("totalSupply")

    async def tokens_sold(self) -> int:
        return await self._read("tokensSold")

    async def tokens_in_curve(self) -> int:
        return await self._read("tokensInCurve")

    async def eth_in_curve(self) -> int:
        return await self._read("ethInCurve")

    async def current_price_micro_usd(self) -> int:
        return await self._read("getCurrentPriceMicroUSD")

    async def eth_for_tokens(self, token_amount_raw: int = WEI_PER_TOKEN) -> int:
        """Reserve (wei) the curve quotes for `token_amount_raw`, one whole token by default."""
        return await self._read("getEthForTokens", token_amount_raw)

    async def daily_sell_limit_usd(self) -> int:
        return await self._read("dailySellLimitUsd")

    async def eth_usd_price(self) -> int:
        """ETH/USD oracle answer scaled by 1e8."""
        return await self._read("getEthUsdPrice")
