"""ABI fragments for the artist share (bonding-curve) contract and its factory."""

from typing import Any

from web3 import AsyncWeb3


def _uint(name: str, *, indexed: bool | None = None) -> dict[str, Any]:
    item: dict[str, Any] = {"name": name, "type": "uint256"}
    if indexed is not None:
        item["indexed"] = indexed
    return item


def _view(name: str, *inputs: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "view",
        "inputs": list(inputs),
        "outputs": [_uint("")],
    }


SHARES_BOUGHT = "SharesBought(address,uint256,uint256,uint256,uint256)"
SHARES_SOLD = "SharesSold(address,uint256,uint256,uint256,uint256)"
DAILY_SELL_LIMIT_UPDATED = "DailySellLimitUpdated(uint256,uint256)"
CURVE_COMPLETED = "CurveCompleted(uint256,uint256)"


def event_topic(signature: str) -> str:
    """Return the 0x-prefixed keccak topic for an event signature."""
    return AsyncWeb3.to_hex(AsyncWeb3.keccak(text=signature)).lower()


SHARES_BOUGHT_TOPIC = event_topic(SHARES_BOUGHT)
SHARES_SOLD_TOPIC = event_topic(SHARES_SOLD)
DAILY_SELL_LIMIT_UPDATED_TOPIC = event_topic(DAILY_SELL_LIMIT_UPDATED)
CURVE_COMPLETED_TOPIC = event_topic(CURVE_COMPLETED)

TRADE_TOPICS = (SHARES_BOUGHT_TOPIC, SHARES_SOLD_TOPIC)
ALL_TOPICS = (
    SHARES_BOUGHT_TOPIC,
    SHARES_SOLD_TOPIC,
    DAILY_SELL_LIMIT_UPDATED_TOPIC,
    CURVE_COMPLETED_TOPIC,
)

SHARES_ABI: list[dict[str, Any]] = [
    {
        "type": "event",
        "name": "SharesBought",
        "anonymous": False,
        "inputs": [
            {"name": "buyer", "type": "address", "indexed": True},
            _uint("amount", indexed=False),
            _uint("priceMicroCents", indexed=False),
            _uint("ethSpent", indexed=False),
            _uint("timestamp", indexed=False),
        ],
    },
    {
        "type": "event",
        "name": "SharesSold",
        "anonymous": False,
        "inputs": [
            {"name": "seller", "type": "address", "indexed": True},
            _uint("amount", indexed=False),
            _uint("priceMicroCents", indexed=False),
            _uint("ethReceived", indexed=False),
            _uint("timestamp", indexed=False),
        ],
    },
    {
        "type": "event",
        "name": "DailySellLimitUpdated",
        "anonymous": False,
        "inputs": [_uint("newLimitUsd", indexed=False), _uint("timestamp", indexed=False)],
    },
    {
        "type": "event",
        "name": "CurveCompleted",
        "anonymous": False,
        "inputs": [_uint("ethLiquidity", indexed=False), _uint("tokenLiquidity", indexed=False)],
    },
    _view("totalSupply"),
    _view("tokensSold"),
    _view("tokensInCurve"),
    _view("ethInCurve"),
    _view("getCurrentPriceMicroUSD"),
    _view("getEthForTokens", _uint("tokenAmount")),
    _view("dailySellLimitUsd"),
    _view("getEthUsdPrice"),
]

ARTIST_TOKEN_CREATED = "ArtistTokenCreated(address,string,string)"
ARTIST_TOKEN_CREATED_TOPIC = event_topic(ARTIST_TOKEN_CREATED)

FACTORY_ABI: list[dict[str, Any]] = [
    {
        "type": "event",
        "name": "ArtistTokenCreated",
        "anonymous": False,
        "inputs": [
            {"name": "tokenAddress", "type": "address", "indexed": False},
            {"name": "artistId", "type": "string", "indexed": False},
            {"name": "artistName", "type": "string", "indexed": False},
        ],
    },
    {
        "type": "function",
        "name": "getDeployedTokens",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address[]"}],
    },
    {
        "type": "function",
        "name": "getTokenByArtistId",
        "stateMutability": "view",
        "inputs": [{"name": "artistId", "type": "string"}],
        "outputs": [{"name": "", "type": "address"}],
    },
]
