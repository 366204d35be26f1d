"""Chain access layer - RPC client, contract ABI and log decoding."""

from artist_shares_sync.chain.client import ChainClient, ChainClientError, UpstreamUnavailableError
from artist_shares_sync.chain.contract import ShareContract
from artist_shares_sync.chain.events import (
    CurveCompletedEvent,
    EventDecodeError,
    SellLimitUpdatedEvent,
    Side,
    TradeEvent,
    decode_log,
)

__all__ = [
    "ChainClient",
    "ChainClientError",
    "CurveCompletedEvent",
    "EventDecodeError",
    "SellLimitUpdatedEvent",
    "ShareContract",
    "Side",
    "TradeEvent",
    "UpstreamUnavailableError",
    "decode_log",
]
