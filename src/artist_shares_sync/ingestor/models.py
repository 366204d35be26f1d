"""Data models for the ingestor module."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from artist_shares_sync.chain.events import Side, TradeEvent
from artist_shares_sync.numeric import from_price_units, from_wei, round_usd


@dataclass(frozen=True)
class Trade:
    """A normalized buy or sell of artist shares.

    `amount` is in whole tokens, `eth_value` in ETH. `price_raw` is the
    contract's micro-cent price exactly as emitted.
    """

    artist_id: int
    contract_address: str
    side: Side
    amount: Decimal
    price_raw: int
    eth_value: Decimal
    trader_address: str
    tx_hash: str
    ts: datetime
    eth_usd_rate: Decimal
    amount_usd: Decimal
    price_usd: Decimal
    block_number: int | None = None
    log_index: int | None = None

    def __post_init__(self) -> None:
        if self.amount < 0:
            raise ValueError("amount must be >= 0")
        if self.eth_value < 0:
            raise ValueError("eth_value must be >= 0")
        if self.ts.tzinfo is None:
            raise ValueError("ts must be timezone-aware")
        if not self.tx_hash:
            raise ValueError("tx_hash is required")

    @classmethod
    def from_event(cls, event: TradeEvent, *, artist_id: int, eth_usd_rate: Decimal) -> Trade:
        """Normalize a decoded trade log using the given ETH/USD rate."""
        eth_value = from_wei(event.eth_raw)
        return cls(
            artist_id=artist_id,
            contract_address=event.position.contract_address,
            side=event.side,
            amount=from_wei(event.amount_raw),
            price_raw=event.price_raw,
            eth_value=eth_value,
            trader_address=event.trader.lower(),
            tx_hash=event.position.tx_hash.lower(),
            ts=event.timestamp,
            eth_usd_rate=eth_usd_rate,
            amount_usd=round_usd(eth_value * eth_usd_rate),
            price_usd=from_price_units(event.price_raw),
            block_number=event.position.block_number,
            log_index=event.position.log_index,
        )

    def to_message(self) -> dict[str, Any]:
        """JSON-safe representation published to trade subscribers."""
        return {
            "artistId": self.artist_id,
            "contractAddress": self.contract_address,
            "side": self.side.value,
            "amount": str(self.amount),
            "priceMicroCents": str(self.price_raw),
            "ethValue": str(self.eth_value),
            "trader": self.trader_address,
            "txHash": self.tx_hash,
            "timestamp": self.ts.isoformat(),
            "amountUsd": str(self.amount_usd),
            "priceUsd": str(self.price_usd),
        }
