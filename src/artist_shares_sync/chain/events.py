"""Decoding of raw share-contract logs into typed events.

Logs arrive as the dicts returned by `eth_getLogs`. All non-indexed
parameters of the events we consume are uint256, so the data payload is
read as consecutive 32-byte words.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from artist_shares_sync.chain.abi import (
    CURVE_COMPLETED_TOPIC,
    DAILY_SELL_LIMIT_UPDATED_TOPIC,
    SHARES_BOUGHT_TOPIC,
    SHARES_SOLD_TOPIC,
)

logger = logging.getLogger(__name__)

_WORD_HEX_CHARS = 64


class Side(str, Enum):
    """Trade direction relative to the curve."""

    BUY = "BUY"
    SELL = "SELL"


class EventDecodeError(ValueError):
    """Raised when a log carries a known topic but a malformed payload."""


def to_hex(value: Any) -> str:
    """Normalize HexBytes/bytes/str into a lower-case 0x-prefixed string."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return "0x" + bytes(value).hex()
    hexed = value.hex() if hasattr(value, "hex") and not isinstance(value, str) else str(value)
    if not hexed.startswith("0x"):
        hexed = "0x" + hexed
    return hexed.lower()


def _topic_to_address(topic: Any) -> str:
    return ("0x" + to_hex(topic)[2:][-40:]).lower()


def _data_words(data: Any) -> list[int]:
    payload = to_hex(data)[2:]
    if len(payload) % _WORD_HEX_CHARS:
        raise EventDecodeError(f"log data is not word aligned ({len(payload)} hex chars)")
    return [
        int(payload[i : i + _WORD_HEX_CHARS], 16) for i in range(0, len(payload), _WORD_HEX_CHARS)
    ]


@dataclass(frozen=True)
class LogPosition:
    """Where an event sits on chain."""

    contract_address: str
    tx_hash: str
    block_number: int
    log_index: int


@dataclass(frozen=True)
class TradeEvent:
    """SharesBought / SharesSold with raw on-chain integers."""

    position: LogPosition
    side: Side
    trader: str
    amount_raw: int
    price_raw: int
    eth_raw: int
    timestamp: datetime


@dataclass(frozen=True)
class SellLimitUpdatedEvent:
    position: LogPosition
    new_limit_raw: int
    timestamp: datetime


@dataclass(frozen=True)
class CurveCompletedEvent:
    position: LogPosition
    eth_liquidity_raw: int
    token_liquidity_raw: int


ContractEvent = TradeEvent | SellLimitUpdatedEvent | CurveCompletedEvent


def _position(log: dict[str, Any]) -> LogPosition:
    return LogPosition(
        contract_address=str(log["address"]).lower(),
        tx_hash=to_hex(log["transactionHash"]),
        block_number=int(log.get("blockNumber") or 0),
        log_index=int(log.get("logIndex") or 0),
    )


def decode_log(log: dict[str, Any]) -> ContractEvent | None:
    """Decode a share-contract log.

    Returns:
        The typed event, or None when the topic is not one we consume.

    Raises:
        EventDecodeError: If the topic is known but the payload is malformed.
    """
    topics = log.get("topics") or []
    if not topics:
        return None
    topic0 = to_hex(topics[0])

    if topic0 in (SHARES_BOUGHT_TOPIC, SHARES_SOLD_TOPIC):
        if len(topics) < 2:
            raise EventDecodeError("trade log is missing the trader topic")
        words = _data_words(log.get("data", b""))
        if len(words) < 4:
            raise EventDecodeError(f"trade log has {len(words)} data words, expected 4")
        amount, price, eth, ts = words[:4]
        return TradeEvent(
            position=_position(log),
            side=Side.BUY if topic0 == SHARES_BOUGHT_TOPIC else Side.SELL,
            trader=_topic_to_address(topics[1]),
            amount_raw=amount,
            price_raw=price,
            eth_raw=eth,
            timestamp=datetime.fromtimestamp(ts, tz=UTC),
        )

    if topic0 == DAILY_SELL_LIMIT_UPDATED_TOPIC:
        words = _data_words(log.get("data", b""))
        if len(words) < 2:
            raise EventDecodeError("DailySellLimitUpdated log has too few data words")
        return SellLimitUpdatedEvent(
            position=_position(log),
            new_limit_raw=words[0],
            timestamp=datetime.fromtimestamp(words[1], tz=UTC),
        )

    if topic0 == CURVE_COMPLETED_TOPIC:
        words = _data_words(log.get("data", b""))
        if len(words) < 2:
            raise EventDecodeError("CurveCompleted log has too few data words")
        return CurveCompletedEvent(
            position=_position(log),
            eth_liquidity_raw=words[0],
            token_liquidity_raw=words[1],
        )

    logger.debug("Ignoring log with unknown topic %s", topic0)
    return None
