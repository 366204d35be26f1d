"""Durable, deduplicated record of artist share trades.

The transaction hash is the idempotency key. Insertion is a single
insert-if-absent statement against a unique index, so two writers racing
on the same hash (live stream vs. backfill) resolve to exactly one row.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from artist_shares_sync.storage.repos import TradeRepository

if TYPE_CHECKING:
    from artist_shares_sync.ingestor.models import Trade
    from artist_shares_sync.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class DuplicateTradeError(Exception):
    """Raised when a trade with the same transaction hash is already recorded."""

    def __init__(self, tx_hash: str) -> None:
        super().__init__(f"trade already recorded: {tx_hash}")
        self.tx_hash = tx_hash


class TradeLedger:
    """Append-only trade store keyed by transaction hash."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def record_trade(self, trade: Trade) -> None:
        """Persist a trade.

        Raises:
            DuplicateTradeError: If the transaction hash already exists.
        """
        async with self._db.get_async_session() as session:
            inserted = await TradeRepository(session).insert_if_absent(trade)
        if not inserted:
            raise DuplicateTradeError(trade.tx_hash)
        logger.debug(
            "Recorded %s trade artist=%s tx=%s amount=%s",
            trade.side.value,
            trade.artist_id,
            trade.tx_hash,
            trade.amount,
        )

    async def has_trade(self, tx_hash: str) -> bool:
        async with self._db.get_async_session() as session:
            return await TradeRepository(session).exists(tx_hash)

    async def trades_since(self, artist_id: int, since: datetime) -> list[Trade]:
        """Trades at or after `since`, oldest first."""
        async with self._db.get_async_session() as session:
            return await TradeRepository(session).list_since(artist_id, since)

    async def all_trades(self, artist_id: int) -> list[Trade]:
        async with self._db.get_async_session() as session:
            return await TradeRepository(session).list_since(artist_id)

    async def trade_count(self, artist_id: int) -> int:
        async with self._db.get_async_session() as session:
            return await TradeRepository(session).count(artist_id)

    async def latest_trade(self, artist_id: int) -> Trade | None:
        async with self._db.get_async_session() as session:
            return await TradeRepository(session).latest(artist_id)

    async def volume_usd_since(self, artist_id: int, since: datetime) -> Decimal:
        async with self._db.get_async_session() as session:
            return await TradeRepository(session).sum_amount_usd_since(artist_id, since)

    async def trader_volume_usd_since(self, trader_address: str, since: datetime) -> Decimal:
        async with self._db.get_async_session() as session:
            return await TradeRepository(session).sum_trader_amount_usd_since(trader_address, since)

    async def reset(self) -> None:
        """Delete all trades and candles."""
        await self._db.reset_market_data()
