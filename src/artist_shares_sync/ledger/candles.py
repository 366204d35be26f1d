"""Multi-timeframe OHLCV candles derived from the trade ledger.

Every trade is folded into one candle per supported timeframe. The candle
key is (artist, timeframe, period start) where the period start is the
trade time floored to the timeframe interval in UTC epoch seconds.
Live updates and backfill go through the same upsert, so replaying the
ledger in order yields the same candles as live ingestion did.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from artist_shares_sync.storage.repos import CandleDTO, CandleRepository, TradeRepository

if TYPE_CHECKING:
    from artist_shares_sync.ingestor.models import Trade
    from artist_shares_sync.storage.database import DatabaseManager

logger = logging.getLogger(__name__)

_PRICE_QUANTUM = Decimal("1e-18")


class Timeframe(str, Enum):
    """Supported candle intervals."""

    M1 = "1m"
    M5 = "5m"
    M15 = "15m"
    M30 = "30m"
    H1 = "1H"
    H4 = "4H"
    D1 = "1D"
    W1 = "1W"

    @property
    def seconds(self) -> int:
        return _INTERVAL_SECONDS[self]

    @classmethod
    def parse(cls, label: str | Timeframe) -> Timeframe:
        """Parse a label such as "1m", "4h" or "1D" (case-insensitive for hours/days/weeks)."""
        if isinstance(label, Timeframe):
            return label
        text = str(label).strip()
        for tf in cls:
            if tf.value == text:
                return tf
        # "1h" / "1d" / "1w" are accepted; "1M" stays ambiguous and is rejected.
        if text and text[-1] in "hdwHDW":
            upper = text[:-1] + text[-1].upper()
            for tf in cls:
                if tf.value == upper:
                    return tf
        raise ValueError(f"unknown timeframe: {label!r}")

    def period_start(self, ts: datetime) -> datetime:
        """Floor `ts` to the start of its period (UTC)."""
        if ts.tzinfo is None:
            raise ValueError("ts must be timezone-aware")
        epoch = int(ts.timestamp())
        return datetime.fromtimestamp(epoch - epoch % self.seconds, tz=UTC)


_INTERVAL_SECONDS = {
    Timeframe.M1: 60,
    Timeframe.M5: 300,
    Timeframe.M15: 900,
    Timeframe.M30: 1800,
    Timeframe.H1: 3600,
    Timeframe.H4: 14_400,
    Timeframe.D1: 86_400,
    Timeframe.W1: 604_800,
}


def candle_price(trade: Trade) -> Decimal:
    """Price a trade contributes to OHLC.

    The realized average USD price per token when it can be derived,
    otherwise the price the contract emitted.
    """
    if trade.amount > 0 and trade.amount_usd > 0:
        return (trade.amount_usd / trade.amount).quantize(_PRICE_QUANTUM)
    return trade.price_usd


async def _replay(repo: CandleRepository, tf: Timeframe, trades: list[Trade]) -> None:
    for trade in trades:
        await repo.upsert_trade(
            artist_id=trade.artist_id,
            timeframe=tf.value,
            period_start=tf.period_start(trade.ts),
            price=candle_price(trade),
            amount=trade.amount,
            side=trade.side,
        )


class CandleAggregator:
    """Maintains candles for every timeframe from individual trades."""

    def __init__(self, db: DatabaseManager, timeframes: tuple[Timeframe, ...] = tuple(Timeframe)) -> None:
        self._db = db
        self._timeframes = timeframes

    @property
    def timeframes(self) -> tuple[Timeframe, ...]:
        return self._timeframes

    async def apply_trade(self, trade: Trade) -> int:
        """Fold a trade into its candle for every timeframe.

        A failure on one timeframe is logged and does not stop the others.

        Returns:
            Number of timeframes updated.
        """
        price = candle_price(trade)
        updated = 0
        for tf in self._timeframes:
            try:
                async with self._db.get_async_session() as session:
                    await CandleRepository(session).upsert_trade(
                        artist_id=trade.artist_id,
                        timeframe=tf.value,
                        period_start=tf.period_start(trade.ts),
                        price=price,
                        amount=trade.amount,
                        side=trade.side,
                    )
                updated += 1
            except Exception as e:
                logger.error(
                    "Candle update failed artist=%s timeframe=%s tx=%s: %s",
                    trade.artist_id,
                    tf.value,
                    trade.tx_hash,
                    e,
                )
        return updated

    async def backfill(self, artist_id: int) -> int:
        """Rebuild candles from the ledger for timeframes that have none.

        Returns:
            Number of timeframes rebuilt.
        """
        async with self._db.get_async_session() as session:
            trades = await TradeRepository(session).list_since(artist_id)
        if not trades:
            logger.info("No trades to backfill candles for artist=%s", artist_id)
            return 0

        rebuilt = 0
        for tf in self._timeframes:
            try:
                async with self._db.get_async_session() as session:
                    repo = CandleRepository(session)
                    if await repo.exists_for(artist_id=artist_id, timeframe=tf.value):
                        logger.debug("Candles already present artist=%s timeframe=%s", artist_id, tf.value)
                        continue
                    await _replay(repo, tf, trades)
                rebuilt += 1
            except Exception as e:
                logger.error("Candle backfill failed artist=%s timeframe=%s: %s", artist_id, tf.value, e)
        logger.info(
            "Backfilled candles artist=%s trades=%d timeframes=%d",
            artist_id,
            len(trades),
            rebuilt,
        )
        return rebuilt

    async def rebuild(self, artist_id: int) -> int:
        """Replace every timeframe's candles with a replay of the ledger.

        Each timeframe is deleted and replayed in one transaction, so
        readers never see it half built.

        Returns:
            Number of timeframes rebuilt.
        """
        async with self._db.get_async_session() as session:
            trades = await TradeRepository(session).list_since(artist_id)
        if not trades:
            logger.info("No trades to rebuild candles for artist=%s", artist_id)
            return 0

        rebuilt = 0
        for tf in self._timeframes:
            try:
                async with self._db.get_async_session() as session:
                    repo = CandleRepository(session)
                    await repo.delete_for(artist_id=artist_id, timeframe=tf.value)
                    await _replay(repo, tf, trades)
                rebuilt += 1
            except Exception as e:
                logger.error("Candle rebuild failed artist=%s timeframe=%s: %s", artist_id, tf.value, e)
        logger.info("Rebuilt candles artist=%s trades=%d timeframes=%d", artist_id, len(trades), rebuilt)
        return rebuilt

    async def candles(
        self,
        artist_id: int,
        timeframe: Timeframe | str,
        *,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[CandleDTO]:
        """Candles for one timeframe, oldest period first."""
        tf = Timeframe.parse(timeframe)
        async with self._db.get_async_session() as session:
            return await CandleRepository(session).list_candles(
                artist_id=artist_id,
                timeframe=tf.value,
                since=since,
                limit=limit,
            )
