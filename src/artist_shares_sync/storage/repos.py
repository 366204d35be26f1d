"""Repository pattern implementations for data access.

This module provides data access for the artist contract registry, the
trade ledger and the OHLCV candles.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from artist_shares_sync.chain.events import Side
from artist_shares_sync.ingestor.models import Trade
from artist_shares_sync.numeric import as_utc
from artist_shares_sync.storage.models import ArtistContractModel, CandleModel, TradeModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _dialect(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


def _insert(session: AsyncSession, model: Any) -> Any:
    """Dialect-specific INSERT supporting ON CONFLICT."""
    if _dialect(session) == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


@dataclass
class ArtistContractDTO:
    """Data transfer object for the artist contract registry."""

    artist_id: int
    contract_address: str
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: ArtistContractModel) -> ArtistContractDTO:
        return cls(
            artist_id=model.artist_id,
            contract_address=model.contract_address,
            created_at=as_utc(model.created_at) if model.created_at else None,
        )


@dataclass
class CandleDTO:
    """Data transfer object for OHLCV candles."""

    artist_id: int
    timeframe: str
    period_start: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    trade_count: int
    last_side: Side

    @classmethod
    def from_model(cls, model: CandleModel) -> CandleDTO:
        return cls(
            artist_id=model.artist_id,
            timeframe=model.timeframe,
            period_start=as_utc(model.period_start),
            open=model.open,
            high=model.high,
            low=model.low,
            close=model.close,
            volume=model.volume,
            trade_count=model.trade_count,
            last_side=Side(model.last_side),
        )


def _trade_from_model(model: TradeModel) -> Trade:
    return Trade(
        artist_id=model.artist_id,
        contract_address=model.contract_address,
        side=Side(model.side),
        amount=model.amount,
        price_raw=int(model.price_raw),
        eth_value=model.eth_value,
        trader_address=model.trader_address,
        tx_hash=model.tx_hash,
        ts=as_utc(model.ts),
        eth_usd_rate=model.eth_usd_rate,
        amount_usd=model.amount_usd,
        price_usd=model.price_usd,
        block_number=model.block_number,
        log_index=model.log_index,
    )


class ArtistContractRepository:
    """Repository for the artist id <-> contract address registry."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert(self, *, artist_id: int, contract_address: str) -> ArtistContractDTO:
        values = {
            "artist_id": artist_id,
            "contract_address": contract_address.lower(),
            "created_at": datetime.now(UTC),
        }
        stmt = _insert(self.session, ArtistContractModel).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["artist_id"],
            set_={"contract_address": stmt.excluded.contract_address},
        )
        await self.session.execute(stmt)
        await self.session.flush()
        return ArtistContractDTO(artist_id=artist_id, contract_address=values["contract_address"])

    async def get_address(self, artist_id: int) -> str | None:
        result = await self.session.execute(
            select(ArtistContractModel.contract_address).where(ArtistContractModel.artist_id == artist_id)
        )
        return result.scalar_one_or_none()

    async def get_artist_id(self, contract_address: str) -> int | None:
        result = await self.session.execute(
            select(ArtistContractModel.artist_id).where(
                ArtistContractModel.contract_address == contract_address.lower()
            )
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[ArtistContractDTO]:
        result = await self.session.execute(
            select(ArtistContractModel).order_by(ArtistContractModel.artist_id.asc())
        )
        return [ArtistContractDTO.from_model(m) for m in result.scalars().all()]


class TradeRepository:
    """Repository for persisted trades."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_if_absent(self, trade: Trade) -> bool:
        """Insert a trade unless its tx hash is already recorded.

        Returns:
            True if a row was inserted, False on conflict.
        """
        values = {
            "artist_id": trade.artist_id,
            "contract_address": trade.contract_address.lower(),
            "trader_address": trade.trader_address.lower(),
            "side": trade.side.value,
            "amount": trade.amount,
            "price_raw": Decimal(trade.price_raw),
            "eth_value": trade.eth_value,
            "eth_usd_rate": trade.eth_usd_rate,
            "amount_usd": trade.amount_usd,
            "price_usd": trade.price_usd,
            "tx_hash": trade.tx_hash.lower(),
            "block_number": trade.block_number,
            "log_index": trade.log_index,
            "ts": trade.ts,
            "created_at": datetime.now(UTC),
        }
        stmt = (
            _insert(self.session, TradeModel)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["tx_hash"])
            .returning(TradeModel.id)
        )
        result = await self.session.execute(stmt)
        inserted = result.scalar_one_or_none()
        await self.session.flush()
        return inserted is not None

    async def exists(self, tx_hash: str) -> bool:
        result = await self.session.execute(
            select(TradeModel.id).where(TradeModel.tx_hash == tx_hash.lower()).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get_by_tx_hash(self, tx_hash: str) -> Trade | None:
        result = await self.session.execute(select(TradeModel).where(TradeModel.tx_hash == tx_hash.lower()))
        model = result.scalar_one_or_none()
        return _trade_from_model(model) if model else None

    async def list_since(self, artist_id: int, since: datetime | None = None) -> list[Trade]:
        """Trades for an artist in chain order: (ts, block, log index, insertion)."""
        stmt = select(TradeModel).where(TradeModel.artist_id == artist_id)
        if since is not None:
            if since.tzinfo is None:
                raise ValueError("since must be timezone-aware")
            stmt = stmt.where(TradeModel.ts >= since)
        stmt = stmt.order_by(
            TradeModel.ts.asc(), TradeModel.block_number.asc(), TradeModel.log_index.asc(), TradeModel.id.asc()
        )
        result = await self.session.execute(stmt)
        return [_trade_from_model(m) for m in result.scalars().all()]

    async def count(self, artist_id: int) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(TradeModel).where(TradeModel.artist_id == artist_id)
        )
        return int(result.scalar_one())

    async def latest(self, artist_id: int) -> Trade | None:
        result = await self.session.execute(
            select(TradeModel)
            .where(TradeModel.artist_id == artist_id)
            .order_by(TradeModel.ts.desc(), TradeModel.id.desc())
            .limit(1)
        )
        model = result.scalar_one_or_none()
        return _trade_from_model(model) if model else None

    async def sum_amount_usd_since(self, artist_id: int, since: datetime) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(TradeModel.amount_usd), 0)).where(
                (TradeModel.artist_id == artist_id) & (TradeModel.ts >= since)
            )
        )
        return Decimal(str(result.scalar_one()))

    async def sum_trader_amount_usd_since(self, trader_address: str, since: datetime) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(TradeModel.amount_usd), 0)).where(
                (TradeModel.trader_address == trader_address.lower()) & (TradeModel.ts >= since)
            )
        )
        return Decimal(str(result.scalar_one()))


class CandleRepository:
    """Repository for OHLCV candles."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_trade(
        self,
        *,
        artist_id: int,
        timeframe: str,
        period_start: datetime,
        price: Decimal,
        amount: Decimal,
        side: Side,
    ) -> None:
        """Fold one trade into its candle in a single statement.

        The conflict branch is evaluated by the database against the
        current row, so concurrent writers to the same candle cannot lose
        updates.
        """
        if period_start.tzinfo is None:
            raise ValueError("period_start must be timezone-aware")
        now = datetime.now(UTC)
        stmt = _insert(self.session, CandleModel).values(
            artist_id=artist_id,
            timeframe=timeframe,
            period_start=period_start,
            open=price,
            high=price,
            low=price,
            close=price,
            volume=amount,
            trade_count=1,
            last_side=side.value,
            updated_at=now,
        )
        if _dialect(self.session) == "postgresql":
            greatest, least = func.greatest, func.least
        else:
            greatest, least = func.max, func.min
        stmt = stmt.on_conflict_do_update(
            index_elements=["artist_id", "timeframe", "period_start"],
            set_={
                "high": greatest(CandleModel.high, stmt.excluded.high),
                "low": least(CandleModel.low, stmt.excluded.low),
                "close": stmt.excluded.close,
                "volume": CandleModel.volume + stmt.excluded.volume,
                "trade_count": CandleModel.trade_count + 1,
                "last_side": stmt.excluded.last_side,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)

    async def get(self, *, artist_id: int, timeframe: str, period_start: datetime) -> CandleDTO | None:
        result = await self.session.execute(
            select(CandleModel).where(
                (CandleModel.artist_id == artist_id)
                & (CandleModel.timeframe == timeframe)
                & (CandleModel.period_start == period_start)
            )
        )
        model = result.scalar_one_or_none()
        return CandleDTO.from_model(model) if model else None

    async def delete_for(self, *, artist_id: int, timeframe: str) -> int:
        result = await self.session.execute(
            delete(CandleModel).where((CandleModel.artist_id == artist_id) & (CandleModel.timeframe == timeframe))
        )
        return int(result.rowcount or 0)

    async def exists_for(self, *, artist_id: int, timeframe: str) -> bool:
        result = await self.session.execute(
            select(CandleModel.id)
            .where((CandleModel.artist_id == artist_id) & (CandleModel.timeframe == timeframe))
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def list_candles(
        self,
        *,
        artist_id: int,
        timeframe: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[CandleDTO]:
        """Candles ordered by period start; `limit` keeps the most recent ones."""
        stmt = select(CandleModel).where(
            (CandleModel.artist_id == artist_id) & (CandleModel.timeframe == timeframe)
        )
        if since is not None:
            stmt = stmt.where(CandleModel.period_start >= since)
        if limit is not None:
            stmt = stmt.order_by(CandleModel.period_start.desc()).limit(limit)
            result = await self.session.execute(stmt)
            return [CandleDTO.from_model(m) for m in reversed(result.scalars().all())]
        stmt = stmt.order_by(CandleModel.period_start.asc())
        result = await self.session.execute(stmt)
        return [CandleDTO.from_model(m) for m in result.scalars().all()]
