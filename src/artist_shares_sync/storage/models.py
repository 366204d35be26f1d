"""SQLAlchemy models for persistent storage.

This module defines the database schema for the artist contract
registry, the trade ledger and the per-timeframe OHLCV candles.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class ArtistContractModel(Base):
    """Deployed bonding-curve contract per artist."""

    __tablename__ = "artist_contracts"

    artist_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contract_address: Mapped[str] = mapped_column(String(42), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (UniqueConstraint("contract_address", name="uq_artist_contracts_address"),)


class TradeModel(Base):
    """Buy/sell events decoded from a share contract (durable truth)."""

    __tablename__ = "trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    artist_id: Mapped[int] = mapped_column(Integer, nullable=False)
    contract_address: Mapped[str] = mapped_column(String(42), nullable=False)
    trader_address: Mapped[str] = mapped_column(String(42), nullable=False)
    side: Mapped[str] = mapped_column(String(4), nullable=False)  # BUY/SELL

    # Whole tokens (already scaled down from 18 decimals).
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    # Raw uint256 price as emitted by the contract (micro-cents).
    price_raw: Mapped[Decimal] = mapped_column(Numeric(40, 0), nullable=False)
    # ETH spent (buy) or received (sell).
    eth_value: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    eth_usd_rate: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    amount_usd: Mapped[Decimal] = mapped_column(Numeric(30, 2), nullable=False)
    price_usd: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)

    tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    block_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    log_index: Mapped[int | None] = mapped_column(Integer, nullable=True)

    ts: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        UniqueConstraint("tx_hash", name="uq_trades_tx_hash"),
        Index("idx_trades_artist_ts", "artist_id", "ts"),
        Index("idx_trades_trader_ts", "trader_address", "ts"),
    )


class CandleModel(Base):
    """OHLCV candle for one artist, timeframe and period."""

    __tablename__ = "candles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    artist_id: Mapped[int] = mapped_column(Integer, nullable=False)
    timeframe: Mapped[str] = mapped_column(String(4), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    open: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    high: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    low: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    close: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    volume: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    trade_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_side: Mapped[str] = mapped_column(String(4), nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        UniqueConstraint("artist_id", "timeframe", "period_start", name="uq_candles_artist_tf_period"),
        Index("idx_candles_artist_tf_period", "artist_id", "timeframe", "period_start"),
    )
