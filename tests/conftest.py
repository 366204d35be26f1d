"""Pytest configuration and fixtures."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from artist_shares_sync.chain.events import Side
from artist_shares_sync.ingestor.models import Trade
from artist_shares_sync.storage.database import DatabaseManager
from artist_shares_sync.storage.models import Base

CONTRACT = "0x1234567890abcdef1234567890abcdef12345678"
TRADER = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"


@pytest.fixture
async def async_engine():
    """Create an async in-memory SQLite engine shared by every session."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def db(async_engine) -> DatabaseManager:
    """Database manager bound to the test engine."""
    return DatabaseManager(engine=async_engine)


@pytest.fixture
async def file_engine(tmp_path):
    """File-backed SQLite engine with a real pool, so sessions can run concurrently."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}",
        echo=False,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def file_db(file_engine) -> DatabaseManager:
    """Database manager whose sessions each get their own connection."""
    return DatabaseManager(engine=file_engine)


@pytest.fixture
def contract_address() -> str:
    return CONTRACT


@pytest.fixture
def trader_address() -> str:
    return TRADER


def make_trade(
    *,
    tx_hash: str = "0x" + "a" * 64,
    artist_id: int = 1,
    side: Side = Side.BUY,
    amount: str = "10",
    amount_usd: str = "10.00",
    price_usd: str = "1",
    ts: datetime | None = None,
    trader: str = TRADER,
) -> Trade:
    """Build a normalized trade with sensible defaults."""
    return Trade(
        artist_id=artist_id,
        contract_address=CONTRACT,
        side=side,
        amount=Decimal(amount),
        price_raw=int(Decimal(price_usd) * 10**8),
        eth_value=Decimal(amount_usd) / Decimal(3500),
        trader_address=trader,
        tx_hash=tx_hash,
        ts=ts or datetime(2026, 10, 19, 12, 0, 30, tzinfo=UTC),
        eth_usd_rate=Decimal(3500),
        amount_usd=Decimal(amount_usd),
        price_usd=Decimal(price_usd),
    )


@pytest.fixture
def trade_factory():
    """Factory for normalized trades."""
    return make_trade
