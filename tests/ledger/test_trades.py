"""Tests for the trade ledger."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from artist_shares_sync.ledger.candles import CandleAggregator
from artist_shares_sync.ledger.trades import DuplicateTradeError, TradeLedger


@pytest.fixture
def ledger(db) -> TradeLedger:
    return TradeLedger(db)


class TestRecordTrade:
    @pytest.mark.asyncio
    async def test_record_and_lookup(self, ledger, trade_factory):
        trade = trade_factory()
        await ledger.record_trade(trade)

        assert await ledger.has_trade(trade.tx_hash)
        assert await ledger.trade_count(1) == 1
        assert (await ledger.latest_trade(1)).tx_hash == trade.tx_hash

    @pytest.mark.asyncio
    async def test_duplicate_tx_hash_raises(self, ledger, trade_factory):
        trade = trade_factory(tx_hash="0xabc")
        await ledger.record_trade(trade)

        with pytest.raises(DuplicateTradeError) as exc_info:
            await ledger.record_trade(trade_factory(tx_hash="0xabc", amount="99"))

        assert exc_info.value.tx_hash == "0xabc"
        assert await ledger.trade_count(1) == 1
        trades = await ledger.all_trades(1)
        assert trades[0].amount == Decimal("10")

    @pytest.mark.asyncio
    async def test_unknown_hash(self, ledger):
        assert not await ledger.has_trade("0x" + "f" * 64)
        assert await ledger.latest_trade(1) is None


class TestQueries:
    @pytest.mark.asyncio
    async def test_trades_since_oldest_first(self, ledger, trade_factory):
        base = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
        for i in (3, 1, 2):
            await ledger.record_trade(trade_factory(tx_hash=f"0x{i:064x}", ts=base + timedelta(seconds=i)))

        trades = await ledger.trades_since(1, base)

        assert [t.ts for t in trades] == [base + timedelta(seconds=i) for i in (1, 2, 3)]

    @pytest.mark.asyncio
    async def test_volume_windows(self, ledger, trade_factory, trader_address):
        now = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)
        other = "0x" + "c" * 40
        await ledger.record_trade(trade_factory(tx_hash="0x01", amount_usd="20.00", ts=now))
        await ledger.record_trade(trade_factory(tx_hash="0x02", amount_usd="4.00", ts=now, trader=other))
        await ledger.record_trade(trade_factory(tx_hash="0x03", amount_usd="50.00", ts=now - timedelta(hours=30)))

        since = now - timedelta(hours=24)
        assert await ledger.volume_usd_since(1, since) == Decimal("24")
        assert await ledger.trader_volume_usd_since(trader_address, since) == Decimal("20")
        assert await ledger.trader_volume_usd_since(other, since) == Decimal("4")


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_clears_trades_and_candles(self, db, ledger, trade_factory):
        candles = CandleAggregator(db)
        trade = trade_factory()
        await ledger.record_trade(trade)
        await candles.apply_trade(trade)

        await ledger.reset()

        assert await ledger.trade_count(1) == 0
        assert await candles.candles(1, "1m") == []
