"""Trade ledger and OHLCV candle aggregation."""

from artist_shares_sync.ledger.candles import CandleAggregator, Timeframe, candle_price
from artist_shares_sync.ledger.trades import DuplicateTradeError, TradeLedger

__all__ = [
    "CandleAggregator",
    "DuplicateTradeError",
    "Timeframe",
    "TradeLedger",
    "candle_price",
]
