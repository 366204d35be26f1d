"""Artist shares sync engine.

Ingests bonding-curve trade events from chain, keeps a deduplicated trade
ledger and multi-timeframe candles, and serves cached financial snapshots.
"""

__version__ = "0.1.0"
