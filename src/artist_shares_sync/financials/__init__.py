"""Financial snapshots - computation, caching and formatting."""

from artist_shares_sync.financials.cache import SnapshotCache
from artist_shares_sync.financials.formatting import format_usd
from artist_shares_sync.financials.models import FallbackPolicy, FinancialSnapshot
from artist_shares_sync.financials.snapshot import (
    FinancialSnapshotComputer,
    NotConfiguredError,
    TraderVolumeService,
)

__all__ = [
    "FallbackPolicy",
    "FinancialSnapshot",
    "FinancialSnapshotComputer",
    "NotConfiguredError",
    "SnapshotCache",
    "TraderVolumeService",
    "format_usd",
]
