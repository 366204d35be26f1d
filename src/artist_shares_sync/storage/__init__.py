"""Storage layer - Database schemas and repositories."""

from artist_shares_sync.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from artist_shares_sync.storage.models import (
    ArtistContractModel,
    Base,
    CandleModel,
    TradeModel,
)
from artist_shares_sync.storage.repos import (
    ArtistContractDTO,
    ArtistContractRepository,
    CandleDTO,
    CandleRepository,
    TradeRepository,
)

__all__ = [
    "ArtistContractDTO",
    "ArtistContractModel",
    "ArtistContractRepository",
    "Base",
    "CandleDTO",
    "CandleModel",
    "CandleRepository",
    "DatabaseManager",
    "TradeModel",
    "TradeRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
