"""Data models for financial snapshots."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from artist_shares_sync.financials.formatting import format_usd

if TYPE_CHECKING:
    from artist_shares_sync.config import FallbackSettings

_ZERO = Decimal(0)
_FULL = Decimal(100)


@dataclass(frozen=True)
class FallbackPolicy:
    """Values substituted when the oracle or the contract has nothing usable."""

    reserve_usd_rate: Decimal = Decimal("3500")
    price_usd: Decimal = Decimal("0.0000005")
    target_reserve: Decimal = Decimal("19.7")

    @classmethod
    def from_settings(cls, settings: FallbackSettings) -> FallbackPolicy:
        return cls(
            reserve_usd_rate=settings.reserve_usd_rate,
            price_usd=settings.price_usd,
            target_reserve=settings.target_reserve,
        )


def next_utc_midnight(now: datetime) -> datetime:
    """The daily liquidity reset following `now`."""
    day = now.astimezone(UTC).date() + timedelta(days=1)
    return datetime(day.year, day.month, day.day, tzinfo=UTC)


@dataclass(frozen=True)
class FinancialSnapshot:
    """Point-in-time financial view of one artist's shares."""

    artist_id: int
    current_price_usd: Decimal
    volume_24h_usd: Decimal
    market_cap_usd: Decimal
    daily_liquidity_usd: Decimal
    liquidity_percentage: Decimal
    available_supply: int
    next_reset: datetime | None
    reserve_locked_usd: Decimal
    computed_at: datetime
    degraded: bool = False

    @classmethod
    def placeholder(cls, artist_id: int, *, now: datetime | None = None) -> FinancialSnapshot:
        """All-zero snapshot for artists without a deployed contract."""
        return cls(
            artist_id=artist_id,
            current_price_usd=_ZERO,
            volume_24h_usd=_ZERO,
            market_cap_usd=_ZERO,
            daily_liquidity_usd=_ZERO,
            liquidity_percentage=_FULL,
            available_supply=0,
            next_reset=None,
            reserve_locked_usd=_ZERO,
            computed_at=now or datetime.now(UTC),
        )

    def as_degraded(self) -> FinancialSnapshot:
        return replace(self, degraded=True)

    def to_dict(self) -> dict[str, Any]:
        """Lossless JSON-safe payload (cache format)."""
        return {
            "artist_id": self.artist_id,
            "current_price_usd": str(self.current_price_usd),
            "volume_24h_usd": str(self.volume_24h_usd),
            "market_cap_usd": str(self.market_cap_usd),
            "daily_liquidity_usd": str(self.daily_liquidity_usd),
            "liquidity_percentage": str(self.liquidity_percentage),
            "available_supply": self.available_supply,
            "next_reset": self.next_reset.isoformat() if self.next_reset else None,
            "reserve_locked_usd": str(self.reserve_locked_usd),
            "computed_at": self.computed_at.isoformat(),
            "degraded": self.degraded,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FinancialSnapshot:
        next_reset = data.get("next_reset")
        return cls(
            artist_id=int(data["artist_id"]),
            current_price_usd=Decimal(data["current_price_usd"]),
            volume_24h_usd=Decimal(data["volume_24h_usd"]),
            market_cap_usd=Decimal(data["market_cap_usd"]),
            daily_liquidity_usd=Decimal(data["daily_liquidity_usd"]),
            liquidity_percentage=Decimal(data["liquidity_percentage"]),
            available_supply=int(data["available_supply"]),
            next_reset=datetime.fromisoformat(next_reset) if next_reset else None,
            reserve_locked_usd=Decimal(data["reserve_locked_usd"]),
            computed_at=datetime.fromisoformat(data["computed_at"]),
            degraded=bool(data.get("degraded", False)),
        )

    def to_message(self) -> dict[str, Any]:
        """Payload published to financial subscribers."""
        return {
            "artistId": self.artist_id,
            "currentPrice": format_usd(self.current_price_usd),
            "volume24h": format_usd(self.volume_24h_usd),
            "marketCap": format_usd(self.market_cap_usd),
            "dailyLiquidity": float(self.daily_liquidity_usd),
            "liquidityPercentage": float(self.liquidity_percentage),
            "availableSupply": self.available_supply,
            "nextReset": self.next_reset.isoformat() if self.next_reset else None,
            "ethInCurveUsd": float(self.reserve_locked_usd),
            "degraded": self.degraded,
        }
