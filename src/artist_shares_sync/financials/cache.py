"""Redis-backed cache for financial snapshots and trader volumes.

Redis failures are logged and treated as cache misses. Without a Redis
client the cache is disabled and every read recomputes.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal

from redis.asyncio import Redis

from artist_shares_sync.financials.models import FinancialSnapshot

logger = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_CACHE_TTL = 300
DEFAULT_TRADER_VOLUME_CACHE_TTL = 300


class SnapshotCache:
    """Fresh-value cache keyed by artist id (snapshots) or wallet (volumes)."""

    def __init__(
        self,
        redis: Redis | None = None,
        *,
        snapshot_ttl_seconds: int = DEFAULT_SNAPSHOT_CACHE_TTL,
        trader_volume_ttl_seconds: int = DEFAULT_TRADER_VOLUME_CACHE_TTL,
        key_prefix: str = "artist-shares:",
    ) -> None:
        self._redis = redis
        self._snapshot_ttl = snapshot_ttl_seconds
        self._trader_volume_ttl = trader_volume_ttl_seconds
        self._prefix = key_prefix

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    def _snapshot_key(self, artist_id: int) -> str:
        return f"{self._prefix}snapshot:{artist_id}"

    def _trader_volume_key(self, address: str) -> str:
        return f"{self._prefix}trader_volume:{address.lower()}"

    async def _get(self, key: str) -> str | None:
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
        except Exception as e:
            logger.warning("Cache get failed for %s: %s", key, e)
            return None
        if value is None:
            return None
        return value.decode() if isinstance(value, bytes) else str(value)

    async def _set(self, key: str, value: str, ttl: int) -> None:
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=ttl)
        except Exception as e:
            logger.warning("Cache set failed for %s: %s", key, e)

    async def _delete(self, key: str) -> None:
        if not self._redis:
            return
        try:
            await self._redis.delete(key)
        except Exception as e:
            logger.warning("Cache delete failed for %s: %s", key, e)

    async def get_snapshot(self, artist_id: int) -> FinancialSnapshot | None:
        cached = await self._get(self._snapshot_key(artist_id))
        if cached is None:
            return None
        try:
            return FinancialSnapshot.from_dict(json.loads(cached))
        except Exception as e:
            logger.warning("Failed to parse cached snapshot for artist=%s: %s", artist_id, e)
            return None

    async def put_snapshot(self, snapshot: FinancialSnapshot) -> None:
        await self._set(
            self._snapshot_key(snapshot.artist_id),
            json.dumps(snapshot.to_dict()),
            self._snapshot_ttl,
        )

    async def invalidate_snapshot(self, artist_id: int) -> None:
        await self._delete(self._snapshot_key(artist_id))

    async def get_trader_volume(self, address: str) -> Decimal | None:
        cached = await self._get(self._trader_volume_key(address))
        if cached is None:
            return None
        try:
            return Decimal(cached)
        except ArithmeticError as e:
            logger.warning("Failed to parse cached trader volume for %s: %s", address, e)
            return None

    async def put_trader_volume(self, address: str, volume: Decimal) -> None:
        await self._set(self._trader_volume_key(address), str(volume), self._trader_volume_ttl)

    async def invalidate_trader_volume(self, address: str) -> None:
        await self._delete(self._trader_volume_key(address))

    async def clear(self) -> int:
        """Drop every cached snapshot and trader volume.

        Returns:
            Number of keys removed.
        """
        if not self._redis:
            return 0
        removed = 0
        try:
            for pattern in (f"{self._prefix}snapshot:*", f"{self._prefix}trader_volume:*"):
                keys = [key async for key in self._redis.scan_iter(match=pattern)]
                if keys:
                    removed += int(await self._redis.delete(*keys))
        except Exception as e:
            logger.warning("Cache clear failed: %s", e)
        return removed
