"""Push notifications for trades and financial snapshots.

Subscribers listen on per-artist Redis pub/sub channels:

- ``{prefix}trades:{artist_id}``
- ``{prefix}financials:{artist_id}``
- ``{prefix}curve-completed:{artist_id}``

Publishing is best effort: failures are logged and never propagate into
ingestion.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Protocol

from redis.asyncio import Redis

if TYPE_CHECKING:
    from artist_shares_sync.financials.models import FinancialSnapshot
    from artist_shares_sync.ingestor.models import Trade

logger = logging.getLogger(__name__)


class BroadcastSink(Protocol):
    async def publish_trade(self, artist_id: int, trade: Trade) -> None: ...

    async def publish_snapshot(self, artist_id: int, snapshot: FinancialSnapshot) -> None: ...

    async def publish_curve_completed(self, artist_id: int, message: dict[str, Any]) -> None: ...


class NullBroadcastSink:
    """Sink used in dry-run mode; only logs."""

    async def publish_trade(self, artist_id: int, trade: Trade) -> None:
        logger.debug("[dry-run] trade artist=%s tx=%s", artist_id, trade.tx_hash)

    async def publish_snapshot(self, artist_id: int, snapshot: FinancialSnapshot) -> None:
        logger.debug("[dry-run] snapshot artist=%s degraded=%s", artist_id, snapshot.degraded)

    async def publish_curve_completed(self, artist_id: int, message: dict[str, Any]) -> None:
        logger.debug("[dry-run] curve completed artist=%s", artist_id)


class RedisBroadcastSink:
    """Publishes JSON messages to Redis pub/sub channels."""

    def __init__(self, redis: Redis, *, channel_prefix: str = "artist-shares:") -> None:
        self._redis = redis
        self._prefix = channel_prefix
        self.published = 0
        self.failed = 0

    def channel(self, kind: str, artist_id: int) -> str:
        return f"{self._prefix}{kind}:{artist_id}"

    async def _publish(self, kind: str, artist_id: int, payload: dict[str, Any]) -> None:
        channel = self.channel(kind, artist_id)
        try:
            await self._redis.publish(channel, json.dumps(payload))
            self.published += 1
        except Exception as e:
            self.failed += 1
            logger.warning("Broadcast to %s failed: %s", channel, e)

    async def publish_trade(self, artist_id: int, trade: Trade) -> None:
        await self._publish("trades", artist_id, trade.to_message())

    async def publish_snapshot(self, artist_id: int, snapshot: FinancialSnapshot) -> None:
        await self._publish("financials", artist_id, snapshot.to_message())

    async def publish_curve_completed(self, artist_id: int, message: dict[str, Any]) -> None:
        await self._publish("curve-completed", artist_id, message)
