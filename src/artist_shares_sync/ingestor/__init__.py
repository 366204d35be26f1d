"""Ingestion layer - contract log streams, subscriptions and backfill."""

from artist_shares_sync.ingestor.models import Trade

__all__ = ["Trade"]
