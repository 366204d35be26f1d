"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
artist shares sync engine, loading and validating environment variables
at startup.
"""

from __future__ import annotations

import logging
import re
from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (or SQLite for local runs) connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string (snapshot cache and broadcast channels)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class ChainSettings(BaseSettings):
    """Blockchain RPC settings."""

    model_config = SettingsConfigDict(env_prefix="CHAIN_", extra="ignore")

    rpc_url: str = Field(
        default="http://localhost:8545",
        alias="CHAIN_RPC_URL",
        description="Primary JSON-RPC endpoint",
    )
    fallback_rpc_url: str | None = Field(
        default=None,
        alias="CHAIN_FALLBACK_RPC_URL",
        description="Fallback JSON-RPC endpoint",
    )
    call_timeout_seconds: float = Field(
        default=30.0,
        alias="CHAIN_CALL_TIMEOUT_SECONDS",
        gt=0.0,
        le=600.0,
        description="Upper bound on a single chain call",
    )
    poll_interval_seconds: float = Field(
        default=2.0,
        alias="CHAIN_POLL_INTERVAL_SECONDS",
        gt=0.0,
        le=300.0,
        description="How often each contract log stream polls for new blocks",
    )
    max_requests_per_second: int = Field(
        default=25,
        alias="CHAIN_MAX_REQUESTS_PER_SECOND",
        ge=1,
        le=1000,
        description="Client-side RPC rate limit",
    )
    logs_chunk_size_blocks: int = Field(
        default=10_000,
        alias="CHAIN_LOGS_CHUNK_SIZE_BLOCKS",
        ge=100,
        le=500_000,
        description="Block chunk size for eth_getLogs scans",
    )
    stream_replay_blocks: int = Field(
        default=100,
        alias="CHAIN_STREAM_REPLAY_BLOCKS",
        ge=0,
        le=100_000,
        description="Blocks before the head a new log stream starts from (duplicates are dropped)",
    )
    poa: bool = Field(
        default=False,
        alias="CHAIN_POA",
        description="Inject the proof-of-authority extraData middleware",
    )
    factory_address: str | None = Field(
        default=None,
        alias="CHAIN_FACTORY_ADDRESS",
        description="Share contract factory; its deployed contracts are registered at startup",
    )
    factory_from_block: int = Field(
        default=0,
        alias="CHAIN_FACTORY_FROM_BLOCK",
        ge=0,
        description="First block scanned for factory creation logs",
    )

    @field_validator("factory_address")
    @classmethod
    def validate_factory_address(cls, v: str | None) -> str | None:
        """Validate and lower-case the factory address."""
        if v is None or not v.strip():
            return None
        if not _ADDRESS_RE.match(v.strip()):
            raise ValueError("CHAIN_FACTORY_ADDRESS must be a 0x-prefixed 20-byte hex address")
        return v.strip().lower()

    @field_validator("rpc_url", "fallback_rpc_url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v


class BackfillSettings(BaseSettings):
    """Startup backfill of historical trades and candles."""

    model_config = SettingsConfigDict(env_prefix="BACKFILL_", extra="ignore")

    enabled: bool = Field(
        default=True,
        alias="BACKFILL_ENABLED",
        description="Scan historical logs for contracts without recorded trades",
    )
    days: int = Field(
        default=30,
        alias="BACKFILL_DAYS",
        ge=1,
        le=3650,
        description="Lookback window for the historical scan",
    )
    blocks_per_day: int = Field(
        default=5760,
        alias="BACKFILL_BLOCKS_PER_DAY",
        ge=1,
        le=1_000_000,
        description="Approximate chain blocks produced per day",
    )
    timeout_seconds: float = Field(
        default=60.0,
        alias="BACKFILL_TIMEOUT_SECONDS",
        gt=0.0,
        le=3600.0,
        description="How long startup waits for backfill before subscribing",
    )

    @property
    def lookback_blocks(self) -> int:
        return self.days * self.blocks_per_day


class FallbackSettings(BaseSettings):
    """Fallback values used when oracle or contract reads are unavailable."""

    model_config = SettingsConfigDict(env_prefix="FALLBACK_", extra="ignore")

    reserve_usd_rate: Decimal = Field(
        default=Decimal("3500"),
        alias="FALLBACK_RESERVE_USD_RATE",
        description="ETH/USD rate used when the on-chain oracle read fails",
    )
    price_usd: Decimal = Field(
        default=Decimal("0.0000005"),
        alias="FALLBACK_PRICE_USD",
        description="Display price used when the contract reports zero",
    )
    target_reserve: Decimal = Field(
        default=Decimal("19.7"),
        alias="FALLBACK_TARGET_RESERVE",
        description="Reserve (ETH) at which the curve is considered complete",
    )

    @field_validator("reserve_usd_rate", "target_reserve")
    @classmethod
    def validate_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("fallback rate and target reserve must be > 0")
        return v


class SnapshotSettings(BaseSettings):
    """Financial snapshot caching."""

    model_config = SettingsConfigDict(env_prefix="SNAPSHOT_", extra="ignore")

    cache_ttl_seconds: int = Field(
        default=300,
        alias="SNAPSHOT_CACHE_TTL_SECONDS",
        ge=1,
        le=86_400,
        description="Redis TTL for a fresh financial snapshot",
    )
    trader_volume_cache_ttl_seconds: int = Field(
        default=300,
        alias="SNAPSHOT_TRADER_VOLUME_CACHE_TTL_SECONDS",
        ge=1,
        le=86_400,
        description="Redis TTL for a trader's cached 24h volume",
    )


class BroadcastSettings(BaseSettings):
    """Broadcast channel settings."""

    model_config = SettingsConfigDict(env_prefix="BROADCAST_", extra="ignore")

    channel_prefix: str = Field(
        default="artist-shares:",
        alias="BROADCAST_CHANNEL_PREFIX",
        description="Prefix for Redis pub/sub channel names",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from artist_shares_sync.config import get_settings

        settings = get_settings()
        print(settings.database.url)
        print(settings.chain.rpc_url)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    chain: ChainSettings = Field(
        default_factory=lambda: ChainSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    backfill: BackfillSettings = Field(
        default_factory=lambda: BackfillSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    fallback: FallbackSettings = Field(
        default_factory=lambda: FallbackSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    snapshot: SnapshotSettings = Field(
        default_factory=lambda: SnapshotSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    broadcast: BroadcastSettings = Field(
        default_factory=lambda: BroadcastSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dev_mode: bool = Field(
        default=False,
        alias="DEV_MODE",
        description="Wipe trades and candles at startup for a clean resync",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Ingest without publishing to broadcast channels",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "chain": {
                "rpc_url": self._redact_url(self.chain.rpc_url),
                "fallback_rpc_url": (
                    self._redact_url(self.chain.fallback_rpc_url)
                    if self.chain.fallback_rpc_url
                    else "(not set)"
                ),
                "call_timeout_seconds": str(self.chain.call_timeout_seconds),
                "poll_interval_seconds": str(self.chain.poll_interval_seconds),
                "factory_address": self.chain.factory_address or "(not set)",
            },
            "backfill": {
                "enabled": str(self.backfill.enabled),
                "lookback_blocks": str(self.backfill.lookback_blocks),
                "timeout_seconds": str(self.backfill.timeout_seconds),
            },
            "fallback": {
                "reserve_usd_rate": str(self.fallback.reserve_usd_rate),
                "price_usd": str(self.fallback.price_usd),
                "target_reserve": str(self.fallback.target_reserve),
            },
            "broadcast_channel_prefix": self.broadcast.channel_prefix,
            "log_level": self.log_level,
            "dev_mode": str(self.dev_mode),
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
