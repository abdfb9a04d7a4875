"""Configuration management service with Pydantic Settings.

This module provides centralized configuration for the swap analytics
service, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

_POSTGRES_PREFIXES = ("postgresql://", "postgresql+asyncpg://")


def _validate_postgres_url(v: str, *, name: str) -> str:
    if not v.startswith(_POSTGRES_PREFIXES):
        raise ValueError(f"{name} must be a PostgreSQL connection string")
    return v


class AnalysisDatabaseSettings(BaseSettings):
    """Analysis store (order_analysis) connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="ANALYSIS_DATABASE_URL",
        description="PostgreSQL connection string for the analysis store",
    )
    pool_size: int = Field(
        default=5,
        alias="ANALYSIS_DB_POOL_SIZE",
        ge=1,
        le=100,
    )
    query_timeout_seconds: float = Field(
        default=30.0,
        alias="ANALYSIS_DB_QUERY_TIMEOUT_SECONDS",
        gt=0,
        description="Per-statement timeout applied by the driver",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        return _validate_postgres_url(v, name="ANALYSIS_DATABASE_URL")


class SourceDatabaseSettings(BaseSettings):
    """Source store (operational order database) connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="SOURCE_DATABASE_URL",
        description="PostgreSQL connection string for the read-only source store",
    )
    pool_size: int = Field(
        default=5,
        alias="SOURCE_DB_POOL_SIZE",
        ge=1,
        le=100,
    )
    query_timeout_seconds: float = Field(
        default=60.0,
        alias="SOURCE_QUERY_TIMEOUT_SECONDS",
        gt=0,
        description="Upper bound for the completed-orders source query",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        return _validate_postgres_url(v, name="SOURCE_DATABASE_URL")


class ChainRpcSettings(BaseSettings):
    """Chain RPC endpoints used to resolve block timestamps."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    alchemy_token: SecretStr | None = Field(
        default=None,
        alias="ALCHEMY_TOKEN",
        description="API token appended to Alchemy-hosted RPC URLs",
    )
    ethereum_sepolia_url: str = Field(
        default="https://eth-sepolia.g.alchemy.com/v2/",
        alias="RPC_URL_ETHEREUM_SEPOLIA",
    )
    arbitrum_sepolia_url: str = Field(
        default="https://arb-sepolia.g.alchemy.com/v2/",
        alias="RPC_URL_ARBITRUM_SEPOLIA",
    )
    base_sepolia_url: str = Field(
        default="https://base-sepolia.g.alchemy.com/v2/",
        alias="RPC_URL_BASE_SEPOLIA",
    )
    starknet_sepolia_url: str | None = Field(
        default=None,
        alias="RPC_URL_STARKNET_SEPOLIA",
        description="Starknet RPC base URL; the Alchemy token is appended",
    )
    monad_testnet_url: str | None = Field(
        default=None,
        alias="RPC_URL_MONAD_TESTNET",
        description="Monad RPC base URL; the Alchemy token is appended",
    )
    hyperliquid_testnet_url: str = Field(
        default="https://rpc.hyperliquid-testnet.xyz/evm",
        alias="RPC_URL_HYPERLIQUID_TESTNET",
    )
    timeout_seconds: float = Field(
        default=15.0,
        alias="RPC_TIMEOUT_SECONDS",
        gt=0,
        le=300,
        description="Timeout for a single block lookup",
    )
    display_utc_offset_minutes: int = Field(
        default=330,
        alias="DISPLAY_UTC_OFFSET_MINUTES",
        ge=-720,
        le=840,
        description="Fixed UTC offset applied to resolved block times (+05:30 by default)",
    )

    @field_validator(
        "ethereum_sepolia_url",
        "arbitrum_sepolia_url",
        "base_sepolia_url",
        "starknet_sepolia_url",
        "monad_testnet_url",
        "hyperliquid_testnet_url",
    )
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate RPC URL format."""
        if v is None:
            return v
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v

    def token(self) -> str:
        return self.alchemy_token.get_secret_value() if self.alchemy_token else ""


class RedisSettings(BaseSettings):
    """Optional Redis cache for resolved block timestamps."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string; block cache disabled when unset",
    )
    block_cache_ttl_seconds: int = Field(
        default=7 * 24 * 3600,
        alias="BLOCK_CACHE_TTL_SECONDS",
        ge=60,
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class SyncSettings(BaseSettings):
    """Order sync scheduling settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    interval_seconds: int = Field(
        default=300,
        alias="SYNC_INTERVAL_SECONDS",
        ge=5,
        le=24 * 3600,
        description="Interval between sync cycles",
    )


class BackfillSettings(BaseSettings):
    """Block timestamp backfill settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    on_startup: bool = Field(
        default=True,
        alias="BACKFILL_ON_STARTUP",
        description="Run one backfill pass when the service starts",
    )
    concurrency: int = Field(
        default=4,
        alias="BACKFILL_CONCURRENCY",
        ge=1,
        le=64,
        description="Maximum records resolved concurrently",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from interchain_swap_analytics.config import get_settings

        settings = get_settings()
        print(settings.analysis_db.url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    analysis_db: AnalysisDatabaseSettings = Field(
        default_factory=lambda: AnalysisDatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    source_db: SourceDatabaseSettings = Field(
        default_factory=lambda: SourceDatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    chains: ChainRpcSettings = Field(
        default_factory=lambda: ChainRpcSettings(
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
    sync: SyncSettings = Field(
        default_factory=lambda: SyncSettings(
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

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    api_host: str = Field(
        default="0.0.0.0",
        alias="API_HOST",
    )
    api_port: int = Field(
        default=3000,
        alias="API_PORT",
        ge=1,
        le=65535,
        description="HTTP port for the analysis API",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted."""
        return {
            "analysis_database_url": self._redact_url(self.analysis_db.url),
            "source_database_url": self._redact_url(self.source_db.url),
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "chains": {
                "alchemy_token": "(set)" if self.chains.alchemy_token else "(not set)",
                "starknet_sepolia_url": self.chains.starknet_sepolia_url or "(not set)",
                "monad_testnet_url": self.chains.monad_testnet_url or "(not set)",
                "hyperliquid_testnet_url": self.chains.hyperliquid_testnet_url,
                "timeout_seconds": str(self.chains.timeout_seconds),
            },
            "sync_interval_seconds": str(self.sync.interval_seconds),
            "backfill": {
                "on_startup": str(self.backfill.on_startup),
                "concurrency": str(self.backfill.concurrency),
            },
            "log_level": self.log_level,
            "api_port": str(self.api_port),
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
