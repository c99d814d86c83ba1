"""Indexer configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


SUPPORTED_BACKENDS = frozenset({"postgresql", "sqlite"})


class Settings(BaseSettings):
    """Indexer settings loaded from environment variables and .env file.

    DATABASE_URL and SUIMEET_PACKAGE_ID have no defaults: constructing
    Settings without them raises a ValidationError, which the entry point
    treats as fatal. DATABASE_URL must name a PostgreSQL or SQLite backend.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Database
    DATABASE_URL: str

    # Sui
    SUI_NETWORK: str = "testnet"
    SUI_RPC_URL: str = "https://fullnode.testnet.sui.io:443"
    SUIMEET_PACKAGE_ID: str
    SUIMEET_MODULE: str = "sealmeet"

    # Ingestion
    CHECKPOINT_BUFFER_SIZE: int = Field(default=5000, ge=1)
    INGEST_CONCURRENCY: int = Field(default=200, ge=1)
    RETRY_INTERVAL_MS: int = Field(default=200, ge=0)

    # Checkpoint range (optional)
    FIRST_CHECKPOINT: int | None = Field(default=None, ge=0)
    LAST_CHECKPOINT: int | None = Field(default=None, ge=0)

    # RPC client
    RPC_TIMEOUT: float = 30.0
    RPC_MAX_RETRIES: int = Field(default=3, ge=1)
    RPC_MAX_IN_FLIGHT: int | None = Field(default=None, ge=1)

    # Dead-letter ledger
    DEAD_LETTER_MAX_ATTEMPTS: int = Field(default=5, ge=1)

    # Watermark row key
    INDEXER_NAME: str = "suimeet"

    # Environment / logging
    ENVIRONMENT: Environment = Environment.development
    LOG_LEVEL: str = "INFO"

    # Monitoring
    METRICS_PORT: int = 0  # 0 disables the Prometheus exporter
    SENTRY_DSN: str = ""

    @field_validator("DATABASE_URL", "SUI_RPC_URL", "SUIMEET_PACKAGE_ID")
    @classmethod
    def _require_non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("DATABASE_URL")
    @classmethod
    def _supported_backend(cls, value: str) -> str:
        try:
            backend = make_url(value).get_backend_name()
        except ArgumentError as exc:
            raise ValueError(f"not a database URL: {exc}") from exc
        if backend not in SUPPORTED_BACKENDS:
            raise ValueError(f"unsupported database backend: {backend}")
        return value

    @field_validator("FIRST_CHECKPOINT", "LAST_CHECKPOINT", "RPC_MAX_IN_FLIGHT", mode="before")
    @classmethod
    def _blank_as_unset(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def retry_interval_seconds(self) -> float:
        return self.RETRY_INTERVAL_MS / 1000

    @property
    def rpc_max_in_flight(self) -> int:
        """Bound on concurrent RPC requests; defaults to INGEST_CONCURRENCY."""
        return self.RPC_MAX_IN_FLIGHT or self.INGEST_CONCURRENCY


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
