# ==============================================================================
# Application Configuration
# ==============================================================================
"""
Configuration management using pydantic-settings.

All configuration is loaded from environment variables, with support for
.env files via python-dotenv.

The active analytics backend (ANALYTICS_BACKEND) is read once per process.
Switching backends requires a restart.
"""

from functools import lru_cache
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file before any settings are instantiated
load_dotenv()

BackendName = Literal["postgresql", "clickhouse"]


class PostgresSettings(BaseSettings):
    """PostgreSQL connection settings (relational backend)."""

    model_config = SettingsConfigDict(env_prefix="PG_")

    host: str = Field(default="localhost", description="PostgreSQL host")
    port: int = Field(default=5432, description="PostgreSQL port")
    user: str = Field(default="umami", description="PostgreSQL username")
    password: str = Field(default="", description="PostgreSQL password")
    database: str = Field(default="umami", description="Database name")
    schema_name: str = Field(default="public", description="Schema holding the analytics tables")
    sslmode: str = Field(default="prefer", description="SSL mode")

    # Connection pool sizing
    pool_min_connections: int = Field(default=1, description="Connections opened at startup")
    pool_max_connections: int = Field(
        default=10, description="Upper bound on concurrently checked-out connections"
    )

    @property
    def connection_string(self) -> str:
        """Build PostgreSQL connection string."""
        return (
            f"postgresql://{self.user}:{self.password}@"
            f"{self.host}:{self.port}/{self.database}?sslmode={self.sslmode}"
        )


class ClickHouseSettings(BaseSettings):
    """ClickHouse connection settings (columnar backend)."""

    model_config = SettingsConfigDict(env_prefix="CLICKHOUSE_")

    host: str = Field(default="localhost", description="ClickHouse host")
    port: int = Field(default=8123, description="ClickHouse HTTP port")
    user: str = Field(default="default", description="ClickHouse username")
    password: str = Field(default="", description="ClickHouse password")
    database: str = Field(default="umami", description="Database name")
    secure: bool = Field(default=False, description="Use HTTPS")
    connect_timeout: int = Field(default=10, description="Connect timeout in seconds")


class AnalyticsSettings(BaseSettings):
    """Query engine settings."""

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_")

    backend: BackendName = Field(
        default="postgresql",
        description="Active backend (postgresql, clickhouse); fixed for the process lifetime",
    )
    query_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Per-query deadline; the backend aborts statements that exceed it",
    )
    churn_lookback_days: int = Field(
        default=365,
        ge=0,
        description="How far before date_from sessions are scanned for churn input rows",
    )
    max_workers: int = Field(
        default=4,
        ge=1,
        description="Thread pool size used when several metrics are gathered together",
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        extra="ignore",
    )

    # Nested settings
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    clickhouse: ClickHouseSettings = Field(default_factory=ClickHouseSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)

    # General settings
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    @property
    def effective_log_level(self) -> str:
        """Logging level, forced to DEBUG when debug mode is on."""
        return "DEBUG" if self.debug else self.log_level.upper()

    def backend_host(self, backend: Optional[BackendName] = None) -> str:
        """Host of the given (or active) backend, used in status output."""
        backend = backend or self.analytics.backend
        if backend == "clickhouse":
            return f"{self.clickhouse.host}:{self.clickhouse.port}"
        return f"{self.postgres.host}:{self.postgres.port}"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for subsequent calls.
    """
    return Settings()
