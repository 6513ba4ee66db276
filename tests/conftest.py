# ==============================================================================
# Shared Test Fixtures
# ==============================================================================
"""
Pytest fixtures shared across all test modules.

Provides:
- Settings built from explicit values (independent of the environment)
- A common window of query parameters
- PostgreSQL and ClickHouse backends wired to MagicMock drivers
"""

from unittest.mock import MagicMock

import pytest

from sitemetrics.base.backend import AnalyticsBackend
from sitemetrics.infrastructure.clickhouse import ClickHouseBackend
from sitemetrics.infrastructure.postgresql import PostgreSQLBackend
from sitemetrics.utils.config import (
    AnalyticsSettings,
    ClickHouseSettings,
    PostgresSettings,
    Settings,
)

WEBSITE_ID = "6f1c1f2e-4d1b-4c53-9f4e-2b8f6c0a9d11"


@pytest.fixture()
def settings():
    """Settings with a short timeout and the relational backend selected."""
    return Settings(
        postgres=PostgresSettings(host="pg.test", database="analytics", schema_name="umami"),
        clickhouse=ClickHouseSettings(host="ch.test"),
        analytics=AnalyticsSettings(
            backend="postgresql",
            query_timeout_seconds=5.0,
            churn_lookback_days=30,
            max_workers=2,
        ),
    )


@pytest.fixture()
def window():
    """Query parameters for July 2025."""
    return {"website_id": WEBSITE_ID, "date_from": "2025-07-01", "date_to": "2025-07-31"}


@pytest.fixture()
def pg_cursor():
    """The cursor that PostgreSQLBackend executes on."""
    cursor = MagicMock()
    cursor.fetchall.return_value = []
    return cursor


@pytest.fixture()
def pg_connection(pg_cursor):
    connection = MagicMock()
    connection.closed = 0
    connection.cursor.return_value.__enter__.return_value = pg_cursor
    return connection


@pytest.fixture()
def pg_backend(settings, pg_connection):
    """A PostgreSQLBackend whose pool hands out a mock connection."""
    backend = PostgreSQLBackend(settings)
    pool = MagicMock()
    pool.getconn.return_value = pg_connection
    backend._pool = pool
    return backend


@pytest.fixture()
def ch_client():
    """The clickhouse-connect client ClickHouseBackend queries."""
    client = MagicMock()
    client.query.return_value.named_results.return_value = iter([])
    return client


@pytest.fixture()
def ch_backend(settings, ch_client):
    backend = ClickHouseBackend(settings)
    backend._client = ch_client
    return backend


@pytest.fixture()
def fake_backend():
    """A backend double for engine tests."""
    backend = MagicMock(spec=AnalyticsBackend)
    backend.name = "fake"
    return backend
