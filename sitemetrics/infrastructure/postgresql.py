# ==============================================================================
# PostgreSQL Backend
# ==============================================================================
"""
Relational implementation of AnalyticsBackend.

Queries run on a psycopg2 ThreadedConnectionPool, so concurrent metric calls
from several threads each get their own connection. Every query runs in its
own read-only transaction with ``SET LOCAL statement_timeout``: the server
cancels a query that outlives its deadline.

Driver errors are wrapped once, here, into BackendExecutionError (or
QueryTimeoutError for cancelled statements) with the SQLSTATE preserved.
"""

import logging
import time
from typing import Any

import psycopg2
from psycopg2 import errors
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from sitemetrics.base.backend import AnalyticsBackend
from sitemetrics.core.errors import BackendExecutionError, QueryTimeoutError
from sitemetrics.core.models import (
    ActivationCounts,
    ArpuDenominatorQuery,
    ArpuRevenueQuery,
    BounceBucket,
    BucketQuery,
    ChurnEventRow,
    ChurnQuery,
    CtrEventRow,
    DropoffRow,
    EventComparisonQuery,
    EventCountRow,
    EventFrequencies,
    EventPairCounts,
    EventsPerSessionRow,
    FunnelCounts,
    FunnelQuery,
    PathTableRow,
    PathTransitionQuery,
    QueryFilters,
    RankedQuery,
    RevenueBucket,
    TransitionRow,
    UniqueUsersCount,
    UserCountBucket,
)
from sitemetrics.core.normalize import normalize_row, normalize_rows, to_int
from sitemetrics.sql import postgresql as queries
from sitemetrics.sql.binder import PostgreSQLBinder
from sitemetrics.sql.statement import Sql
from sitemetrics.utils.config import Settings, get_settings
from sitemetrics.utils.retry import retry_light

logger = logging.getLogger(__name__)

# Connection timeout
CONNECT_TIMEOUT = 10

# SQLSTATE query_canceled (statement_timeout)
QUERY_CANCELED = "57014"

POSTGRES_CONNECT_EXCEPTIONS = (psycopg2.OperationalError,)


def _add_connect_timeout(conn_string: str) -> str:
    """Add connect_timeout to connection string if not present."""
    if "connect_timeout" not in conn_string:
        separator = "&" if "?" in conn_string else "?"
        return f"{conn_string}{separator}connect_timeout={CONNECT_TIMEOUT}"
    return conn_string


class PostgreSQLBackend(AnalyticsBackend):
    """
    PostgreSQL implementation of AnalyticsBackend.

    Implements every metric. Sessions connect with ``TimeZone=UTC`` and the
    configured schema first on the search path.
    """

    name = "postgresql"

    def __init__(self, settings: Settings | None = None):
        """
        Initialize the backend.

        Args:
            settings: Application settings. If None, uses get_settings().
        """
        self._settings = settings or get_settings()
        self._pool: ThreadedConnectionPool | None = None
        self._binder = PostgreSQLBinder()
        self._schema = self._settings.postgres.schema_name

    @property
    def schema(self) -> str:
        """Get the database schema name."""
        return self._schema

    @retry_light(POSTGRES_CONNECT_EXCEPTIONS, logger)
    def connect(self) -> None:
        """Create the connection pool."""
        if self._pool is not None:
            return
        pg = self._settings.postgres
        self._pool = ThreadedConnectionPool(
            pg.pool_min_connections,
            pg.pool_max_connections,
            dsn=_add_connect_timeout(pg.connection_string),
            options=f"-c search_path={self._schema},public -c TimeZone=UTC",
        )
        logger.info(
            "PostgreSQLBackend connected (schema=%s, pool=%d-%d)",
            self._schema,
            pg.pool_min_connections,
            pg.pool_max_connections,
        )

    def close(self) -> None:
        """Close every pooled connection."""
        if self._pool:
            try:
                self._pool.closeall()
                logger.info("PostgreSQLBackend connection pool closed")
            except psycopg2.Error as e:
                logger.warning("Error closing connection pool: %s", e)
            finally:
                self._pool = None

    def check_connection(self) -> bool:
        try:
            self._fetch("status", Sql("SELECT 1 AS ok"), timeout=5)
        except BackendExecutionError as e:
            logger.warning("PostgreSQL health check failed: %s", e)
            return False
        return True

    def _release(self, conn) -> None:
        """Roll back (nothing is ever committed) and return the connection to the pool."""
        discard = bool(conn.closed)
        if not discard:
            try:
                conn.rollback()
            except psycopg2.Error as e:
                logger.warning("Rollback failed, discarding connection: %s", e)
                discard = True
        self._pool.putconn(conn, close=discard)

    def _fetch(self, metric: str, statement: Sql, timeout: float | None) -> list[dict[str, Any]]:
        """
        Execute one statement and return its rows as dicts.

        Args:
            metric: Metric name, used in logs and errors
            statement: Statement to bind and execute
            timeout: Deadline in seconds (defaults to the configured one)

        Raises:
            QueryTimeoutError: statement_timeout cancelled the query
            BackendExecutionError: Any other driver failure
        """
        if self._pool is None:
            raise RuntimeError("PostgreSQL connection pool not established. Call connect() first.")

        text, values = self._binder.bind(statement)
        timeout_ms = int((timeout or self._settings.analytics.query_timeout_seconds) * 1000)

        started = time.perf_counter()
        try:
            conn = self._pool.getconn()
        except psycopg2.Error as e:
            raise BackendExecutionError(self.name, metric, str(e).strip(), e.pgcode) from e

        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("SET TRANSACTION READ ONLY")
                cur.execute("SET LOCAL statement_timeout = %s", (timeout_ms,))
                cur.execute(text, values)
                rows = cur.fetchall()
        except errors.QueryCanceled as e:
            raise QueryTimeoutError(
                self.name, metric, str(e).strip(), e.pgcode or QUERY_CANCELED
            ) from e
        except psycopg2.Error as e:
            raise BackendExecutionError(self.name, metric, str(e).strip(), e.pgcode) from e
        finally:
            self._release(conn)

        logger.debug(
            "%s %s: %d rows in %.1f ms",
            self.name,
            metric,
            len(rows),
            (time.perf_counter() - started) * 1000,
        )
        return rows

    # --------------------------------------------------------------------------
    # Metrics
    # --------------------------------------------------------------------------

    def funnel(self, query: FunnelQuery, timeout: float | None = None) -> FunnelCounts:
        rows = self._fetch("funnel", queries.funnel(query), timeout)
        return normalize_row(rows, FunnelCounts)

    def event_comparison(
        self, query: EventComparisonQuery, timeout: float | None = None
    ) -> EventPairCounts:
        rows = self._fetch("event_comparison", queries.event_comparison(query), timeout)
        return normalize_row(rows, EventPairCounts)

    def event_dropoffs(self, query: RankedQuery, timeout: float | None = None) -> list[DropoffRow]:
        rows = self._fetch("event_dropoffs", queries.event_dropoffs(query), timeout)
        return normalize_rows(rows, DropoffRow)

    def first_day_activation(
        self, query: QueryFilters, timeout: float | None = None
    ) -> ActivationCounts:
        rows = self._fetch("first_day_activation", queries.first_day_activation(query), timeout)
        return normalize_row(rows, ActivationCounts)

    def path_transitions(
        self, query: PathTransitionQuery, timeout: float | None = None
    ) -> list[TransitionRow]:
        rows = self._fetch("path_transitions", queries.path_transitions(query), timeout)
        return normalize_rows(rows, TransitionRow)

    def user_events_for_churn(
        self, query: ChurnQuery, timeout: float | None = None
    ) -> list[ChurnEventRow]:
        rows = self._fetch("user_events_for_churn", queries.user_events_for_churn(query), timeout)
        return normalize_rows(rows, ChurnEventRow)

    def arpu_denominators(
        self, query: ArpuDenominatorQuery, timeout: float | None = None
    ) -> list[UserCountBucket]:
        rows = self._fetch("arpu_denominators", queries.arpu_denominators(query), timeout)
        return normalize_rows(rows, UserCountBucket)

    def arpu_revenue(
        self, query: ArpuRevenueQuery, timeout: float | None = None
    ) -> list[RevenueBucket]:
        rows = self._fetch("arpu_revenue", queries.arpu_revenue(query), timeout)
        return normalize_rows(rows, RevenueBucket)

    def bounce_rate(self, query: BucketQuery, timeout: float | None = None) -> list[BounceBucket]:
        rows = self._fetch("bounce_rate", queries.bounce_rate(query), timeout)
        return normalize_rows(rows, BounceBucket)

    def events_for_ctr(self, query: QueryFilters, timeout: float | None = None) -> list[CtrEventRow]:
        rows = self._fetch("events_for_ctr", queries.events_for_ctr(query), timeout)
        return normalize_rows(rows, CtrEventRow)

    def most_frequent_events(
        self, query: RankedQuery, timeout: float | None = None
    ) -> EventFrequencies:
        rows = self._fetch("most_frequent_events", queries.most_frequent_events(query), timeout)
        total = to_int(rows[0]["total_events"]) if rows else 0
        return EventFrequencies(total_events=total, events=normalize_rows(rows, EventCountRow))

    def events_per_session(
        self, query: QueryFilters, timeout: float | None = None
    ) -> list[EventsPerSessionRow]:
        rows = self._fetch("events_per_session", queries.events_per_session(query), timeout)
        return normalize_rows(rows, EventsPerSessionRow)

    def unique_users(self, query: QueryFilters, timeout: float | None = None) -> UniqueUsersCount:
        rows = self._fetch("unique_users", queries.unique_users(query), timeout)
        return normalize_row(rows, UniqueUsersCount)

    def path_table(self, query: RankedQuery, timeout: float | None = None) -> list[PathTableRow]:
        rows = self._fetch("path_table", queries.path_table(query), timeout)
        return normalize_rows(rows, PathTableRow)
