# ==============================================================================
# ClickHouse Backend
# ==============================================================================
"""
Columnar implementation of AnalyticsBackend.

A best-effort mirror of the relational backend, metric by metric:

- Implemented: funnel, event comparison, event dropoffs, first-day
  activation, most frequent events, events per session, unique users,
  path table
- Not implemented (raise MetricNotImplementedError): path transitions,
  bounce rate, churn input rows
- Degraded (documented empty result, logged at WARNING): ARPU denominators,
  ARPU revenue, click-through rows; listed in DEGRADED_METRICS

Queries go through one clickhouse-connect HTTP client using server-side
parameter binding. The per-query deadline is sent as the
``max_execution_time`` setting so the server aborts the query.
"""

import logging
import math
import re
import time
from typing import Any

import clickhouse_connect
from clickhouse_connect.driver.client import Client
from clickhouse_connect.driver.exceptions import ClickHouseError, OperationalError

from sitemetrics.base.backend import AnalyticsBackend
from sitemetrics.core.errors import (
    BackendExecutionError,
    MetricNotImplementedError,
    QueryTimeoutError,
)
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
from sitemetrics.sql import clickhouse as queries
from sitemetrics.sql.binder import ClickHouseBinder
from sitemetrics.sql.statement import Sql
from sitemetrics.utils.config import Settings, get_settings
from sitemetrics.utils.retry import retry_light

logger = logging.getLogger(__name__)

CLICKHOUSE_CONNECT_EXCEPTIONS = (OperationalError,)

# Server error codes: TIMEOUT_EXCEEDED
TIMEOUT_ERROR_CODES = frozenset({"159"})

ERROR_CODE_PATTERN = re.compile(r"Code: (\d+)")


def error_code(error: Exception) -> str | None:
    """Extract the numeric server error code from a ClickHouse error message."""
    match = ERROR_CODE_PATTERN.search(str(error))
    return match.group(1) if match else None


class ClickHouseBackend(AnalyticsBackend):
    """ClickHouse implementation of AnalyticsBackend."""

    name = "clickhouse"

    DEGRADED_METRICS = frozenset({"arpu_denominators", "arpu_revenue", "events_for_ctr"})

    def __init__(self, settings: Settings | None = None):
        self._settings = settings or get_settings()
        self._client: Client | None = None
        self._binder = ClickHouseBinder()

    @retry_light(CLICKHOUSE_CONNECT_EXCEPTIONS, logger)
    def connect(self) -> None:
        """Create the HTTP client."""
        if self._client is not None:
            return
        ch = self._settings.clickhouse
        self._client = clickhouse_connect.get_client(
            host=ch.host,
            port=ch.port,
            username=ch.user,
            password=ch.password,
            database=ch.database,
            secure=ch.secure,
            connect_timeout=ch.connect_timeout,
            # Concurrent queries must not share one server session
            autogenerate_session_id=False,
        )
        logger.info("ClickHouseBackend connected (%s:%d/%s)", ch.host, ch.port, ch.database)

    def close(self) -> None:
        if self._client:
            try:
                self._client.close()
                logger.info("ClickHouseBackend client closed")
            finally:
                self._client = None

    def check_connection(self) -> bool:
        if self._client is None:
            return False
        return bool(self._client.ping())

    def _fetch(self, metric: str, statement: Sql, timeout: float | None) -> list[dict[str, Any]]:
        """
        Execute one statement and return its rows as dicts.

        Raises:
            QueryTimeoutError: The server aborted the query (max_execution_time)
            BackendExecutionError: Any other server or transport failure
        """
        if self._client is None:
            raise RuntimeError("ClickHouse client not established. Call connect() first.")

        text, values = self._binder.bind(statement)
        seconds = timeout or self._settings.analytics.query_timeout_seconds

        started = time.perf_counter()
        try:
            result = self._client.query(
                text,
                parameters=values,
                settings={"max_execution_time": max(1, math.ceil(seconds))},
            )
        except ClickHouseError as e:
            code = error_code(e)
            error_class = QueryTimeoutError if code in TIMEOUT_ERROR_CODES else BackendExecutionError
            raise error_class(self.name, metric, str(e).strip(), code) from e

        rows = list(result.named_results())
        logger.debug(
            "%s %s: %d rows in %.1f ms",
            self.name,
            metric,
            len(rows),
            (time.perf_counter() - started) * 1000,
        )
        return rows

    def _degraded(self, metric: str) -> list:
        logger.warning(
            "Metric '%s' is not computed by the %s backend; returning an empty result",
            metric,
            self.name,
        )
        return []

    # --------------------------------------------------------------------------
    # Implemented metrics
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

    # --------------------------------------------------------------------------
    # Not implemented
    # --------------------------------------------------------------------------

    def path_transitions(
        self, query: PathTransitionQuery, timeout: float | None = None
    ) -> list[TransitionRow]:
        raise MetricNotImplementedError("path_transitions", self.name)

    def bounce_rate(self, query: BucketQuery, timeout: float | None = None) -> list[BounceBucket]:
        raise MetricNotImplementedError("bounce_rate", self.name)

    def user_events_for_churn(
        self, query: ChurnQuery, timeout: float | None = None
    ) -> list[ChurnEventRow]:
        raise MetricNotImplementedError("user_events_for_churn", self.name)

    # --------------------------------------------------------------------------
    # Degraded
    # --------------------------------------------------------------------------

    def arpu_denominators(
        self, query: ArpuDenominatorQuery, timeout: float | None = None
    ) -> list[UserCountBucket]:
        return self._degraded("arpu_denominators")

    def arpu_revenue(
        self, query: ArpuRevenueQuery, timeout: float | None = None
    ) -> list[RevenueBucket]:
        return self._degraded("arpu_revenue")

    def events_for_ctr(self, query: QueryFilters, timeout: float | None = None) -> list[CtrEventRow]:
        return self._degraded("events_for_ctr")
