# ==============================================================================
# Analytics Engine
# ==============================================================================
"""
The caller-facing entry point.

AnalyticsEngine wraps exactly one AnalyticsBackend, chosen once by
create_backend() from configuration. Each public method:

1. validates the caller's keyword arguments into a query model
   (QueryValidationError before anything reaches the backend)
2. calls the backend's implementation for that metric
3. derives rates and totals from the normalized rows

Backend errors propagate unchanged; nothing is retried or swallowed.

Usage:
    engine = get_engine()
    result = engine.funnel(website_id=..., date_from="2025-07-01",
                           date_to="2025-08-31", event_x="Start Free Trial",
                           event_y="Purchase")
"""

import logging
import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from functools import lru_cache
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from sitemetrics.base.backend import AnalyticsBackend
from sitemetrics.core.errors import QueryTimeoutError, QueryValidationError
from sitemetrics.core.models import (
    ActivationResult,
    ArpuDenominatorQuery,
    ArpuRevenueQuery,
    BounceBucket,
    BucketQuery,
    ChurnEventRow,
    ChurnQuery,
    CtrEventRow,
    DropoffItem,
    EventComparisonQuery,
    EventComparisonResult,
    EventsPerSessionResult,
    FrequentEvent,
    FunnelQuery,
    FunnelResult,
    MostFrequentEventsResult,
    PathStat,
    PathTransitionQuery,
    QueryFilters,
    RankedQuery,
    RevenueBucket,
    SessionBreakdown,
    TransitionRow,
    UserCountBucket,
)
from sitemetrics.core.normalize import percentage
from sitemetrics.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)

Q = TypeVar("Q", bound=BaseModel)


def create_backend(settings: Settings | None = None) -> AnalyticsBackend:
    """
    Create the backend selected by ANALYTICS_BACKEND.

    - "postgresql" (default): relational store, every metric implemented
    - "clickhouse": columnar store, see ClickHouseBackend for its matrix

    Args:
        settings: Application settings. If None, uses get_settings().

    Returns:
        An unconnected AnalyticsBackend

    Raises:
        ValueError: If an unknown backend is configured
    """
    settings = settings or get_settings()
    backend = settings.analytics.backend

    match backend:
        case "postgresql":
            from sitemetrics.infrastructure.postgresql import PostgreSQLBackend

            return PostgreSQLBackend(settings)
        case "clickhouse":
            from sitemetrics.infrastructure.clickhouse import ClickHouseBackend

            return ClickHouseBackend(settings)
        case _:
            raise ValueError(
                f"Unknown analytics backend: '{backend}'.\n"
                "Valid options are: postgresql, clickhouse"
            )


def build_query(model: type[Q], params: Mapping[str, Any]) -> Q:
    """Validate caller parameters into a query model."""
    try:
        return model.model_validate(dict(params))
    except ValidationError as e:
        raise QueryValidationError(str(e)) from e


class AnalyticsEngine:
    """
    Metric entry points over one backend.

    The backend is injected at construction and never replaced.
    """

    def __init__(self, backend: AnalyticsBackend, settings: Settings | None = None):
        self._backend = backend
        self._settings = settings or get_settings()

    @property
    def backend(self) -> AnalyticsBackend:
        return self._backend

    @property
    def backend_name(self) -> str:
        return self._backend.name

    def _timeout(self, timeout: float | None) -> float:
        return timeout if timeout is not None else self._settings.analytics.query_timeout_seconds

    # --------------------------------------------------------------------------
    # Metrics
    # --------------------------------------------------------------------------

    def funnel(self, *, timeout: float | None = None, **params: Any) -> FunnelResult:
        """X -> Y conversion within the same session."""
        query = build_query(FunnelQuery, params)
        counts = self._backend.funnel(query, self._timeout(timeout))
        return FunnelResult(
            event_x=query.event_x,
            event_y=query.event_y,
            started_sessions=counts.started_sessions,
            converted_sessions=counts.converted_sessions,
            conversion_rate=percentage(counts.converted_sessions, counts.started_sessions),
        )

    def event_comparison(
        self, *, timeout: float | None = None, **params: Any
    ) -> EventComparisonResult:
        query = build_query(EventComparisonQuery, params)
        counts = self._backend.event_comparison(query, self._timeout(timeout))
        return EventComparisonResult(
            first_event=query.first_event,
            second_event=query.second_event,
            first_count=counts.first_count,
            second_count=counts.second_count,
            success_rate=percentage(counts.second_count, counts.first_count),
            total_events=counts.first_count + counts.second_count,
        )

    def event_dropoffs(self, *, timeout: float | None = None, **params: Any) -> list[DropoffItem]:
        """Events ranked by how many sessions ended on them."""
        query = build_query(RankedQuery, params)
        rows = self._backend.event_dropoffs(query, self._timeout(timeout))
        return [
            DropoffItem(
                event_name=row.event_name,
                sessions_with_event=row.sessions_with_event,
                dropoff_sessions=row.dropoff_sessions,
                dropoff_rate=percentage(row.dropoff_sessions, row.sessions_with_event),
            )
            for row in rows
        ]

    def first_day_activation(
        self, *, timeout: float | None = None, **params: Any
    ) -> ActivationResult:
        """Share of sessions doing ``event_name`` on the day of their first touch."""
        query = build_query(QueryFilters, params)
        counts = self._backend.first_day_activation(query, self._timeout(timeout))
        return ActivationResult(
            event_name=query.event_name,
            total_sessions=counts.total_sessions,
            sessions_with_event=counts.sessions_with_event,
            percentage=percentage(counts.sessions_with_event, counts.total_sessions),
        )

    def path_transitions(
        self, *, timeout: float | None = None, **params: Any
    ) -> list[TransitionRow]:
        query = build_query(PathTransitionQuery, params)
        return self._backend.path_transitions(query, self._timeout(timeout))

    def user_events_for_churn(
        self, *, timeout: float | None = None, **params: Any
    ) -> list[ChurnEventRow]:
        """Raw session/event rows; deciding who churned is up to the caller."""
        params = {"lookback_days": self._settings.analytics.churn_lookback_days, **params}
        query = build_query(ChurnQuery, params)
        return self._backend.user_events_for_churn(query, self._timeout(timeout))

    def arpu_denominators(
        self, *, timeout: float | None = None, **params: Any
    ) -> list[UserCountBucket]:
        query = build_query(ArpuDenominatorQuery, params)
        return self._backend.arpu_denominators(query, self._timeout(timeout))

    def arpu_revenue(self, *, timeout: float | None = None, **params: Any) -> list[RevenueBucket]:
        query = build_query(ArpuRevenueQuery, params)
        return self._backend.arpu_revenue(query, self._timeout(timeout))

    def bounce_rate(self, *, timeout: float | None = None, **params: Any) -> list[BounceBucket]:
        query = build_query(BucketQuery, params)
        return self._backend.bounce_rate(query, self._timeout(timeout))

    def events_for_ctr(self, *, timeout: float | None = None, **params: Any) -> list[CtrEventRow]:
        query = build_query(QueryFilters, params)
        return self._backend.events_for_ctr(query, self._timeout(timeout))

    def most_frequent_events(
        self, *, timeout: float | None = None, **params: Any
    ) -> MostFrequentEventsResult:
        query = build_query(RankedQuery, params)
        frequencies = self._backend.most_frequent_events(query, self._timeout(timeout))
        return MostFrequentEventsResult(
            total_events=frequencies.total_events,
            events=[
                FrequentEvent(
                    event_name=row.event_name,
                    event_count=row.event_count,
                    percentage=percentage(row.event_count, frequencies.total_events),
                )
                for row in frequencies.events
            ],
        )

    def events_per_session(
        self, *, timeout: float | None = None, **params: Any
    ) -> EventsPerSessionResult:
        query = build_query(QueryFilters, params)
        rows = self._backend.events_per_session(query, self._timeout(timeout))

        total_sessions = sum(row.session_count for row in rows)
        total_events = sum(row.event_count * row.session_count for row in rows)
        average = round(total_events / total_sessions, 2) if total_sessions else 0.0
        return EventsPerSessionResult(
            event_name=query.event_name,
            total_events=total_events,
            total_sessions=total_sessions,
            average_events_per_session=average,
            breakdown=[
                SessionBreakdown(
                    event_count=row.event_count,
                    session_count=row.session_count,
                    percentage=percentage(row.session_count, total_sessions),
                )
                for row in rows
            ],
        )

    def unique_users(self, *, timeout: float | None = None, **params: Any) -> int:
        query = build_query(QueryFilters, params)
        return self._backend.unique_users(query, self._timeout(timeout)).unique_users

    def path_table(self, *, timeout: float | None = None, **params: Any) -> list[PathStat]:
        query = build_query(RankedQuery, params)
        rows = self._backend.path_table(query, self._timeout(timeout))
        return [PathStat(path=row.path or "/", visitors=row.visitors, views=row.views) for row in rows]

    # --------------------------------------------------------------------------
    # Dispatch by name
    # --------------------------------------------------------------------------

    @property
    def metrics(self) -> dict[str, Callable[..., Any]]:
        """Metric name -> bound entry point."""
        return {
            "funnel": self.funnel,
            "event_comparison": self.event_comparison,
            "event_dropoffs": self.event_dropoffs,
            "first_day_activation": self.first_day_activation,
            "path_transitions": self.path_transitions,
            "user_events_for_churn": self.user_events_for_churn,
            "arpu_denominators": self.arpu_denominators,
            "arpu_revenue": self.arpu_revenue,
            "bounce_rate": self.bounce_rate,
            "events_for_ctr": self.events_for_ctr,
            "most_frequent_events": self.most_frequent_events,
            "events_per_session": self.events_per_session,
            "unique_users": self.unique_users,
            "path_table": self.path_table,
        }

    def run(self, metric: str, params: Mapping[str, Any], timeout: float | None = None) -> Any:
        """
        Run a metric by name.

        Raises:
            QueryValidationError: Unknown metric name or invalid parameters
        """
        entry = self.metrics.get(metric)
        if entry is None:
            raise QueryValidationError(
                f"Unknown metric: '{metric}'. Valid metrics: {', '.join(sorted(self.metrics))}"
            )
        return entry(timeout=timeout, **params)

    def gather(
        self,
        calls: Mapping[str, tuple[str, Mapping[str, Any]]],
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Run several metrics concurrently, e.g. to assemble a dashboard.

        Args:
            calls: label -> (metric name, parameters)
            timeout: Overall deadline in seconds; each query gets what remains
                of it when it starts

        Returns:
            label -> result. Any failure fails the whole gather.
        """
        if not calls:
            return {}

        # Fail before any query starts
        unknown = sorted({metric for metric, _ in calls.values()} - set(self.metrics))
        if unknown:
            raise QueryValidationError(f"Unknown metric(s): {', '.join(unknown)}")

        deadline = time.monotonic() + self._timeout(timeout)

        def _call(metric: str, params: Mapping[str, Any]) -> Any:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise QueryTimeoutError(self.backend_name, metric, "deadline expired before start")
            return self.run(metric, params, timeout=remaining)

        workers = min(self._settings.analytics.max_workers, len(calls))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sitemetrics") as executor:
            futures = {
                label: executor.submit(_call, metric, params)
                for label, (metric, params) in calls.items()
            }
            results = {}
            for label, future in futures.items():
                try:
                    results[label] = future.result(timeout=max(0.0, deadline - time.monotonic()))
                except FutureTimeoutError as e:
                    for pending in futures.values():
                        pending.cancel()
                    raise QueryTimeoutError(
                        self.backend_name, calls[label][0], "gather deadline expired"
                    ) from e
                except Exception:
                    for pending in futures.values():
                        pending.cancel()
                    raise
        logger.debug("Gathered %d metrics on %s", len(results), self.backend_name)
        return results


@lru_cache
def get_engine() -> AnalyticsEngine:
    """
    Get the process-wide engine.

    The backend is created and connected on first use and kept for the life
    of the process.
    """
    settings = get_settings()
    backend = create_backend(settings)
    backend.connect()
    logger.info("Analytics engine ready (backend=%s)", backend.name)
    return AnalyticsEngine(backend, settings)
