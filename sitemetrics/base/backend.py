# ==============================================================================
# Analytics Backend Abstract Base Class
# ==============================================================================
"""
The backend interface: one method per metric.

Two implementations live in infrastructure/:
- PostgreSQLBackend: the relational store, implements every metric
- ClickHouseBackend: the columnar store, a best-effort mirror; metrics it
  cannot serve raise MetricNotImplementedError or return a documented
  degraded result

A process picks exactly one backend at startup (see core.engine.create_backend)
and never switches. A backend never delegates to another backend.

Every metric method accepts a ``timeout`` in seconds. The backend enforces it
server side so an expired query is aborted in the store.
"""

from abc import ABC, abstractmethod

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


class AnalyticsBackend(ABC):
    """A store that can answer every metric query (or say it cannot)."""

    name: str

    @abstractmethod
    def connect(self) -> None:
        """Establish the connection pool / client."""
        ...

    @abstractmethod
    def close(self) -> None:
        """Close connections and release resources."""
        ...

    @abstractmethod
    def check_connection(self) -> bool:
        """Return True if the store answers a trivial query."""
        ...

    # --------------------------------------------------------------------------
    # Metrics
    # --------------------------------------------------------------------------

    @abstractmethod
    def funnel(self, query: FunnelQuery, timeout: float | None = None) -> FunnelCounts:
        """Sessions with X, and sessions with X followed by Y."""
        ...

    @abstractmethod
    def event_comparison(
        self, query: EventComparisonQuery, timeout: float | None = None
    ) -> EventPairCounts:
        """Counts of two custom events."""
        ...

    @abstractmethod
    def event_dropoffs(self, query: RankedQuery, timeout: float | None = None) -> list[DropoffRow]:
        """Per event name: sessions having it, and sessions where it was last."""
        ...

    @abstractmethod
    def first_day_activation(
        self, query: QueryFilters, timeout: float | None = None
    ) -> ActivationCounts:
        """Sessions doing the target event on the day of their first touch."""
        ...

    @abstractmethod
    def path_transitions(
        self, query: PathTransitionQuery, timeout: float | None = None
    ) -> list[TransitionRow]:
        """Page-to-page transition counts; a None to_path is an exit."""
        ...

    @abstractmethod
    def user_events_for_churn(
        self, query: ChurnQuery, timeout: float | None = None
    ) -> list[ChurnEventRow]:
        """Sessions left-joined to their events before the window end."""
        ...

    @abstractmethod
    def arpu_denominators(
        self, query: ArpuDenominatorQuery, timeout: float | None = None
    ) -> list[UserCountBucket]:
        """Active or paying users per bucket."""
        ...

    @abstractmethod
    def arpu_revenue(
        self, query: ArpuRevenueQuery, timeout: float | None = None
    ) -> list[RevenueBucket]:
        """Revenue per bucket."""
        ...

    @abstractmethod
    def bounce_rate(self, query: BucketQuery, timeout: float | None = None) -> list[BounceBucket]:
        """Visits and single-page visits per bucket of first page view."""
        ...

    @abstractmethod
    def events_for_ctr(self, query: QueryFilters, timeout: float | None = None) -> list[CtrEventRow]:
        """Raw event rows for click-through computation."""
        ...

    @abstractmethod
    def most_frequent_events(
        self, query: RankedQuery, timeout: float | None = None
    ) -> EventFrequencies:
        """Top event names by count, plus the total."""
        ...

    @abstractmethod
    def events_per_session(
        self, query: QueryFilters, timeout: float | None = None
    ) -> list[EventsPerSessionRow]:
        """Number of sessions per event count."""
        ...

    @abstractmethod
    def unique_users(self, query: QueryFilters, timeout: float | None = None) -> UniqueUsersCount:
        """Distinct sessions with a matching event."""
        ...

    @abstractmethod
    def path_table(self, query: RankedQuery, timeout: float | None = None) -> list[PathTableRow]:
        """Visitors and views per url path."""
        ...
