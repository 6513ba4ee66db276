# ==============================================================================
# Analytics Domain Models
# ==============================================================================
"""
Pydantic models for metric inputs and results.

Inputs:
- QueryFilters: website scope, half-open date range, event and segment
  predicates, optional cohort
- Per-metric query models extending QueryFilters

Results:
- Row models returned by the backends (normalized column types)
- Result models returned by the engine (rates derived from the rows)

This module is part of the core domain layer and has no external dependencies
beyond Pydantic.
"""

from datetime import UTC, date, datetime, time, timedelta
from enum import Enum, IntEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sitemetrics.core.normalize import (
    Amount,
    BucketDate,
    Count,
    Identifier,
    OptionalTimestamp,
    Text,
    Timestamp,
)


class EventType(IntEnum):
    """Event kinds stored in website_event.event_type."""

    PAGE_VIEW = 1
    CUSTOM_EVENT = 2


class Granularity(str, Enum):
    """Bucket widths for time-series metrics."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


# ==============================================================================
# Filters
# ==============================================================================


class CohortFilters(BaseModel):
    """
    Narrows a metric to sessions that did something in another window.

    Compiled into a join against a sub-query of matching session ids.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    date_from: date
    date_to: date
    event_name: str | None = None
    url_path: str | None = None

    @model_validator(mode="after")
    def _check_range(self) -> "CohortFilters":
        if self.date_from > self.date_to:
            raise ValueError("cohort date_from must not be after date_to")
        return self

    @property
    def start_at(self) -> datetime:
        return _day_start(self.date_from)

    @property
    def end_at(self) -> datetime:
        return _day_start(self.date_to + timedelta(days=1))


class QueryFilters(BaseModel):
    """
    The logical request object shared by every metric.

    The date range is inclusive on both calendar dates and compiled as the
    half-open interval ``[date_from 00:00 UTC, date_to + 1 day 00:00 UTC)``.

    Attributes:
        website_id: Opaque website identifier
        date_from: First calendar day of the window
        date_to: Last calendar day of the window
        timezone: Accepted but not applied; bucketing is always UTC
        event_type: Restrict to page views or custom events
        event_name: Restrict to one custom event name
        url_path: Restrict to one url path (exact match)
        utm_source: Restrict to one UTM source
        device, country, browser, os: Session segment predicates
        cohort: Restrict to sessions matching a cohort sub-query
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    website_id: str = Field(..., min_length=1)
    date_from: date
    date_to: date
    timezone: str | None = Field(None, description="Reserved; buckets are computed in UTC")

    event_type: EventType | None = None
    event_name: str | None = None
    url_path: str | None = None

    utm_source: str | None = None
    device: str | None = None
    country: str | None = None
    browser: str | None = None
    os: str | None = None

    cohort: CohortFilters | None = None

    @model_validator(mode="after")
    def _check_range(self) -> "QueryFilters":
        if self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self

    @property
    def start_at(self) -> datetime:
        """Inclusive lower bound of the window."""
        return _day_start(self.date_from)

    @property
    def end_at(self) -> datetime:
        """Exclusive upper bound of the window (day after date_to)."""
        return _day_start(self.date_to + timedelta(days=1))

    @property
    def session_segment(self) -> dict[str, str]:
        """Session-level predicates that are set."""
        fields = ("device", "country", "browser", "os")
        return {f: getattr(self, f) for f in fields if getattr(self, f) is not None}

    def with_event_type(self, event_type: EventType) -> "QueryFilters":
        """Copy with the event type forced."""
        return self.model_copy(update={"event_type": event_type})

    def with_default_event_type(self, event_type: EventType) -> "QueryFilters":
        """Copy with the event type set, unless the caller already chose one."""
        if self.event_type is not None:
            return self
        return self.with_event_type(event_type)


# ==============================================================================
# Metric Queries
# ==============================================================================


class FunnelQuery(QueryFilters):
    """X -> Y conversion. X defaults to any page view, Y to any custom event."""

    event_x: str | None = None
    event_y: str | None = None


class EventComparisonQuery(QueryFilters):
    """Side-by-side counts of two custom events."""

    first_event: str = "add_to_cart"
    second_event: str = "checkout_success"


class RankedQuery(QueryFilters):
    """Metrics returning the top N rows (dropoffs, frequent events, path table)."""

    limit: int = Field(10, ge=1, le=1000)


class PathTransitionQuery(QueryFilters):
    normalize_paths: bool = True
    min_support: int = Field(1, ge=1)


class BucketQuery(QueryFilters):
    granularity: Granularity = Granularity.DAY


class ArpuDenominatorQuery(BucketQuery):
    model: Literal["active_users", "paying_users"] = "active_users"


class ArpuRevenueQuery(BucketQuery):
    # net and gross currently behave the same
    revenue_model: Literal["net", "gross"] = "net"


class ChurnQuery(QueryFilters):
    lookback_days: int = Field(365, ge=0)

    @property
    def lookback_start(self) -> datetime:
        """Earliest session creation time scanned."""
        return self.start_at - timedelta(days=self.lookback_days)


# ==============================================================================
# Backend Rows
# ==============================================================================


class FunnelCounts(BaseModel):
    started_sessions: Count = 0
    converted_sessions: Count = 0


class EventPairCounts(BaseModel):
    first_count: Count = 0
    second_count: Count = 0


class DropoffRow(BaseModel):
    event_name: Identifier
    sessions_with_event: Count = 0
    dropoff_sessions: Count = 0


class ActivationCounts(BaseModel):
    total_sessions: Count = 0
    sessions_with_event: Count = 0


class TransitionRow(BaseModel):
    """One edge of the path graph; to_path None is an exit."""

    from_path: Text = None
    to_path: Text = None
    transitions: Count = 0


class ChurnEventRow(BaseModel):
    session_id: Identifier
    user_created_at: Timestamp
    event_time: OptionalTimestamp = None


class UserCountBucket(BaseModel):
    bucket_start: BucketDate
    user_count: Count = 0


class RevenueBucket(BaseModel):
    bucket_start: BucketDate
    revenue: Amount = 0.0


class BounceBucket(BaseModel):
    bucket_start: BucketDate
    visits: Count = 0
    bounces: Count = 0


class CtrEventRow(BaseModel):
    session_id: Identifier
    created_at: Timestamp
    event_type: Count
    event_name: Text = None
    url_path: Text = None
    utm_source: Text = None
    device: Text = None
    country: Text = None


class EventCountRow(BaseModel):
    event_name: Identifier
    event_count: Count = 0


class EventFrequencies(BaseModel):
    total_events: Count = 0
    events: list[EventCountRow] = Field(default_factory=list)


class EventsPerSessionRow(BaseModel):
    event_count: Count
    session_count: Count = 0


class UniqueUsersCount(BaseModel):
    unique_users: Count = 0


class PathTableRow(BaseModel):
    path: Text = None
    visitors: Count = 0
    views: Count = 0


# ==============================================================================
# Engine Results
# ==============================================================================


class FunnelResult(BaseModel):
    event_x: str | None
    event_y: str | None
    started_sessions: int
    converted_sessions: int
    conversion_rate: float


class EventComparisonResult(BaseModel):
    first_event: str
    second_event: str
    first_count: int
    second_count: int
    success_rate: float
    total_events: int


class DropoffItem(BaseModel):
    event_name: str
    sessions_with_event: int
    dropoff_sessions: int
    dropoff_rate: float


class ActivationResult(BaseModel):
    event_name: str | None
    total_sessions: int
    sessions_with_event: int
    percentage: float


class FrequentEvent(BaseModel):
    event_name: str
    event_count: int
    percentage: float


class MostFrequentEventsResult(BaseModel):
    total_events: int
    events: list[FrequentEvent]


class SessionBreakdown(BaseModel):
    event_count: int
    session_count: int
    percentage: float


class EventsPerSessionResult(BaseModel):
    event_name: str | None
    total_events: int
    total_sessions: int
    average_events_per_session: float
    breakdown: list[SessionBreakdown]


class PathStat(BaseModel):
    path: str
    visitors: int
    views: int
