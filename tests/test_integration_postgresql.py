# ==============================================================================
# Integration Tests: PostgreSQL Backend
# ==============================================================================
"""
End-to-end tests against a live PostgreSQL server.

Skipped unless SITEMETRICS_IT_PG is set. Connection details come from the
usual PG_* environment variables; every run creates and drops its own
schema so nothing outside it is touched.

    SITEMETRICS_IT_PG=1 PG_HOST=localhost PG_USER=postgres pytest -m integration
"""

import os
import uuid
from datetime import UTC, datetime, timedelta

import psycopg2
import pytest

from sitemetrics.core.engine import AnalyticsEngine
from sitemetrics.core.errors import QueryTimeoutError
from sitemetrics.infrastructure.postgresql import PostgreSQLBackend
from sitemetrics.sql.statement import Sql
from sitemetrics.utils.config import AnalyticsSettings, PostgresSettings, Settings

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not os.environ.get("SITEMETRICS_IT_PG"), reason="SITEMETRICS_IT_PG not set"),
]

DDL = """
CREATE TABLE session (
  session_id uuid PRIMARY KEY,
  website_id uuid NOT NULL,
  created_at timestamptz NOT NULL,
  browser varchar(20),
  os varchar(20),
  device varchar(20),
  country char(2)
);
CREATE TABLE website_event (
  event_id uuid PRIMARY KEY,
  website_id uuid NOT NULL,
  session_id uuid NOT NULL,
  visit_id uuid NOT NULL,
  created_at timestamptz NOT NULL,
  url_path varchar(500) NOT NULL,
  event_type integer NOT NULL DEFAULT 1,
  event_name varchar(50),
  utm_source varchar(255)
);
CREATE TABLE revenue (
  revenue_id uuid PRIMARY KEY,
  website_id uuid NOT NULL,
  session_id uuid NOT NULL,
  event_id uuid NOT NULL,
  event_name varchar(50) NOT NULL,
  currency varchar(10) NOT NULL,
  revenue numeric(19, 4),
  created_at timestamptz NOT NULL
);
"""

DAY = datetime(2025, 7, 10, 9, 0, tzinfo=UTC)

FUNNEL_SITE = str(uuid.uuid4())
BOUNCE_SITE = str(uuid.uuid4())
PATH_SITE = str(uuid.uuid4())
LANDING_SITE = str(uuid.uuid4())
SPREAD_SITE = str(uuid.uuid4())
ACTIVATION_SITE = str(uuid.uuid4())


class Seeder:
    """Inserts sessions and events for one website."""

    def __init__(self, cursor, website_id: str):
        self.cursor = cursor
        self.website_id = website_id

    def session(self, created_at: datetime, device: str = "desktop") -> str:
        session_id = str(uuid.uuid4())
        self.cursor.execute(
            "INSERT INTO session (session_id, website_id, created_at, device, country) "
            "VALUES (%s, %s, %s, %s, 'DE')",
            (session_id, self.website_id, created_at, device),
        )
        return session_id

    def event(
        self,
        session_id: str,
        visit_id: str,
        created_at: datetime,
        url_path: str = "/",
        event_name: str | None = None,
    ) -> None:
        self.cursor.execute(
            "INSERT INTO website_event (event_id, website_id, session_id, visit_id, created_at, "
            "url_path, event_type, event_name) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)",
            (
                str(uuid.uuid4()),
                self.website_id,
                session_id,
                visit_id,
                created_at,
                url_path,
                2 if event_name else 1,
                event_name,
            ),
        )


def _seed(cursor) -> None:
    # 100 sessions start a trial, 18 of them purchase afterwards
    funnel = Seeder(cursor, FUNNEL_SITE)
    for i in range(100):
        session_id = funnel.session(DAY)
        visit_id = str(uuid.uuid4())
        started = DAY + timedelta(minutes=i)
        funnel.event(session_id, visit_id, started, "/trial", "Start Free Trial")
        if i < 18:
            funnel.event(session_id, visit_id, started + timedelta(minutes=5), "/buy", "Purchase")

    # 50 visits, 12 of them see a single page
    bounce = Seeder(cursor, BOUNCE_SITE)
    for i in range(50):
        session_id = bounce.session(DAY)
        visit_id = str(uuid.uuid4())
        bounce.event(session_id, visit_id, DAY + timedelta(seconds=i), "/")
        if i >= 12:
            bounce.event(session_id, visit_id, DAY + timedelta(seconds=i, milliseconds=500), "/pricing")

    # One visit: /a -> /b?ref=x -> /C#top
    paths = Seeder(cursor, PATH_SITE)
    session_id = paths.session(DAY)
    visit_id = str(uuid.uuid4())
    for step, url in enumerate(["/a", "/b?ref=x", "/C#top"]):
        paths.event(session_id, visit_id, DAY + timedelta(seconds=step), url)

    # Visit A lands on / and moves on to /pricing, visit B leaves from /
    landing = Seeder(cursor, LANDING_SITE)
    session_id = landing.session(DAY)
    visit_a, visit_b = str(uuid.uuid4()), str(uuid.uuid4())
    landing.event(session_id, visit_a, DAY, "/")
    landing.event(session_id, visit_a, DAY + timedelta(minutes=1), "/pricing")
    landing.event(session_id, visit_b, DAY + timedelta(minutes=5), "/")

    # Visits on three days; one starts before midnight and continues after it
    spread = Seeder(cursor, SPREAD_SITE)
    for pages in (
        [datetime(2025, 7, 3, 10, tzinfo=UTC)],
        [datetime(2025, 7, 12, 23, 59, 30, tzinfo=UTC), datetime(2025, 7, 13, 0, 0, 30, tzinfo=UTC)],
        [datetime(2025, 7, 20, 8, tzinfo=UTC)],
        [datetime(2025, 7, 20, 9, tzinfo=UTC), datetime(2025, 7, 20, 9, 5, tzinfo=UTC)],
    ):
        session_id = spread.session(pages[0])
        visit_id = str(uuid.uuid4())
        for created_at in pages:
            spread.event(session_id, visit_id, created_at)

    # Signup on the first day, signup just after midnight, no signup
    activation = Seeder(cursor, ACTIVATION_SITE)
    for first_touch, signup in (
        (DAY, DAY + timedelta(hours=6)),
        (datetime(2025, 7, 10, 23, 30, tzinfo=UTC), datetime(2025, 7, 11, 0, 10, tzinfo=UTC)),
        (DAY, None),
    ):
        session_id = activation.session(first_touch)
        visit_id = str(uuid.uuid4())
        activation.event(session_id, visit_id, first_touch)
        if signup is not None:
            activation.event(session_id, visit_id, signup, "/welcome", "signup")


@pytest.fixture(scope="module")
def it_settings():
    schema = f"sitemetrics_it_{uuid.uuid4().hex[:8]}"
    settings = Settings(
        postgres=PostgresSettings(schema_name=schema),
        analytics=AnalyticsSettings(backend="postgresql", query_timeout_seconds=10),
    )
    conn = psycopg2.connect(settings.postgres.connection_string)
    try:
        with conn, conn.cursor() as cur:
            cur.execute(f"CREATE SCHEMA {schema}")
            cur.execute(f"SET search_path = {schema}")
            cur.execute(DDL)
            _seed(cur)
        yield settings
    finally:
        with conn, conn.cursor() as cur:
            cur.execute(f"DROP SCHEMA {schema} CASCADE")
        conn.close()


@pytest.fixture(scope="module")
def engine(it_settings):
    backend = PostgreSQLBackend(it_settings)
    backend.connect()
    yield AnalyticsEngine(backend, it_settings)
    backend.close()


def _window(website_id: str) -> dict:
    return {"website_id": website_id, "date_from": "2025-07-01", "date_to": "2025-07-31"}


# ==============================================================================
# Scenarios
# ==============================================================================


class TestFunnel:
    def test_conversion(self, engine):
        result = engine.funnel(event_x="Start Free Trial", event_y="Purchase", **_window(FUNNEL_SITE))
        assert result.started_sessions == 100
        assert result.converted_sessions == 18
        assert result.conversion_rate == 18.0

    def test_window_excludes_events(self, engine):
        window = {"website_id": FUNNEL_SITE, "date_from": "2025-07-11", "date_to": "2025-07-31"}
        result = engine.funnel(event_x="Start Free Trial", event_y="Purchase", **window)
        assert result.started_sessions == 0
        assert result.conversion_rate == 0.0

    def test_segment_filter(self, engine):
        result = engine.funnel(
            event_x="Start Free Trial", event_y="Purchase", device="mobile", **_window(FUNNEL_SITE)
        )
        assert result.started_sessions == 0


class TestBounceRate:
    def test_daily_bucket(self, engine):
        [bucket] = engine.bounce_rate(granularity="day", **_window(BOUNCE_SITE))
        assert bucket.bucket_start == "2025-07-10"
        assert bucket.visits == 50
        assert bucket.bounces == 12

    def test_weekly_bucket_starts_monday(self, engine):
        [bucket] = engine.bounce_rate(granularity="week", **_window(BOUNCE_SITE))
        assert bucket.bucket_start == "2025-07-07"

    def test_path_filter_counts_whole_visit(self, engine):
        """A visit matched on its landing page is not a bounce if it saw more pages."""
        [bucket] = engine.bounce_rate(url_path="/", **_window(LANDING_SITE))
        assert bucket.visits == 2
        assert bucket.bounces == 1

    def test_filter_on_later_page(self, engine):
        [bucket] = engine.bounce_rate(url_path="/pricing", **_window(LANDING_SITE))
        assert bucket.visits == 1
        assert bucket.bounces == 0

    def test_daily_buckets_sum_to_monthly_total(self, engine):
        daily = engine.bounce_rate(granularity="day", **_window(SPREAD_SITE))
        [monthly] = engine.bounce_rate(granularity="month", **_window(SPREAD_SITE))
        assert [b.bucket_start for b in daily] == ["2025-07-03", "2025-07-12", "2025-07-20"]
        assert sum(b.visits for b in daily) == monthly.visits == 4
        assert sum(b.bounces for b in daily) == monthly.bounces == 2

    def test_visit_across_midnight_is_one_visit(self, engine):
        daily = engine.bounce_rate(granularity="day", **_window(SPREAD_SITE))
        by_day = {b.bucket_start: b for b in daily}
        assert by_day["2025-07-12"].visits == 1
        assert by_day["2025-07-12"].bounces == 0
        assert "2025-07-13" not in by_day


class TestFirstDayActivation:
    def test_event_on_first_utc_day(self, engine):
        """A signup 40 minutes after first touch but past midnight does not count."""
        result = engine.first_day_activation(event_name="signup", **_window(ACTIVATION_SITE))
        assert result.total_sessions == 3
        assert result.sessions_with_event == 1
        assert result.percentage == 33.33


class TestIdempotence:
    """The same request against unchanged data gives the same answer."""

    @pytest.mark.parametrize(
        "metric, params",
        [
            ("funnel", {"event_x": "Start Free Trial", "event_y": "Purchase", **_window(FUNNEL_SITE)}),
            ("bounce_rate", {"granularity": "day", **_window(SPREAD_SITE)}),
            ("path_transitions", _window(PATH_SITE)),
            ("event_dropoffs", _window(FUNNEL_SITE)),
        ],
    )
    def test_repeated_run(self, engine, metric, params):
        assert engine.run(metric, params) == engine.run(metric, params)


class TestPathTransitions:
    def test_normalized_paths(self, engine):
        rows = engine.path_transitions(**_window(PATH_SITE))
        edges = {(r.from_path, r.to_path): r.transitions for r in rows}
        assert edges == {("/a", "/b"): 1, ("/b", "/c"): 1, ("/c", None): 1}

    def test_raw_paths(self, engine):
        rows = engine.path_transitions(normalize_paths=False, **_window(PATH_SITE))
        assert {r.from_path for r in rows} == {"/a", "/b?ref=x", "/C#top"}

    def test_min_support(self, engine):
        assert engine.path_transitions(min_support=2, **_window(PATH_SITE)) == []


class TestOtherMetrics:
    def test_unknown_website_is_empty_not_an_error(self, engine):
        window = _window(str(uuid.uuid4()))
        assert engine.event_dropoffs(**window) == []
        assert engine.unique_users(**window) == 0
        assert engine.arpu_revenue(**window) == []

    def test_dropoffs(self, engine):
        items = engine.event_dropoffs(**_window(FUNNEL_SITE))
        by_name = {i.event_name: i for i in items}
        assert by_name["Start Free Trial"].dropoff_sessions == 82
        assert by_name["Purchase"].dropoff_sessions == 18
        assert by_name["Purchase"].dropoff_rate == 100.0

    def test_most_frequent_events(self, engine):
        result = engine.most_frequent_events(**_window(FUNNEL_SITE))
        assert result.total_events == 118
        assert [e.event_name for e in result.events] == ["Start Free Trial", "Purchase"]

    def test_path_table(self, engine):
        rows = engine.path_table(**_window(BOUNCE_SITE))
        assert rows[0].path == "/"
        assert rows[0].visitors == 50

    def test_churn_rows(self, engine):
        rows = engine.user_events_for_churn(**_window(PATH_SITE))
        assert len(rows) == 3
        assert all(r.event_time is not None for r in rows)

    def test_concurrent_gather(self, engine):
        results = engine.gather(
            {
                "funnel": ("funnel", {"event_x": "Start Free Trial", "event_y": "Purchase", **_window(FUNNEL_SITE)}),
                "users": ("unique_users", _window(FUNNEL_SITE)),
                "bounce": ("bounce_rate", _window(BOUNCE_SITE)),
            }
        )
        assert results["funnel"].converted_sessions == 18
        assert results["users"] == 100
        assert results["bounce"][0].bounces == 12


class TestTimeout:
    def test_statement_timeout(self, engine):
        backend = engine.backend
        with pytest.raises(QueryTimeoutError) as exc_info:
            backend._fetch("sleep", Sql("SELECT pg_sleep(2)"), timeout=0.2)
        assert exc_info.value.code == "57014"
