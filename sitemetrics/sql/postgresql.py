# ==============================================================================
# PostgreSQL Metric Queries
# ==============================================================================
"""
Metric statements for the relational schema.

Tables:
- website_event (event_id, website_id, session_id, visit_id, created_at,
  event_type, event_name, url_path, utm_source)
- session (session_id, website_id, created_at, browser, os, device, country)
- revenue (website_id, session_id, revenue, created_at)

Every function returns a Sql statement; nothing here touches a connection.
Buckets are truncated in UTC so week buckets start on Monday.
"""

from sitemetrics.core.models import (
    ArpuDenominatorQuery,
    ArpuRevenueQuery,
    BucketQuery,
    ChurnQuery,
    EventComparisonQuery,
    EventType,
    FunnelQuery,
    Granularity,
    PathTransitionQuery,
    QueryFilters,
    RankedQuery,
)
from sitemetrics.sql.filters import PostgreSQLFilterCompiler
from sitemetrics.sql.statement import EMPTY, ParamType, Sql, param

compiler = PostgreSQLFilterCompiler()


def bucket_expression(column: str, granularity: Granularity) -> str:
    return f"date_trunc('{granularity.value}', {column} AT TIME ZONE 'UTC')"


def funnel(query: FunnelQuery) -> Sql:
    x = compiler.compile(query, "x")
    x_match = compiler.event_match("x", query.event_x, EventType.PAGE_VIEW, "event_x")
    y_match = compiler.event_match("y", query.event_y, EventType.CUSTOM_EVENT, "event_y")
    return Sql(
        """
SELECT
  (SELECT COUNT(DISTINCT x.session_id)
   FROM website_event x
   {joins}
   WHERE {where}
     AND {x_match}) AS started_sessions,
  (SELECT COUNT(DISTINCT x.session_id)
   FROM website_event x
   JOIN website_event y
     ON y.website_id = x.website_id
    AND y.session_id = x.session_id
    AND y.created_at > x.created_at
   {joins}
   WHERE {where}
     AND {x_match}
     AND {y_match}) AS converted_sessions
"""
    ).format(joins=x.joins, where=x.where, x_match=x_match, y_match=y_match)


def event_comparison(query: EventComparisonQuery) -> Sql:
    e = compiler.compile(query.with_default_event_type(EventType.CUSTOM_EVENT), "e")
    return Sql(
        """
SELECT
  COUNT(*) FILTER (WHERE e.event_name = {first}) AS first_count,
  COUNT(*) FILTER (WHERE e.event_name = {second}) AS second_count
FROM website_event e
{joins}
WHERE {where}
"""
    ).format(
        joins=e.joins,
        where=e.where,
        first=param("first_event", query.first_event),
        second=param("second_event", query.second_event),
    )


def event_dropoffs(query: RankedQuery) -> Sql:
    # Last event is decided over the whole session; the name filter only narrows the output
    e = compiler.compile(query, "e", events=False)
    name_filter = EMPTY
    if query.event_name is not None:
        name_filter = Sql("\n  AND ") + compiler.equals("event_name", "event_name", query.event_name)
    return Sql(
        """
WITH ranked AS (
  SELECT
    e.session_id,
    e.event_name,
    ROW_NUMBER() OVER (
      PARTITION BY e.session_id ORDER BY e.created_at DESC, e.event_id DESC
    ) AS recency
  FROM website_event e
  {joins}
  WHERE {where}
)
SELECT
  event_name,
  COUNT(DISTINCT session_id) AS sessions_with_event,
  COUNT(DISTINCT session_id) FILTER (WHERE recency = 1) AS dropoff_sessions
FROM ranked
WHERE event_name IS NOT NULL{name_filter}
GROUP BY event_name
ORDER BY dropoff_sessions DESC, event_name
LIMIT {limit}
"""
    ).format(
        joins=e.joins,
        where=e.where,
        name_filter=name_filter,
        limit=param("limit", query.limit, ParamType.INTEGER),
    )


def first_day_activation(query: QueryFilters) -> Sql:
    e = compiler.compile(query, "e", events=False)
    target = compiler.event_match("t", query.event_name, EventType.CUSTOM_EVENT, "target")
    return Sql(
        """
WITH firsts AS (
  SELECT e.session_id, MIN(e.created_at) AS first_time
  FROM website_event e
  {joins}
  WHERE {where}
  GROUP BY e.session_id
)
SELECT
  (SELECT COUNT(*) FROM firsts) AS total_sessions,
  (SELECT COUNT(DISTINCT t.session_id)
   FROM website_event t
   JOIN firsts f ON f.session_id = t.session_id
   WHERE {scope}
     AND (t.created_at AT TIME ZONE 'UTC')::date = (f.first_time AT TIME ZONE 'UTC')::date
     AND {target}) AS sessions_with_event
"""
    ).format(
        joins=e.joins,
        where=e.where,
        scope=compiler.scope("t", query.website_id),
        target=target,
    )


def path_transitions(query: PathTransitionQuery) -> Sql:
    e = compiler.compile(query.with_event_type(EventType.PAGE_VIEW), "e")
    path = Sql(compiler.path_expression("e", query.normalize_paths))
    return Sql(
        """
WITH pageviews AS (
  SELECT
    e.visit_id,
    {path} AS path,
    ROW_NUMBER() OVER (PARTITION BY e.visit_id ORDER BY e.created_at, e.event_id) AS step
  FROM website_event e
  {joins}
  WHERE {where}
)
SELECT
  a.path AS from_path,
  b.path AS to_path,
  COUNT(*) AS transitions
FROM pageviews a
LEFT JOIN pageviews b
  ON b.visit_id = a.visit_id AND b.step = a.step + 1
GROUP BY a.path, b.path
HAVING COUNT(*) >= {min_support}
ORDER BY transitions DESC, from_path NULLS LAST, to_path NULLS LAST
"""
    ).format(
        path=path,
        joins=e.joins,
        where=e.where,
        min_support=param("min_support", query.min_support, ParamType.INTEGER),
    )


def user_events_for_churn(query: ChurnQuery) -> Sql:
    predicates = [
        compiler.scope("s", query.website_id),
        Sql("s.created_at < ") + param("end_at", query.end_at, ParamType.TIMESTAMP),
        Sql("s.created_at >= ") + param("lookback_start", query.lookback_start, ParamType.TIMESTAMP),
        *compiler.segment_predicates(query, "s"),
    ]
    joins = EMPTY
    if query.cohort is not None:
        joins = compiler.cohort_join(query.cohort, query.website_id, "s")
    return Sql(
        """
SELECT
  s.session_id,
  s.created_at AS user_created_at,
  e.created_at AS event_time
FROM session s
LEFT JOIN website_event e
  ON e.session_id = s.session_id
 AND e.website_id = s.website_id
 AND e.created_at < {end_at}
{joins}
WHERE {where}
ORDER BY s.session_id, e.created_at
"""
    ).format(
        end_at=param("end_at", query.end_at, ParamType.TIMESTAMP),
        joins=joins,
        where=Sql.join("\n  AND ", predicates),
    )


def arpu_denominators(query: ArpuDenominatorQuery) -> Sql:
    if query.model == "paying_users":
        r = compiler.compile(query, "r", events=False)
        return Sql(
            """
SELECT
  {bucket} AS bucket_start,
  COUNT(DISTINCT r.session_id) AS user_count
FROM revenue r
{joins}
WHERE {where}
  AND r.revenue > 0
GROUP BY 1
ORDER BY 1
"""
        ).format(
            bucket=Sql(bucket_expression("r.created_at", query.granularity)),
            joins=r.joins,
            where=r.where,
        )

    e = compiler.compile(query, "e")
    return Sql(
        """
SELECT
  {bucket} AS bucket_start,
  COUNT(DISTINCT e.session_id) AS user_count
FROM website_event e
{joins}
WHERE {where}
GROUP BY 1
ORDER BY 1
"""
    ).format(
        bucket=Sql(bucket_expression("e.created_at", query.granularity)),
        joins=e.joins,
        where=e.where,
    )


def arpu_revenue(query: ArpuRevenueQuery) -> Sql:
    r = compiler.compile(query, "r", events=False)
    return Sql(
        """
SELECT
  {bucket} AS bucket_start,
  COALESCE(SUM(r.revenue), 0) AS revenue
FROM revenue r
{joins}
WHERE {where}
GROUP BY 1
ORDER BY 1
"""
    ).format(
        bucket=Sql(bucket_expression("r.created_at", query.granularity)),
        joins=r.joins,
        where=r.where,
    )


def bounce_rate(query: BucketQuery) -> Sql:
    # Filters pick the visits; a bounce is judged on all of the visit's page views
    e = compiler.compile(query.with_event_type(EventType.PAGE_VIEW), "e")
    return Sql(
        """
WITH visits AS (
  SELECT
    e.visit_id,
    MIN(e.created_at) AS first_view
  FROM website_event e
  {joins}
  WHERE {where}
  GROUP BY e.visit_id
),
page_counts AS (
  SELECT
    pc.visit_id,
    COUNT(*) AS page_views
  FROM website_event pc
  JOIN visits v ON v.visit_id = pc.visit_id
  WHERE {scope}
    AND {page_view}
  GROUP BY pc.visit_id
)
SELECT
  {bucket} AS bucket_start,
  COUNT(DISTINCT v.visit_id) AS visits,
  COUNT(DISTINCT v.visit_id) FILTER (WHERE pc.page_views = 1) AS bounces
FROM visits v
JOIN page_counts pc ON pc.visit_id = v.visit_id
GROUP BY 1
ORDER BY 1
"""
    ).format(
        joins=e.joins,
        where=e.where,
        scope=compiler.window(query, "pc"),
        page_view=compiler.equals(
            "pc.event_type", "event_type", int(EventType.PAGE_VIEW), ParamType.INTEGER
        ),
        bucket=Sql(bucket_expression("v.first_view", query.granularity)),
    )


def events_for_ctr(query: QueryFilters) -> Sql:
    e = compiler.compile(query, "e", with_session=True)
    return Sql(
        """
SELECT
  e.session_id,
  e.created_at,
  e.event_type,
  e.event_name,
  e.url_path,
  e.utm_source,
  {device} AS device,
  {country} AS country
FROM website_event e
{joins}
WHERE {where}
ORDER BY e.session_id, e.created_at, e.event_id
"""
    ).format(
        device=Sql(compiler.session_column("e", "device")),
        country=Sql(compiler.session_column("e", "country")),
        joins=e.joins,
        where=e.where,
    )


def most_frequent_events(query: RankedQuery) -> Sql:
    e = compiler.compile(query.with_default_event_type(EventType.CUSTOM_EVENT), "e")
    return Sql(
        """
SELECT
  e.event_name,
  COUNT(*) AS event_count,
  SUM(COUNT(*)) OVER () AS total_events
FROM website_event e
{joins}
WHERE {where}
  AND {named}
GROUP BY e.event_name
ORDER BY event_count DESC, e.event_name
LIMIT {limit}
"""
    ).format(
        joins=e.joins,
        where=e.where,
        named=Sql(compiler.has_value("e.event_name")),
        limit=param("limit", query.limit, ParamType.INTEGER),
    )


def events_per_session(query: QueryFilters) -> Sql:
    e = compiler.compile(query.with_default_event_type(EventType.CUSTOM_EVENT), "e")
    return Sql(
        """
WITH per_session AS (
  SELECT e.session_id, COUNT(*) AS event_count
  FROM website_event e
  {joins}
  WHERE {where}
  GROUP BY e.session_id
)
SELECT event_count, COUNT(*) AS session_count
FROM per_session
GROUP BY event_count
ORDER BY event_count
"""
    ).format(joins=e.joins, where=e.where)


def unique_users(query: QueryFilters) -> Sql:
    e = compiler.compile(query.with_default_event_type(EventType.CUSTOM_EVENT), "e")
    return Sql(
        """
SELECT COUNT(DISTINCT e.session_id) AS unique_users
FROM website_event e
{joins}
WHERE {where}
"""
    ).format(joins=e.joins, where=e.where)


def path_table(query: RankedQuery) -> Sql:
    e = compiler.compile(query.with_default_event_type(EventType.PAGE_VIEW), "e")
    return Sql(
        """
SELECT
  e.url_path AS path,
  COUNT(DISTINCT e.session_id) AS visitors,
  COUNT(*) AS views
FROM website_event e
{joins}
WHERE {where}
  AND {has_path}
GROUP BY e.url_path
ORDER BY visitors DESC, path
LIMIT {limit}
"""
    ).format(
        joins=e.joins,
        where=e.where,
        has_path=Sql(compiler.has_value("e.url_path")),
        limit=param("limit", query.limit, ParamType.INTEGER),
    )
