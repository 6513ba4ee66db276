# ==============================================================================
# ClickHouse Metric Queries
# ==============================================================================
"""
Metric statements for the columnar schema.

website_event carries the session attributes (browser, os, device, country)
so no session join is needed. Text columns are non-nullable Strings: an
unnamed event has ``event_name = ''``.

Only the metrics the columnar backend implements are defined here. Path
transitions, bounce rate and churn rows are not, and ARPU buckets and
click-through rows are served as documented empty results by the backend.
"""

from sitemetrics.core.models import (
    EventComparisonQuery,
    EventType,
    FunnelQuery,
    QueryFilters,
    RankedQuery,
)
from sitemetrics.sql.filters import ClickHouseFilterCompiler
from sitemetrics.sql.statement import EMPTY, ParamType, Sql, param

compiler = ClickHouseFilterCompiler()


def funnel(query: FunnelQuery) -> Sql:
    x = compiler.compile(query, "x")
    x_match = compiler.event_match("x", query.event_x, EventType.PAGE_VIEW, "event_x")
    y_match = compiler.event_match("y", query.event_y, EventType.CUSTOM_EVENT, "event_y")
    return Sql(
        """
SELECT
  (SELECT uniqExact(x.session_id)
   FROM website_event AS x
   {joins}
   WHERE {where}
     AND {x_match}) AS started_sessions,
  (SELECT uniqExact(x.session_id)
   FROM website_event AS x
   INNER JOIN website_event AS y
     ON y.website_id = x.website_id AND y.session_id = x.session_id
   {joins}
   WHERE {where}
     AND {x_match}
     AND {y_match}
     AND y.created_at > x.created_at) AS converted_sessions
"""
    ).format(joins=x.joins, where=x.where, x_match=x_match, y_match=y_match)


def event_comparison(query: EventComparisonQuery) -> Sql:
    e = compiler.compile(query.with_default_event_type(EventType.CUSTOM_EVENT), "e")
    return Sql(
        """
SELECT
  countIf(e.event_name = {first}) AS first_count,
  countIf(e.event_name = {second}) AS second_count
FROM website_event AS e
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
    e = compiler.compile(query, "e", events=False)
    name_filter = EMPTY
    if query.event_name is not None:
        name_filter = Sql("\n  AND ") + compiler.equals("event_name", "event_name", query.event_name)
    return Sql(
        """
WITH ranked AS (
  SELECT
    e.session_id AS session_id,
    e.event_name AS event_name,
    row_number() OVER (
      PARTITION BY e.session_id ORDER BY e.created_at DESC, e.event_id DESC
    ) AS recency
  FROM website_event AS e
  {joins}
  WHERE {where}
)
SELECT
  event_name,
  uniqExact(session_id) AS sessions_with_event,
  uniqExactIf(session_id, recency = 1) AS dropoff_sessions
FROM ranked
WHERE {named}{name_filter}
GROUP BY event_name
ORDER BY dropoff_sessions DESC, event_name
LIMIT {limit}
"""
    ).format(
        joins=e.joins,
        where=e.where,
        named=Sql(compiler.has_value("event_name")),
        name_filter=name_filter,
        limit=param("limit", query.limit, ParamType.INTEGER),
    )


def first_day_activation(query: QueryFilters) -> Sql:
    e = compiler.compile(query, "e", events=False)
    target = compiler.event_match("t", query.event_name, EventType.CUSTOM_EVENT, "target")
    return Sql(
        """
WITH firsts AS (
  SELECT e.session_id AS session_id, min(e.created_at) AS first_time
  FROM website_event AS e
  {joins}
  WHERE {where}
  GROUP BY e.session_id
)
SELECT
  (SELECT count() FROM firsts) AS total_sessions,
  (SELECT uniqExact(t.session_id)
   FROM website_event AS t
   INNER JOIN firsts AS f ON f.session_id = t.session_id
   WHERE {scope}
     AND toDate(t.created_at, 'UTC') = toDate(f.first_time, 'UTC')
     AND {target}) AS sessions_with_event
"""
    ).format(
        joins=e.joins,
        where=e.where,
        scope=compiler.scope("t", query.website_id),
        target=target,
    )


def most_frequent_events(query: RankedQuery) -> Sql:
    e = compiler.compile(query.with_default_event_type(EventType.CUSTOM_EVENT), "e")
    return Sql(
        """
SELECT
  e.event_name AS event_name,
  count() AS event_count,
  sum(count()) OVER () AS total_events
FROM website_event AS e
{joins}
WHERE {where}
  AND {named}
GROUP BY e.event_name
ORDER BY event_count DESC, event_name
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
  SELECT e.session_id AS session_id, count() AS event_count
  FROM website_event AS e
  {joins}
  WHERE {where}
  GROUP BY e.session_id
)
SELECT event_count, count() AS session_count
FROM per_session
GROUP BY event_count
ORDER BY event_count
"""
    ).format(joins=e.joins, where=e.where)


def unique_users(query: QueryFilters) -> Sql:
    e = compiler.compile(query.with_default_event_type(EventType.CUSTOM_EVENT), "e")
    return Sql(
        """
SELECT uniqExact(e.session_id) AS unique_users
FROM website_event AS e
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
  uniqExact(e.session_id) AS visitors,
  count() AS views
FROM website_event AS e
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
