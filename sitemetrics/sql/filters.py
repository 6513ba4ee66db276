# ==============================================================================
# Filter / Cohort Compilers
# ==============================================================================
"""
Compile QueryFilters into trusted SQL fragments plus their parameters.

One compiler per dialect:
- PostgreSQLFilterCompiler: session attributes live in the ``session`` table
  and are reached through a join
- ClickHouseFilterCompiler: session attributes are denormalized onto
  ``website_event``, no join needed

A compiled fragment references only the aliases it is given (plus aliases
derived from them with a fixed suffix) and only parameter names carrying the
compiler's prefix. Nested cohort sub-queries use their own prefix, so
embedding them never collides with the parent statement.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from sitemetrics.core.models import CohortFilters, EventType, QueryFilters
from sitemetrics.sql.statement import EMPTY, ParamType, Sql, param

EVENT_TABLE = "website_event"
SESSION_TABLE = "session"


@dataclass(frozen=True)
class CompiledFilters:
    """Join clauses and a WHERE conjunction for one aliased table."""

    joins: Sql
    where: Sql


class FilterCompiler(ABC):
    """Dialect-independent filter compilation."""

    dialect: str

    def __init__(self, prefix: str = ""):
        self.prefix = prefix

    def name(self, base: str) -> str:
        """Parameter name scoped to this compiler."""
        return f"{self.prefix}{base}"

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    def scope(self, alias: str, website_id: str) -> Sql:
        return Sql(f"{alias}.website_id = ") + param(
            self.name("website_id"), website_id, ParamType.UUID
        )

    def time_range(
        self,
        alias: str,
        start_at: datetime,
        end_at: datetime,
        column: str = "created_at",
    ) -> Sql:
        """Half-open ``[start_at, end_at)`` on one timestamp column."""
        return (
            Sql(f"{alias}.{column} >= ")
            + param(self.name("start_at"), start_at, ParamType.TIMESTAMP)
            + Sql(f" AND {alias}.{column} < ")
            + param(self.name("end_at"), end_at, ParamType.TIMESTAMP)
        )

    def window(self, filters: QueryFilters, alias: str, column: str = "created_at") -> Sql:
        return Sql.join(
            " AND ",
            [
                self.scope(alias, filters.website_id),
                self.time_range(alias, filters.start_at, filters.end_at, column),
            ],
        )

    def equals(self, expression: str, name: str, value, type: ParamType | None = None) -> Sql:
        return Sql(f"{expression} = ") + param(self.name(name), value, type)

    def event_predicates(self, filters: QueryFilters, alias: str) -> list[Sql]:
        """Event type, name, url path and UTM source, all ANDed."""
        predicates = []
        if filters.event_type is not None:
            predicates.append(
                self.equals(f"{alias}.event_type", "event_type", int(filters.event_type), ParamType.INTEGER)
            )
        if filters.event_name is not None:
            predicates.append(self.equals(f"{alias}.event_name", "event_name", filters.event_name))
        if filters.url_path is not None:
            predicates.append(self.equals(f"{alias}.url_path", "url_path", filters.url_path))
        if filters.utm_source is not None:
            predicates.append(self.equals(f"{alias}.utm_source", "utm_source", filters.utm_source))
        return predicates

    def segment_predicates(self, filters: QueryFilters, owner: str) -> list[Sql]:
        """Session attribute predicates against columns of ``owner``."""
        return [
            self.equals(f"{owner}.{column}", column, value)
            for column, value in filters.session_segment.items()
        ]

    def event_match(
        self,
        alias: str,
        event_name: str | None,
        default_type: EventType,
        name: str,
    ) -> Sql:
        """Match a named event, or any event of ``default_type`` when no name is given."""
        if event_name is not None:
            return self.equals(f"{alias}.event_name", name, event_name)
        return self.equals(f"{alias}.event_type", f"{name}_type", int(default_type), ParamType.INTEGER)

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def compile(
        self,
        filters: QueryFilters,
        alias: str,
        *,
        events: bool = True,
        with_session: bool = False,
    ) -> CompiledFilters:
        """
        Compile filters for a table aliased ``alias``.

        Args:
            filters: Logical filter set
            alias: Alias of the event-shaped table in the parent statement
            events: Apply event predicates (type, name, path, UTM source).
                Tables without those columns (revenue) pass False.
            with_session: Always join session attributes, even when no
                segment predicate needs them

        Returns:
            CompiledFilters with join clauses and the WHERE conjunction
        """
        predicates = [self.window(filters, alias)]
        if events:
            predicates.extend(self.event_predicates(filters, alias))

        joins = []
        if with_session or filters.session_segment:
            joins.append(self.session_join(alias))
            predicates.extend(self.segment_predicates(filters, self.session_owner(alias)))
        if filters.cohort is not None:
            joins.append(self.cohort_join(filters.cohort, filters.website_id, alias))

        return CompiledFilters(
            joins=Sql.join("\n", joins),
            where=Sql.join("\n  AND ", predicates),
        )

    def cohort_join(self, cohort: CohortFilters, website_id: str, alias: str) -> Sql:
        """Inner join against the distinct sessions matching ``cohort``."""
        nested = type(self)(prefix=self.name("cohort_"))
        inner = f"{alias}_cohort_event"
        outer = f"{alias}_cohort"

        predicates = [
            nested.scope(inner, website_id),
            nested.time_range(inner, cohort.start_at, cohort.end_at),
        ]
        if cohort.event_name is not None:
            predicates.append(nested.equals(f"{inner}.event_name", "event_name", cohort.event_name))
        if cohort.url_path is not None:
            predicates.append(nested.equals(f"{inner}.url_path", "url_path", cohort.url_path))

        return (
            Sql(f"JOIN (SELECT DISTINCT {inner}.session_id FROM {EVENT_TABLE} {inner} WHERE ")
            + Sql.join(" AND ", predicates)
            + Sql(f") {outer} ON {outer}.session_id = {alias}.session_id")
        )

    # ------------------------------------------------------------------
    # Dialect specifics
    # ------------------------------------------------------------------

    @abstractmethod
    def session_join(self, alias: str) -> Sql:
        """Join that exposes session attributes for ``alias``."""
        ...

    @abstractmethod
    def session_owner(self, alias: str) -> str:
        """Alias whose columns hold session attributes."""
        ...

    @abstractmethod
    def path_expression(self, alias: str, normalize: bool) -> str:
        """url_path of ``alias``, optionally normalized."""
        ...

    @abstractmethod
    def has_value(self, expression: str) -> str:
        """Predicate: a text column is set."""
        ...

    def session_column(self, alias: str, column: str) -> str:
        return f"{self.session_owner(alias)}.{column}"


class PostgreSQLFilterCompiler(FilterCompiler):
    dialect = "postgresql"

    def session_join(self, alias: str) -> Sql:
        owner = self.session_owner(alias)
        return Sql(
            f"LEFT JOIN {SESSION_TABLE} {owner} "
            f"ON {owner}.session_id = {alias}.session_id AND {owner}.website_id = {alias}.website_id"
        )

    def session_owner(self, alias: str) -> str:
        return f"{alias}_session"

    def path_expression(self, alias: str, normalize: bool) -> str:
        if not normalize:
            return f"{alias}.url_path"
        return f"lower(regexp_replace({alias}.url_path, '[?#].*$', ''))"

    def has_value(self, expression: str) -> str:
        return f"{expression} IS NOT NULL"


class ClickHouseFilterCompiler(FilterCompiler):
    dialect = "clickhouse"

    def session_join(self, alias: str) -> Sql:
        # website_event carries device/country/browser/os
        return EMPTY

    def session_owner(self, alias: str) -> str:
        return alias

    def path_expression(self, alias: str, normalize: bool) -> str:
        if not normalize:
            return f"{alias}.url_path"
        return f"lower(replaceRegexpOne({alias}.url_path, '[?#].*$', ''))"

    def has_value(self, expression: str) -> str:
        # String columns default to '' instead of NULL
        return f"{expression} != ''"
