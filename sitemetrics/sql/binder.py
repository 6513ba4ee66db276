# ==============================================================================
# Parameter Binders
# ==============================================================================
"""
Translate logical ``{{name}}`` placeholders into a driver's native syntax.

- PostgreSQLBinder: psycopg2 named placeholders ``%(name)s`` with optional
  explicit casts (``::uuid``, ``::timestamptz``). A name used twice refers to
  one value in the parameter dict.
- ClickHouseBinder: server-side typed placeholders ``{name:Type}``. Every
  placeholder declares its wire type; dates and timestamps are serialized to
  ISO-8601 strings before binding.

Both binders reject statements that reference an unbound name. Values are
returned in the parameter dict and never written into the SQL text.
"""

from abc import ABC, abstractmethod
from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID

from sitemetrics.core.errors import QueryValidationError, UnboundParameterError
from sitemetrics.sql.statement import PLACEHOLDER_PATTERN, Param, ParamType, Sql


def infer_type(param: Param) -> ParamType:
    """Resolve a parameter's type from its hint, or from its Python value."""
    if param.type is not None:
        return param.type
    value = param.value
    # bool is an int subclass and datetime a date subclass: order matters
    if isinstance(value, bool):
        raise QueryValidationError("Boolean parameters need an explicit type hint")
    if isinstance(value, int):
        return ParamType.INTEGER
    if isinstance(value, float):
        return ParamType.FLOAT
    if isinstance(value, datetime):
        return ParamType.TIMESTAMP
    if isinstance(value, date):
        return ParamType.DATE
    if isinstance(value, UUID):
        return ParamType.UUID
    if isinstance(value, str):
        return ParamType.STRING
    raise QueryValidationError(f"Cannot infer a SQL type for {type(value).__name__}")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Binder(ABC):
    """Render a Sql statement into (driver SQL text, driver parameters)."""

    dialect: str

    def bind(self, statement: Sql) -> tuple[str, dict[str, Any]]:
        """
        Bind a statement.

        Args:
            statement: Composed statement with its parameter bag

        Returns:
            Tuple of (SQL text in native placeholder syntax, parameter dict)

        Raises:
            UnboundParameterError: If a placeholder has no bound value
        """
        names = statement.placeholders()
        missing = [name for name in names if name not in statement.params]
        if missing:
            raise UnboundParameterError(missing)

        text = PLACEHOLDER_PATTERN.sub(
            lambda m: self.placeholder(m.group(1), statement.params[m.group(1)]),
            self.escape(statement.text),
        )
        values = {name: self.serialize(statement.params[name]) for name in names}
        return text, values

    def escape(self, text: str) -> str:
        """Escape driver-significant characters in trusted SQL text."""
        return text

    @abstractmethod
    def placeholder(self, name: str, param: Param) -> str:
        """Native placeholder for one parameter."""
        ...

    @abstractmethod
    def serialize(self, param: Param) -> Any:
        """Driver-ready value for one parameter."""
        ...


class PostgreSQLBinder(Binder):
    """psycopg2 pyformat binder."""

    dialect = "postgresql"

    CASTS = {
        ParamType.UUID: "::uuid",
        ParamType.TIMESTAMP: "::timestamptz",
        ParamType.DATE: "::date",
        ParamType.INTEGER: "::bigint",
        ParamType.FLOAT: "::double precision",
        ParamType.STRING: "",
    }

    def escape(self, text: str) -> str:
        # psycopg2 treats a bare % as the start of a placeholder
        return text.replace("%", "%%")

    def placeholder(self, name: str, param: Param) -> str:
        cast = self.CASTS[param.type] if param.type is not None else ""
        return f"%({name})s{cast}"

    def serialize(self, param: Param) -> Any:
        value = param.value
        if param.type == ParamType.UUID and value is not None:
            return str(value)
        if isinstance(value, datetime):
            return _as_utc(value)
        return value


class ClickHouseBinder(Binder):
    """clickhouse-connect server-side binder."""

    dialect = "clickhouse"

    TYPES = {
        ParamType.UUID: "UUID",
        ParamType.STRING: "String",
        ParamType.INTEGER: "Int64",
        ParamType.FLOAT: "Float64",
        ParamType.TIMESTAMP: "DateTime64(3, 'UTC')",
        ParamType.DATE: "Date",
    }

    def placeholder(self, name: str, param: Param) -> str:
        return "{" + name + ":" + self.TYPES[infer_type(param)] + "}"

    def serialize(self, param: Param) -> Any:
        value = param.value
        kind = infer_type(param)
        if kind == ParamType.TIMESTAMP:
            if isinstance(value, str):
                return value
            utc = _as_utc(value).replace(tzinfo=None)
            return utc.isoformat(sep=" ", timespec="milliseconds")
        if kind == ParamType.DATE:
            return value if isinstance(value, str) else value.isoformat()
        if kind == ParamType.UUID:
            return str(value)
        return value
