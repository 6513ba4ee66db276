# ==============================================================================
# Result Normalization
# ==============================================================================
"""
Coerce backend-native values into one canonical result shape.

psycopg2 returns ``Decimal`` for numeric columns, ``int`` for bigint and
aware ``datetime`` for timestamptz. clickhouse-connect returns ``int`` for
UInt64, ``UUID`` objects for UUID columns and naive ``datetime`` values in
UTC. Result models declare their columns with the annotated types below so
that pydantic applies the same coercion whichever backend produced the row:

- Count: integer, 0 when absent
- Amount: float, 0.0 when absent
- BucketDate: ``YYYY-MM-DD`` string (UTC)
- Timestamp: timezone-aware UTC datetime
- Text: plain string (UUIDs and bytes decoded)
"""

from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Annotated, Any, TypeVar
from uuid import UUID

from pydantic import BaseModel, BeforeValidator

M = TypeVar("M", bound=BaseModel)


def to_int(value: Any) -> int:
    """Coerce a counter to int; missing counters are 0."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise ValueError(f"Counter is not integral: {value!r}")
        return int(value)
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Counter is not integral: {value!r}")
        return int(value)
    if isinstance(value, (str, bytes)):
        # 64-bit counters may arrive as strings from JSON-ish transports
        return int(value)
    raise ValueError(f"Cannot coerce {type(value).__name__} to a counter")


def to_float(value: Any) -> float:
    """Coerce a monetary or ratio value to float; missing values are 0.0."""
    if value is None:
        return 0.0
    return float(value)


def to_utc(value: Any) -> datetime | None:
    """Coerce a timestamp to an aware UTC datetime. Naive values are UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    raise ValueError(f"Cannot coerce {type(value).__name__} to a timestamp")


def to_bucket_label(value: Any) -> str:
    """Format a truncated bucket timestamp as ``YYYY-MM-DD`` (UTC)."""
    if isinstance(value, datetime):
        return to_utc(value).date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        # Accepts already-formatted labels and full ISO timestamps
        return date.fromisoformat(value[:10]).isoformat()
    raise ValueError(f"Cannot format {type(value).__name__} as a bucket label")


def to_text(value: Any) -> str | None:
    """Coerce identifiers and strings to str; None stays None."""
    if value is None:
        return None
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


Count = Annotated[int, BeforeValidator(to_int)]
Amount = Annotated[float, BeforeValidator(to_float)]
BucketDate = Annotated[str, BeforeValidator(to_bucket_label)]
Timestamp = Annotated[datetime, BeforeValidator(to_utc)]
OptionalTimestamp = Annotated[datetime | None, BeforeValidator(to_utc)]
Text = Annotated[str | None, BeforeValidator(to_text)]
Identifier = Annotated[str, BeforeValidator(to_text)]


def normalize_rows(rows: Iterable[Mapping[str, Any]], model: type[M]) -> list[M]:
    """Validate raw backend rows into result models.

    No rows yields an empty list, never None.
    """
    return [model.model_validate(dict(row)) for row in rows]


def normalize_row(rows: Iterable[Mapping[str, Any]], model: type[M]) -> M:
    """Validate a single-row aggregate.

    Aggregates always produce one row; an empty result is treated as a row
    of absent values so every counter defaults to 0.
    """
    for row in rows:
        return model.model_validate(dict(row))
    return model.model_validate({})


def percentage(part: int | float, whole: int | float) -> float:
    """``part / whole * 100`` rounded to 2 decimals, 0.0 when whole is 0."""
    if not whole:
        return 0.0
    return round(part / whole * 100, 2)
