# ==============================================================================
# Tests for Parameter Binders: sql/binder.py
# ==============================================================================
"""
Tests for the PostgreSQL (named placeholders + casts) and ClickHouse (typed
placeholders) binders.

Both must reject unbound names and must never put a value into SQL text.
"""

from datetime import UTC, date, datetime, timedelta, timezone
from uuid import UUID

import pytest

from sitemetrics.core.errors import QueryValidationError, UnboundParameterError
from sitemetrics.sql.binder import ClickHouseBinder, PostgreSQLBinder, infer_type
from sitemetrics.sql.statement import Param, ParamType, Sql, param

INJECTION = "x'; DROP TABLE website_event; --"


# ==============================================================================
# PostgreSQL
# ==============================================================================


class TestPostgreSQLBinder:
    """Tests for psycopg2 pyformat binding."""

    def setup_method(self):
        self.binder = PostgreSQLBinder()

    def test_named_placeholder_with_cast(self):
        statement = Sql("WHERE website_id = ") + param("website_id", "abc", ParamType.UUID)
        text, values = self.binder.bind(statement)
        assert text == "WHERE website_id = %(website_id)s::uuid"
        assert values == {"website_id": "abc"}

    def test_untyped_placeholder_has_no_cast(self):
        text, _ = self.binder.bind(Sql("a = ") + param("name", "signup"))
        assert text == "a = %(name)s"

    def test_reused_name_binds_one_value(self):
        end = datetime(2025, 8, 1, tzinfo=UTC)
        statement = (
            Sql("a < ")
            + param("end_at", end, ParamType.TIMESTAMP)
            + Sql(" AND b < ")
            + param("end_at", end, ParamType.TIMESTAMP)
        )
        text, values = self.binder.bind(statement)
        assert text.count("%(end_at)s::timestamptz") == 2
        assert values == {"end_at": end}

    def test_percent_signs_are_escaped(self):
        text, _ = self.binder.bind(Sql("url LIKE '/blog%' AND a = ") + param("a", 1))
        assert "'/blog%%'" in text

    def test_naive_datetime_is_treated_as_utc(self):
        _, values = self.binder.bind(param("t", datetime(2025, 7, 1), ParamType.TIMESTAMP))
        assert values["t"] == datetime(2025, 7, 1, tzinfo=UTC)

    def test_uuid_serialized_as_string(self):
        value = UUID("6f1c1f2e-4d1b-4c53-9f4e-2b8f6c0a9d11")
        _, values = self.binder.bind(param("id", value, ParamType.UUID))
        assert values["id"] == str(value)

    def test_values_never_reach_text(self):
        text, values = self.binder.bind(Sql("event_name = ") + param("event_name", INJECTION))
        assert INJECTION not in text
        assert values["event_name"] == INJECTION

    def test_unbound_name_rejected(self):
        with pytest.raises(UnboundParameterError, match="website_id"):
            self.binder.bind(Sql("WHERE website_id = {{website_id}}"))

    def test_unreferenced_params_are_not_sent(self):
        statement = Sql("SELECT 1", {"unused": Param(1)})
        _, values = self.binder.bind(statement)
        assert values == {}


# ==============================================================================
# ClickHouse
# ==============================================================================


class TestClickHouseBinder:
    """Tests for clickhouse-connect server-side binding."""

    def setup_method(self):
        self.binder = ClickHouseBinder()

    def test_every_placeholder_declares_its_type(self):
        statement = (
            Sql("website_id = ")
            + param("website_id", "abc", ParamType.UUID)
            + Sql(" AND created_at >= ")
            + param("start_at", datetime(2025, 7, 1, tzinfo=UTC), ParamType.TIMESTAMP)
            + Sql(" LIMIT ")
            + param("limit", 10)
        )
        text, _ = self.binder.bind(statement)
        assert "{website_id:UUID}" in text
        assert "{start_at:DateTime64(3, 'UTC')}" in text
        assert "{limit:Int64}" in text

    def test_timestamp_serialized_as_iso_string_in_utc(self):
        local = datetime(2025, 7, 1, 2, 30, tzinfo=timezone(timedelta(hours=2)))
        _, values = self.binder.bind(param("t", local, ParamType.TIMESTAMP))
        assert values["t"] == "2025-07-01 00:30:00.000"

    def test_date_serialized_as_iso_string(self):
        _, values = self.binder.bind(param("d", date(2025, 7, 1)))
        assert values["d"] == "2025-07-01"

    def test_values_never_reach_text(self):
        text, values = self.binder.bind(Sql("event_name = ") + param("event_name", INJECTION))
        assert text == "event_name = {event_name:String}"
        assert values["event_name"] == INJECTION

    def test_unbound_name_rejected(self):
        with pytest.raises(UnboundParameterError):
            self.binder.bind(Sql("LIMIT {{limit}}"))


# ==============================================================================
# Type inference
# ==============================================================================


class TestInferType:
    """Tests for infer_type ordering and failures."""

    @pytest.mark.parametrize(
        "value, expected",
        [
            (1, ParamType.INTEGER),
            (1.5, ParamType.FLOAT),
            (datetime(2025, 7, 1), ParamType.TIMESTAMP),
            (date(2025, 7, 1), ParamType.DATE),
            (UUID(int=1), ParamType.UUID),
            ("x", ParamType.STRING),
        ],
    )
    def test_inferred_from_value(self, value, expected):
        assert infer_type(Param(value)) is expected

    def test_hint_wins(self):
        assert infer_type(Param("abc", ParamType.UUID)) is ParamType.UUID

    def test_bool_needs_a_hint(self):
        with pytest.raises(QueryValidationError):
            infer_type(Param(True))

    def test_unknown_type_rejected(self):
        with pytest.raises(QueryValidationError):
            infer_type(Param(["a", "b"]))
