# ==============================================================================
# Engine Errors
# ==============================================================================
"""
Error taxonomy for the analytics engine.

- MetricNotImplementedError: no implementation for the active backend
- QueryValidationError: malformed input, raised before any query executes
- BackendExecutionError: the store rejected or failed the query
- QueryTimeoutError: the store aborted the query at its deadline

A query that matches zero rows is not an error: metrics return an empty
list (or zero counts) in that case.
"""

from collections.abc import Iterable


class AnalyticsError(Exception):
    """Base exception for sitemetrics."""


class MetricNotImplementedError(AnalyticsError, NotImplementedError):
    """A metric has no implementation for the currently selected backend."""

    def __init__(self, metric: str, backend: str):
        self.metric = metric
        self.backend = backend
        super().__init__(f"Metric '{metric}' is not implemented for the {backend} backend")


class QueryValidationError(AnalyticsError, ValueError):
    """Malformed metric input (bad date, unknown granularity, unknown metric...)."""


class UnboundParameterError(QueryValidationError):
    """A statement references a placeholder with no bound value."""

    def __init__(self, names: Iterable[str]):
        self.names = sorted(names)
        super().__init__(f"Unbound query parameter(s): {', '.join(self.names)}")


class ParameterCollisionError(AnalyticsError, ValueError):
    """Two SQL fragments bind different values under the same parameter name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Parameter '{name}' is bound to conflicting values")


class BackendExecutionError(AnalyticsError):
    """The backend rejected or failed a query.

    Attributes:
        backend: Backend name ("postgresql" or "clickhouse")
        metric: Metric being computed when the failure happened
        code: Backend-native error code when available (SQLSTATE for
            PostgreSQL, numeric server code for ClickHouse)

    The original driver exception is chained as ``__cause__``.
    """

    def __init__(self, backend: str, metric: str, message: str, code: str | None = None):
        self.backend = backend
        self.metric = metric
        self.code = code
        detail = f" [{code}]" if code else ""
        super().__init__(f"{backend} failed computing '{metric}'{detail}: {message}")


class QueryTimeoutError(BackendExecutionError):
    """The backend aborted the query because it exceeded its deadline."""
