# ==============================================================================
# Core Domain Logic
# ==============================================================================
"""
Domain logic shared by both backends.

This module contains:
- Domain models (QueryFilters, per-metric queries, row and result models)
- Result normalization (counters, bucket labels, timestamps)
- The error taxonomy

AnalyticsEngine lives in sitemetrics.core.engine and is imported from there;
it depends on the backend port, which in turn depends on these models.
"""

from sitemetrics.core.errors import (
    AnalyticsError,
    BackendExecutionError,
    MetricNotImplementedError,
    ParameterCollisionError,
    QueryTimeoutError,
    QueryValidationError,
    UnboundParameterError,
)
from sitemetrics.core.models import CohortFilters, EventType, Granularity, QueryFilters

__all__ = [
    # Errors
    "AnalyticsError",
    "BackendExecutionError",
    "MetricNotImplementedError",
    "ParameterCollisionError",
    "QueryTimeoutError",
    "QueryValidationError",
    "UnboundParameterError",
    # Models
    "CohortFilters",
    "EventType",
    "Granularity",
    "QueryFilters",
]
