# ==============================================================================
# Base Abstract Classes
# ==============================================================================
"""
Abstract base classes for the ports-and-adapters architecture.

AnalyticsBackend is the port every store adapter implements, one method per
metric. Concrete adapters live in infrastructure/.
"""

from sitemetrics.base.backend import AnalyticsBackend

__all__ = [
    "AnalyticsBackend",
]
