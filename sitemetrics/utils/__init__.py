# ==============================================================================
# Sitemetrics Utilities
# ==============================================================================
"""
Shared utilities: configuration and connection retry.
"""

from sitemetrics.utils.config import (
    AnalyticsSettings,
    ClickHouseSettings,
    PostgresSettings,
    Settings,
    get_settings,
)
from sitemetrics.utils.retry import retry_light

__all__ = [
    # Config
    "AnalyticsSettings",
    "ClickHouseSettings",
    "PostgresSettings",
    "Settings",
    "get_settings",
    # Retry
    "retry_light",
]
