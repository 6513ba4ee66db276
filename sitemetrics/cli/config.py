# ==============================================================================
# Config Commands
# ==============================================================================
"""
Configuration commands for the sitemetrics CLI.
"""

import json
from typing import Annotated

import typer

from sitemetrics.cli.shared import C
from sitemetrics.utils.config import get_settings


# ==============================================================================
# Commands
# ==============================================================================


def config_show(
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output configuration as JSON")
    ] = False,
) -> None:
    """Display current configuration (includes secrets in JSON mode)."""
    settings = get_settings()

    if json_output:
        config = {
            "analytics": {
                "backend": settings.analytics.backend,
                "query_timeout_seconds": settings.analytics.query_timeout_seconds,
                "churn_lookback_days": settings.analytics.churn_lookback_days,
                "max_workers": settings.analytics.max_workers,
            },
            "postgresql": {
                "host": settings.postgres.host,
                "port": settings.postgres.port,
                "database": settings.postgres.database,
                "schema": settings.postgres.schema_name,
                "user": settings.postgres.user,
                "password": settings.postgres.password,
                "sslmode": settings.postgres.sslmode,
                "pool_min_connections": settings.postgres.pool_min_connections,
                "pool_max_connections": settings.postgres.pool_max_connections,
            },
            "clickhouse": {
                "host": settings.clickhouse.host,
                "port": settings.clickhouse.port,
                "database": settings.clickhouse.database,
                "user": settings.clickhouse.user,
                "password": settings.clickhouse.password,
                "secure": settings.clickhouse.secure,
            },
            "log_level": settings.effective_log_level,
        }
        print(json.dumps(config, indent=2))
        return

    # Human-readable output
    print()
    print(f"{C.BOLD}Configuration{C.RESET}")
    print()

    print(f"{C.CYAN}Analytics{C.RESET}")
    print(f"  Backend:    {C.WHITE}{settings.analytics.backend}{C.RESET}")
    print(f"  Timeout:    {C.WHITE}{settings.analytics.query_timeout_seconds:g} seconds{C.RESET}")
    print(f"  Lookback:   {C.WHITE}{settings.analytics.churn_lookback_days} days{C.RESET}")
    print(f"  Workers:    {C.WHITE}{settings.analytics.max_workers}{C.RESET}")
    print()

    print(f"{C.CYAN}PostgreSQL{C.RESET}")
    print(f"  Host:       {C.WHITE}{settings.postgres.host}{C.RESET}")
    print(f"  Port:       {C.WHITE}{settings.postgres.port}{C.RESET}")
    print(f"  Database:   {C.WHITE}{settings.postgres.database}{C.RESET}")
    print(f"  Schema:     {C.WHITE}{settings.postgres.schema_name}{C.RESET}")
    print(f"  User:       {C.WHITE}{settings.postgres.user}{C.RESET}")
    print(f"  SSL:        {C.WHITE}{settings.postgres.sslmode}{C.RESET}")
    pool = f"{settings.postgres.pool_min_connections}-{settings.postgres.pool_max_connections}"
    print(f"  Pool:       {C.WHITE}{pool}{C.RESET}")
    print()

    print(f"{C.CYAN}ClickHouse{C.RESET}")
    print(f"  Host:       {C.WHITE}{settings.clickhouse.host}{C.RESET}")
    print(f"  Port:       {C.WHITE}{settings.clickhouse.port}{C.RESET}")
    print(f"  Database:   {C.WHITE}{settings.clickhouse.database}{C.RESET}")
    print(f"  User:       {C.WHITE}{settings.clickhouse.user}{C.RESET}")
    clickhouse_ssl = "enabled" if settings.clickhouse.secure else "disabled"
    print(f"  SSL:        {C.WHITE}{clickhouse_ssl}{C.RESET}")
    print()
