# ==============================================================================
# SQL Building
# ==============================================================================
"""
Trusted SQL composition, filter compilation and parameter binding.

- statement.py - Sql fragments and bound Params
- filters.py - QueryFilters -> joins and WHERE fragments, per dialect
- binder.py - Logical placeholders -> driver placeholders, per dialect
- postgresql.py / clickhouse.py - Metric statements per dialect
"""

from sitemetrics.sql.binder import Binder, ClickHouseBinder, PostgreSQLBinder
from sitemetrics.sql.filters import (
    ClickHouseFilterCompiler,
    CompiledFilters,
    FilterCompiler,
    PostgreSQLFilterCompiler,
)
from sitemetrics.sql.statement import EMPTY, Param, ParamType, Sql, param

__all__ = [
    # Statements
    "EMPTY",
    "Param",
    "ParamType",
    "Sql",
    "param",
    # Filters
    "ClickHouseFilterCompiler",
    "CompiledFilters",
    "FilterCompiler",
    "PostgreSQLFilterCompiler",
    # Binders
    "Binder",
    "ClickHouseBinder",
    "PostgreSQLBinder",
]
