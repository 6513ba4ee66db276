# ==============================================================================
# Infrastructure Adapters
# ==============================================================================
"""
Adapters for the two analytics stores (ports-and-adapters architecture).

- postgresql.py - Relational backend (psycopg2 connection pool)
- clickhouse.py - Columnar backend (clickhouse-connect HTTP client)

Modules are imported lazily by core.engine.create_backend so that only the
driver of the configured backend is loaded.
"""
