# ==============================================================================
# CLI Commands Module
# ==============================================================================
"""
CLI commands for sitemetrics.

Commands are organized into separate modules for maintainability:
- shared.py: Common utilities, constants, and helpers
- config.py: Configuration display
- status.py: Backend connectivity
- metrics.py: Metric commands
"""
