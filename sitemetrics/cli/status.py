# ==============================================================================
# Status Command
# ==============================================================================
"""
Status command for the sitemetrics CLI.

Connects to the configured backend and reports whether it answers, in
either formatted box output or JSON.
"""

import json as json_module
import logging
from typing import Annotated, Any

import typer

from sitemetrics.cli.shared import (
    BOX_WIDTH,
    C,
    I,
    _box_bottom,
    _box_header,
    _box_line,
    _empty_line,
    _status_badge,
)
from sitemetrics.core.engine import create_backend
from sitemetrics.utils.config import get_settings

logger = logging.getLogger(__name__)


def _collect_backend_data() -> dict[str, Any]:
    """Connect to the active backend and probe it."""
    settings = get_settings()
    backend = create_backend(settings)
    data: dict[str, Any] = {
        "backend": backend.name,
        "host": settings.backend_host(),
        "reachable": False,
        "error": None,
        "degraded_metrics": sorted(getattr(backend, "DEGRADED_METRICS", ())),
    }
    try:
        backend.connect()
        data["reachable"] = backend.check_connection()
    except Exception as e:
        # Status reports connectivity problems instead of failing on them
        logger.debug("Backend connect failed: %s", e)
        data["error"] = str(e).strip()
    finally:
        backend.close()
    return data


# ==============================================================================
# Commands
# ==============================================================================


def show_status(
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON for scripting")
    ] = False,
) -> None:
    """Show the active backend and whether it is reachable.

    Examples:
        sitemetrics status          # Formatted output
        sitemetrics status --json   # JSON output for scripting
    """
    data = _collect_backend_data()

    if json_output:
        print(json_module.dumps(data, indent=2))
        if not data["reachable"]:
            raise typer.Exit(1)
        return

    W = BOX_WIDTH
    print()
    print(_box_header("SITEMETRICS STATUS", W))
    print(_empty_line(W))
    print(_box_line(f"  {I.DATABASE} Backend:  {C.WHITE}{data['backend']}{C.RESET}", W))
    print(_box_line(f"    Host:     {C.WHITE}{data['host']}{C.RESET}", W))
    badge = _status_badge("reachable" if data["reachable"] else "unreachable", data["reachable"])
    print(_box_line(f"    Status:   {badge}", W))
    if data["degraded_metrics"]:
        degraded = ", ".join(data["degraded_metrics"])
        print(_box_line(f"    {C.BRIGHT_YELLOW}{I.WARN}{C.RESET} Degraded: {C.DIM}{degraded}{C.RESET}", W))
    print(_empty_line(W))
    print(_box_bottom(W))
    if data["error"]:
        print(f"  {C.DIM}{data['error']}{C.RESET}")
    print()

    if not data["reachable"]:
        raise typer.Exit(1)
