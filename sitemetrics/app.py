# ==============================================================================
# Sitemetrics CLI
# ==============================================================================
"""
Command-line interface for the sitemetrics analytics query engine.

Usage:
    sitemetrics --help
    sitemetrics status
    sitemetrics config show
    sitemetrics metrics funnel -w <website> --from 2025-07-01 --to 2025-08-31
    sitemetrics metrics dropoffs -w <website> --from 2025-07-01 --to 2025-07-31
    sitemetrics metrics bounce-rate -w <website> --from 2025-07-01 --to 2025-07-31 -g week
"""

import logging

# ==============================================================================
# App Configuration
# ==============================================================================
# Set consistent terminal width for help output formatting
import os

import typer

from sitemetrics.utils.config import get_settings

if "COLUMNS" not in os.environ:
    os.environ["COLUMNS"] = "115"

app = typer.Typer(
    name="sitemetrics",
    help="Web analytics query engine CLI",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

config_app = typer.Typer(
    help="Configuration management",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")

# Register config commands from cli.config module
from sitemetrics.cli.config import config_show

config_app.command("show")(config_show)

metrics_app = typer.Typer(
    help="Run analytics metrics against the active backend",
    no_args_is_help=True,
)
app.add_typer(metrics_app, name="metrics")

# Register metric commands from cli.metrics module
from sitemetrics.cli.metrics import (
    metrics_activation,
    metrics_arpu,
    metrics_bounce_rate,
    metrics_dropoffs,
    metrics_events,
    metrics_funnel,
    metrics_transitions,
)

metrics_app.command("funnel")(metrics_funnel)
metrics_app.command("dropoffs")(metrics_dropoffs)
metrics_app.command("activation")(metrics_activation)
metrics_app.command("transitions")(metrics_transitions)
metrics_app.command("bounce-rate")(metrics_bounce_rate)
metrics_app.command("arpu")(metrics_arpu)
metrics_app.command("events")(metrics_events)

# Status command is imported from sitemetrics.cli.status
from sitemetrics.cli.status import show_status

app.command("status")(show_status)


# ==============================================================================
# Entry Point
# ==============================================================================


def main() -> None:
    """CLI entry point."""
    logging.basicConfig(
        level=get_settings().effective_log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app()


if __name__ == "__main__":
    main()
