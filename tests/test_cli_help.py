# ==============================================================================
# Tests for CLI Help Commands
# ==============================================================================
"""
Tests that all CLI help commands generate the expected output.

Verifies that every command and subcommand in the sitemetrics CLI:
- Exits with code 0 when invoked with --help
- Contains the expected description text
- Lists the expected subcommands or options

These tests use the real app from sitemetrics.app (not minimal Typer apps)
to ensure the full command tree is wired up correctly and that Typer can
introspect all command function signatures without errors.
"""

import pytest
from typer.testing import CliRunner

from sitemetrics.app import app

runner = CliRunner()


# ==============================================================================
# Root App
# ==============================================================================


class TestRootHelp:
    """Tests for the root `sitemetrics --help` output."""

    def test_exit_code(self):
        """Root --help exits successfully."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0

    def test_description(self):
        """Root --help shows the app description."""
        result = runner.invoke(app, ["--help"])
        assert "Web analytics query engine CLI" in result.output

    def test_lists_all_subcommands(self):
        """Root --help lists every top-level command."""
        result = runner.invoke(app, ["--help"])
        for cmd in ["config", "metrics", "status"]:
            assert cmd in result.output, f"Missing command: {cmd}"


# ==============================================================================
# Config
# ==============================================================================


class TestConfigHelp:
    """Tests for `sitemetrics config` help output."""

    def test_description(self):
        result = runner.invoke(app, ["config", "--help"])
        assert result.exit_code == 0
        assert "Configuration management" in result.output

    def test_show_has_json_option(self):
        result = runner.invoke(app, ["config", "show", "--help"])
        assert result.exit_code == 0
        assert "--json" in result.output


# ==============================================================================
# Metrics
# ==============================================================================


class TestMetricsHelp:
    """Tests for `sitemetrics metrics` help output."""

    def test_description(self):
        result = runner.invoke(app, ["metrics", "--help"])
        assert result.exit_code == 0
        assert "Run analytics metrics against the active backend" in result.output

    def test_lists_subcommands(self):
        """Metrics --help lists all subcommands."""
        result = runner.invoke(app, ["metrics", "--help"])
        expected_commands = [
            "funnel",
            "dropoffs",
            "activation",
            "transitions",
            "bounce-rate",
            "arpu",
            "events",
        ]
        for cmd in expected_commands:
            assert cmd in result.output, f"Missing command: {cmd}"

    @pytest.mark.parametrize(
        "command",
        ["funnel", "dropoffs", "activation", "transitions", "bounce-rate", "arpu", "events"],
    )
    def test_window_options(self, command):
        """Every metric takes a website and a date window."""
        result = runner.invoke(app, ["metrics", command, "--help"])
        assert result.exit_code == 0
        for option in ["--website", "--from", "--to", "--json"]:
            assert option in result.output, f"{command} is missing {option}"

    def test_funnel_event_options(self):
        result = runner.invoke(app, ["metrics", "funnel", "--help"])
        assert "--start-event" in result.output
        assert "--end-event" in result.output

    def test_bounce_rate_granularity(self):
        result = runner.invoke(app, ["metrics", "bounce-rate", "--help"])
        assert "--granularity" in result.output


# ==============================================================================
# Status
# ==============================================================================


class TestStatusHelp:
    def test_description(self):
        result = runner.invoke(app, ["status", "--help"])
        assert result.exit_code == 0
        assert "reachable" in result.output
