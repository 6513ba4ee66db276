# ==============================================================================
# Tests for Package Import Order
# ==============================================================================
"""
Each package entry point must import cleanly when it is the first thing a
process loads. A fresh interpreter is used per module so modules cached by
other tests cannot mask a cycle.
"""

import subprocess
import sys

import pytest


@pytest.mark.parametrize(
    "module",
    [
        "sitemetrics.base",
        "sitemetrics.base.backend",
        "sitemetrics.core",
        "sitemetrics.core.models",
        "sitemetrics.core.engine",
        "sitemetrics.sql",
        "sitemetrics.infrastructure.postgresql",
        "sitemetrics.infrastructure.clickhouse",
        "sitemetrics.app",
    ],
)
def test_imports_first_in_fresh_interpreter(module):
    result = subprocess.run(
        [sys.executable, "-c", f"import {module}"],
        capture_output=True,
        text=True,
        timeout=60,
    )
    assert result.returncode == 0, result.stderr
