"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent

# Make src/ importable without an install
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FAKE_BINARY = PROJECT_ROOT / "tests" / "fixtures" / "fake_binary.py"


@pytest.fixture
def fake_binary() -> list[str]:
    """argv prefix that runs the fake binary with the current interpreter."""
    return [sys.executable, "-u", str(FAKE_BINARY)]


@pytest.fixture
def fake_binary_path() -> str:
    return str(FAKE_BINARY)


@pytest.fixture
def captured_lines() -> list[str]:
    """List that a test sink appends output lines to."""
    return []
