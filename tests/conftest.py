"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from cli_harness.config import Config  # noqa: E402

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"


@pytest.fixture
def project_root() -> Path:
    """Project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Temporary working directory for launched commands."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def fast_config() -> Config:
    """Config with short grace periods for testing."""
    return Config(
        exit_timeout=5.0,
        io_wait_timeout=0.5,
        stop_timeout=0.5,
        term_timeout=0.5,
        kill_timeout=0.3,
    )
