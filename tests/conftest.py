"""Pytest configuration for test isolation.

CSV imports persist mapping templates under a default working-directory
relative location (``./csv_mappings``). When tests run in the same working
tree, a template auto-saved by one test would be found by the next one and
short-circuit the suggestion path it means to exercise.

To keep tests hermetic, we redirect the template directory to a unique
temporary directory for each test via an autouse fixture, and clear
``DATABASE_URL`` so no test talks to a developer's database by accident.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

DATA_DIR = Path(__file__).parent / "data"


@pytest.fixture(autouse=True)
def template_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Force a per-test template directory so tests don't share on-disk state."""

    root = tmp_path / "csv_mappings"
    # Ensure the directory exists to make behavior explicit and help debugging.
    root.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("BANK_IMPORT_TEMPLATE_DIR", os.fspath(root))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    return root


@pytest.fixture
def data_dir() -> Path:
    return DATA_DIR
