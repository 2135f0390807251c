"""Shared fixtures for the gitanalyzer test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Location of a fresh cache database."""
    return tmp_path / "cache" / "profiles.db"
