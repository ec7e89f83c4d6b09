"""Pytest configuration and fixtures."""

import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Generator

import pytest

from src.engine.preferences import SchedulingPreferences

# Set test environment
os.environ["SCHEDULING_PREFERENCES_PATH"] = "config/preferences.yaml"
os.environ["LOG_LEVEL"] = "WARNING"

# Monday
MONDAY = datetime(2024, 1, 8)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def monday() -> datetime:
    """Midnight at the start of a Monday."""
    return MONDAY


@pytest.fixture
def prefs() -> SchedulingPreferences:
    """Default scheduling preferences."""
    return SchedulingPreferences()


@pytest.fixture
def preferences_yaml(temp_dir: Path) -> Path:
    """A small preferences file."""
    path = temp_dir / "preferences.yaml"
    path.write_text(
        "work_days: [mon, tue, wed, thu, fri]\n"
        "work_start: 9:00\n"
        "work_end: '17:00'\n"
        "buffer_minutes: 10\n"
        "horizon_days: 3\n"
    )
    return path
