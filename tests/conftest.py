"""Shared test fixtures and configuration.

Sets environment variables before any chorewheel import so settings are
predictable, and provides temp-file task stores plus a frozen clock.
"""

import os

# Patch env vars BEFORE any chorewheel imports
os.environ.setdefault("DATABASE_DIR", "data-test")
os.environ.setdefault("DEFAULT_TENANT", "default")
os.environ.setdefault("GROUP_BY_RECURRENCE", "false")
os.environ.setdefault("HISTORY_LOOKBACK_DAYS", "100")
os.environ.setdefault("MAX_PENALTY_POINTS_PER_TASK", "3")
os.environ.setdefault("RANDOM_SEED", "")

import random
from datetime import datetime, timedelta

import pytest

NOW = datetime(2026, 3, 1, 23, 0, 0)


def ts(days_ago: float = 0) -> str:
    """ISO timestamp ``days_ago`` days before NOW."""
    return (NOW - timedelta(days=days_ago)).isoformat()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "database-test.sqlite")


@pytest.fixture
def task_db(tmp_db_path):
    """Return a TaskDB instance backed by a temp file."""
    from chorewheel.data.db import TaskDB
    return TaskDB(db_path=tmp_db_path)


@pytest.fixture
def household(task_db):
    """Two users splitting work 50/50 and a handful of tasks."""
    from chorewheel.data.models import RecurrenceUnit

    alice = task_db.add_user("alice", 50, ts(30))
    bob = task_db.add_user("bob", 50, ts(30))
    dishes = task_db.add_task("dishes", RecurrenceUnit.WEEKLY, 30, ts(30))
    laundry = task_db.add_task(
        "laundry", RecurrenceUnit.WEEKLY, 20, ts(30), repeats_per_cycle=2,
    )
    windows = task_db.add_task("windows", RecurrenceUnit.MONTHLY, 60, ts(30))
    return {
        "store": task_db,
        "alice": alice,
        "bob": bob,
        "dishes": dishes,
        "laundry": laundry,
        "windows": windows,
    }
