"""Timestamp helpers shared by the engine.

All timestamps are stored as naive UTC ISO-8601 strings.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: str) -> datetime:
    """Parse a stored ISO timestamp; aware values are normalized to naive UTC."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_timestamp(moment: datetime) -> str:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.isoformat()


def days_between(earlier: str | datetime, later: datetime) -> float:
    """Fractional days from ``earlier`` to ``later``."""
    if isinstance(earlier, str):
        earlier = parse_timestamp(earlier)
    return (later - earlier).total_seconds() / 86400
