"""
Chorewheel — Data Models.

The household's memory: task definitions, the user roster, live assignments,
the penalty-point ledger and the append-only history all persist in SQLite
between allocation cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class RecurrenceUnit(str, Enum):
    ONCE = "once"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class AssignmentStatus(str, Enum):
    WAITING = "waiting"
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    POSTPONED = "postponed"
    FAILED = "failed"


# Days per recurrence unit; monthly is approximated as 30 days.
RECURRENCE_UNIT_DAYS: dict[RecurrenceUnit, int] = {
    RecurrenceUnit.ONCE: 1,
    RecurrenceUnit.WEEKLY: 7,
    RecurrenceUnit.MONTHLY: 30,
}


@dataclass
class User:
    """A household member taking part in the chore rotation."""

    id: int
    name: str
    participation_share: int = 0     # percent of total effort, 0-100
    deleted_at: str | None = None
    created_at: str = ""

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class TaskDefinition:
    """A recurring chore template ("doing").

    A task with ``static_user_id`` always goes to that user and never takes
    part in scoring or the penalty ledger.
    """

    id: int
    name: str
    recurrence_unit: RecurrenceUnit
    recurrence_value: int = 1
    repeats_per_cycle: int = 1
    effort_minutes: int = 0
    static_user_id: int | None = None
    eligible_from: str | None = None  # ISO datetime, None = no gate
    is_active: bool = True
    deleted_at: str | None = None
    description: str = ""
    notice: str = ""
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_static(self) -> bool:
        return self.static_user_id is not None

    @property
    def effort_per_cycle(self) -> int:
        return self.effort_minutes * self.repeats_per_cycle


@dataclass
class Assignment:
    """One live (current cycle) unit of work for a user."""

    id: int
    task_id: int
    user_id: int
    status: AssignmentStatus
    created_at: str = ""
    updated_at: str = ""


@dataclass
class PenaltyPoint:
    """Points a user spent to buy out of a task; unique per (task, user)."""

    id: int
    task_id: int
    user_id: int
    points: int = 0
    created_at: str = ""
    updated_at: str = ""


@dataclass
class HistoryEntry:
    """An archived assignment with a snapshot of its task at archive time."""

    id: int
    task_id: int
    user_id: int
    status: AssignmentStatus
    recurrence_unit: RecurrenceUnit | None = None
    recurrence_value: int | None = None
    repeats_per_cycle: int | None = None
    effort_minutes: int | None = None
    created_at: str = ""
    updated_at: str = ""
    archived_at: str = ""


@dataclass
class NewAssignment:
    """An assignment row that has not been written yet."""

    task_id: int
    user_id: int
    status: AssignmentStatus
    created_at: str
    updated_at: str = field(default="")

    def __post_init__(self) -> None:
        if not self.updated_at:
            self.updated_at = self.created_at
