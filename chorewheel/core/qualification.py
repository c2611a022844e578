"""
Chorewheel — Qualification Filter.

Decides which task definitions are up for (re-)assignment this cycle and
splits them once into statically-owned and dynamically-allocated tasks, so
the allocator never has to re-check ownership.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from chorewheel.core.clock import days_between, parse_timestamp
from chorewheel.data.models import (
    RECURRENCE_UNIT_DAYS,
    AssignmentStatus,
    HistoryEntry,
    TaskDefinition,
)

logger = logging.getLogger(__name__)

# Absorbs small clock offsets between the previous run and this one.
RECURRENCE_TOLERANCE = timedelta(hours=6)

# A task whose last cycle ended like this is offered again right away.
RETRY_STATUSES = frozenset({AssignmentStatus.POSTPONED, AssignmentStatus.FAILED})


@dataclass(frozen=True)
class StaticTask:
    """A qualified task bound to one user; bypasses scoring."""

    task: TaskDefinition

    @property
    def owner_id(self) -> int:
        return self.task.static_user_id  # type: ignore[return-value]


@dataclass(frozen=True)
class DynamicTask:
    """A qualified task that is scored and allocated greedily."""

    task: TaskDefinition


@dataclass
class QualifiedTasks:
    static: list[StaticTask] = field(default_factory=list)
    dynamic: list[DynamicTask] = field(default_factory=list)

    @property
    def all_tasks(self) -> list[TaskDefinition]:
        return [s.task for s in self.static] + [d.task for d in self.dynamic]

    @property
    def total_effort(self) -> int:
        """Effort of every qualified task for one full cycle."""
        return sum(t.effort_per_cycle for t in self.all_tasks)

    def __len__(self) -> int:
        return len(self.static) + len(self.dynamic)


def recurrence_interval(task: TaskDefinition) -> timedelta:
    """Minimum time between two assignments of a task, minus the tolerance."""
    days = task.recurrence_value * RECURRENCE_UNIT_DAYS.get(task.recurrence_unit, 1)
    return timedelta(days=days) - RECURRENCE_TOLERANCE


def history_recency_key(entry: HistoryEntry) -> tuple[datetime, int]:
    return parse_timestamp(entry.created_at), entry.id or 0


def latest_history_by_task(history: list[HistoryEntry]) -> dict[int, HistoryEntry]:
    """Map task id to its most recent history entry.

    Entries sharing a timestamp (repeat siblings) are ordered by id.
    """
    latest: dict[int, HistoryEntry] = {}
    for entry in history:
        current = latest.get(entry.task_id)
        if current is None or history_recency_key(entry) > history_recency_key(current):
            latest[entry.task_id] = entry
    return latest


def is_task_eligible(
    task: TaskDefinition,
    last_entry: HistoryEntry | None,
    now: datetime,
) -> bool:
    """Check whether a single task qualifies for assignment at ``now``."""
    if task.is_deleted or not task.is_active:
        return False

    if task.eligible_from and parse_timestamp(task.eligible_from) > now:
        return False

    if last_entry is None:
        return True

    if last_entry.status in RETRY_STATUSES:
        return True

    elapsed = now - parse_timestamp(last_entry.created_at)
    return elapsed > recurrence_interval(task)


def qualify_tasks(
    tasks: list[TaskDefinition],
    history: list[HistoryEntry],
    now: datetime,
) -> QualifiedTasks:
    """Filter tasks to the ones due this cycle and split static from dynamic.

    Args:
        tasks: Candidate task definitions (normally active and not deleted).
        history: Recent history entries, any order.
        now: Reference time of this run.
    """
    latest = latest_history_by_task(history)
    qualified = QualifiedTasks()

    for task in tasks:
        last_entry = latest.get(task.id)
        if not is_task_eligible(task, last_entry, now):
            if last_entry is not None:
                logger.debug(
                    "Task #%d '%s' not due: last entry %s, %.1f days ago",
                    task.id, task.name, last_entry.status.value,
                    days_between(last_entry.created_at, now),
                )
            continue

        if task.is_static:
            qualified.static.append(StaticTask(task))
        else:
            qualified.dynamic.append(DynamicTask(task))

    logger.info(
        "Qualified %d of %d tasks (%d static, %d dynamic)",
        len(qualified), len(tasks), len(qualified.static), len(qualified.dynamic),
    )
    return qualified
