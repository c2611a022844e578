"""
Chorewheel — Maintenance Phase.

Housekeeping that must run right before every real allocation:

1. retire one-shot tasks that were completed,
2. fail assignments nobody resolved before the cycle ended,
3. archive the live assignments into history and clear them,
4. trim the penalty-point ledger back under its capacity.

All four steps run inside one store transaction; a failure in any of them
leaves the store untouched.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from chorewheel.data.models import AssignmentStatus, PenaltyPoint, RecurrenceUnit

if TYPE_CHECKING:
    from chorewheel.ports.task_store import TaskStore

logger = logging.getLogger(__name__)

STRAGGLER_STATUSES = (AssignmentStatus.WAITING, AssignmentStatus.PENDING)


@dataclass(frozen=True)
class LedgerCorrection:
    """One change to a penalty-point entry; ``new_points`` of 0 means delete."""

    task_id: int
    user_id: int
    old_points: int
    new_points: int

    @property
    def deletes(self) -> bool:
        return self.new_points == 0


@dataclass
class MaintenanceReport:
    retired_task_ids: list[int] = field(default_factory=list)
    failed_count: int = 0
    archived_count: int = 0
    corrections: list[LedgerCorrection] = field(default_factory=list)


def plan_ledger_corrections(
    points: list[PenaltyPoint],
    capacity: int,
) -> list[LedgerCorrection]:
    """Work out which penalty entries to shrink so no user exceeds ``capacity``.

    For each user over budget, entries are consumed largest first: an entry
    smaller than or equal to the remaining deficit is deleted, a larger one
    is decremented by what is left. If the user's entries run out before the
    deficit does, correction stops there.
    """
    by_user: dict[int, list[PenaltyPoint]] = defaultdict(list)
    for point in points:
        by_user[point.user_id].append(point)

    corrections: list[LedgerCorrection] = []
    for user_id in sorted(by_user):
        entries = by_user[user_id]
        available = capacity - sum(p.points for p in entries)
        if available >= 0:
            continue

        deficit = -available
        logger.warning(
            "User %d holds %d penalty points over the capacity of %d",
            user_id, deficit, capacity,
        )
        positive = sorted(
            (p for p in entries if p.points > 0),
            key=lambda p: p.points,
            reverse=True,
        )
        for entry in positive:
            if deficit <= 0:
                break
            if entry.points <= deficit:
                corrections.append(LedgerCorrection(entry.task_id, user_id, entry.points, 0))
                deficit -= entry.points
            else:
                corrections.append(
                    LedgerCorrection(entry.task_id, user_id, entry.points, entry.points - deficit)
                )
                deficit = 0

        if deficit > 0:
            logger.warning(
                "User %d still %d points over capacity after correction", user_id, deficit,
            )
    return corrections


def retire_completed_once_tasks(store: TaskStore, now: str) -> list[int]:
    """Deactivate every one-shot task that has a completed assignment."""
    completed = store.list_assignments(statuses=[AssignmentStatus.COMPLETED])
    task_ids: list[int] = []
    for task_id in sorted({a.task_id for a in completed}):
        task = store.get_task(task_id)
        if task is not None and task.recurrence_unit == RecurrenceUnit.ONCE and task.is_active:
            task_ids.append(task_id)

    if task_ids:
        store.deactivate_tasks(task_ids, now)
        logger.info("Retired %d completed one-shot tasks: %s", len(task_ids), task_ids)
    return task_ids


def correct_penalty_ledger(store: TaskStore, now: str) -> list[LedgerCorrection]:
    """Apply ledger corrections to the store. A second call is a no-op."""
    capacity = store.count_ledger_tasks()
    corrections = plan_ledger_corrections(store.list_penalty_points(), capacity)

    for correction in corrections:
        if correction.deletes:
            store.delete_penalty_point(correction.task_id, correction.user_id)
            logger.info(
                "Deleted %d penalty points of user %d on task %d",
                correction.old_points, correction.user_id, correction.task_id,
            )
        else:
            store.set_penalty_points(
                correction.task_id, correction.user_id, correction.new_points, now,
            )
            logger.info(
                "Reduced penalty points of user %d on task %d from %d to %d",
                correction.user_id, correction.task_id,
                correction.old_points, correction.new_points,
            )
    return corrections


def run_maintenance(store: TaskStore, now: str) -> MaintenanceReport:
    """Run the four maintenance steps as one transaction."""
    report = MaintenanceReport()
    with store.transaction():
        report.retired_task_ids = retire_completed_once_tasks(store, now)

        report.failed_count = store.fail_assignments(STRAGGLER_STATUSES, now)
        if report.failed_count:
            logger.info("Failed %d unresolved assignments", report.failed_count)

        report.archived_count = store.archive_assignments(now)
        logger.info("Archived %d assignments into history", report.archived_count)

        report.corrections = correct_penalty_ledger(store, now)

    logger.info(
        "Maintenance done: %d retired, %d failed, %d archived, %d ledger corrections",
        len(report.retired_task_ids), report.failed_count,
        report.archived_count, len(report.corrections),
    )
    return report
