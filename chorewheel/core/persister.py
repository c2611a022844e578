"""
Chorewheel — Persister.

Turns picks into assignment rows. A task that repeats n times per cycle
becomes n rows for the same user: the first one pending, the rest waiting
until the state machine promotes them.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from chorewheel.data.models import AssignmentStatus, NewAssignment, TaskDefinition

if TYPE_CHECKING:
    from chorewheel.core.allocator import Log, Pick
    from chorewheel.ports.task_store import TaskStore

logger = logging.getLogger(__name__)


def expand_assignment(task: TaskDefinition, user_id: int, now: str) -> list[NewAssignment]:
    """Build the rows for one task given to one user."""
    count = max(task.repeats_per_cycle, 1)
    return [
        NewAssignment(
            task_id=task.id,
            user_id=user_id,
            status=AssignmentStatus.PENDING if i == 0 else AssignmentStatus.WAITING,
            created_at=now,
        )
        for i in range(count)
    ]


def expand_picks(picks: Iterable[Pick], now: str) -> list[NewAssignment]:
    rows: list[NewAssignment] = []
    for pick in picks:
        rows.extend(expand_assignment(pick.task, pick.user.id, now))
    return rows


def persist_picks(
    store: TaskStore,
    picks: list[Pick],
    now: str,
    dry_run: bool = False,
    log: Log = logger,
) -> list[NewAssignment]:
    """Write the rows for ``picks`` unless this is a dry run.

    Returns the rows that were (or, in a dry run, would have been) written.
    """
    rows = expand_picks(picks, now)

    if dry_run:
        log.info("Dry run, %d assignments will not be saved:", len(rows))
        for row in rows:
            log.info(
                "  task %d -> user %d (%s)", row.task_id, row.user_id, row.status.value,
            )
        return rows

    if not rows:
        log.info("No assignments to save")
        return rows

    store.insert_assignments(rows)
    log.info("Saved %d assignments for %d picks", len(rows), len(picks))
    return rows
