"""
Chorewheel — Assignment State Machine.

Governs status changes of a live assignment after it was created.

    waiting -> pending -> completed | skipped | postponed | failed

Only one assignment per task is pending at any time; the others wait their
turn. When the pending one is resolved (completed, skipped, postponed) the
oldest waiting sibling is promoted. When an assignment is set back to
pending by hand, every other pending sibling is demoted to waiting.

Which statuses a user may pick depends on the task:
    - weekly tasks can't be postponed (they are reassigned soon anyway),
    - one-shot tasks can't be skipped,
    - waiting only exists for tasks repeating more than once per cycle,
    - failed is set by the maintenance phase only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from chorewheel.core.clock import Clock, to_timestamp, utc_now
from chorewheel.core.errors import (
    AssignmentNotFoundError,
    InvalidStatusError,
    TaskNotFoundError,
    UnknownUserError,
)
from chorewheel.data.models import AssignmentStatus, RecurrenceUnit, TaskDefinition

if TYPE_CHECKING:
    from chorewheel.ports.task_store import TaskStore

logger = logging.getLogger(__name__)


# Statuses a user may set manually, before per-task filtering.
USER_STATUSES: tuple[AssignmentStatus, ...] = (
    AssignmentStatus.WAITING,
    AssignmentStatus.PENDING,
    AssignmentStatus.COMPLETED,
    AssignmentStatus.SKIPPED,
    AssignmentStatus.POSTPONED,
)

# Resolving the active assignment hands the turn to the next waiting one.
RESOLVING_STATUSES = frozenset({
    AssignmentStatus.COMPLETED,
    AssignmentStatus.SKIPPED,
    AssignmentStatus.POSTPONED,
})

@dataclass
class StatusChange:
    """Outcome of ``set_assignment_status``."""

    assignment_id: int
    task_id: int
    status: AssignmentStatus
    promoted_id: int | None = None
    demoted_ids: list[int] = field(default_factory=list)


def allowed_statuses(
    recurrence_unit: RecurrenceUnit,
    repeats_per_cycle: int,
) -> list[AssignmentStatus]:
    """Statuses a user may set on an assignment of a task like this."""
    options = list(USER_STATUSES)

    if recurrence_unit == RecurrenceUnit.WEEKLY:
        options.remove(AssignmentStatus.POSTPONED)

    if recurrence_unit == RecurrenceUnit.ONCE:
        options.remove(AssignmentStatus.SKIPPED)

    if repeats_per_cycle <= 1:
        options.remove(AssignmentStatus.WAITING)

    return options


def validate_status(
    task: TaskDefinition,
    status: AssignmentStatus | str,
    assignment_id: int | None = None,
) -> AssignmentStatus:
    """Return ``status`` as an enum, or raise InvalidStatusError."""
    allowed = allowed_statuses(task.recurrence_unit, task.repeats_per_cycle)
    allowed_names = [s.value for s in allowed]
    try:
        target = AssignmentStatus(status)
    except ValueError:
        raise InvalidStatusError(str(status), allowed_names, assignment_id) from None
    if target not in allowed:
        raise InvalidStatusError(target.value, allowed_names, assignment_id)
    return target


def promote_next_waiting(store: TaskStore, task_id: int, now: str) -> int | None:
    """Promote the oldest waiting assignment of a task if none is pending."""
    if store.list_assignments(task_id=task_id, statuses=[AssignmentStatus.PENDING]):
        return None

    waiting = store.list_assignments(task_id=task_id, statuses=[AssignmentStatus.WAITING])
    if not waiting:
        return None

    next_id = waiting[0].id
    store.set_assignments_status([next_id], AssignmentStatus.PENDING, now)
    logger.info("Promoted assignment %d of task %d to pending", next_id, task_id)
    return next_id


def demote_other_pending(
    store: TaskStore, task_id: int, keep_id: int, now: str
) -> list[int]:
    """Set every pending assignment of a task except ``keep_id`` back to waiting."""
    pending = store.list_assignments(task_id=task_id, statuses=[AssignmentStatus.PENDING])
    demoted = [a.id for a in pending if a.id != keep_id]
    if demoted:
        store.set_assignments_status(demoted, AssignmentStatus.WAITING, now)
        logger.info("Demoted assignments %s of task %d to waiting", demoted, task_id)
    return demoted


def set_assignment_status(
    store: TaskStore,
    assignment_id: int,
    status: AssignmentStatus | str,
    reassign_user_id: int | None = None,
    clock: Clock = utc_now,
) -> StatusChange:
    """Apply a user's status change to one assignment.

    Everything is validated before the first write; a rejected request
    leaves the store untouched.

    Raises:
        AssignmentNotFoundError: the assignment does not exist.
        TaskNotFoundError: the assignment's task is gone.
        UnknownUserError: ``reassign_user_id`` is not an active user.
        InvalidStatusError: the status is not allowed for the task.
    """
    now = to_timestamp(clock())

    with store.transaction():
        assignment = store.get_assignment(assignment_id)
        if assignment is None:
            raise AssignmentNotFoundError(assignment_id)

        task = store.get_task(assignment.task_id)
        if task is None:
            raise TaskNotFoundError(assignment.task_id)

        target = validate_status(task, status, assignment_id)

        if reassign_user_id is not None and store.get_user(reassign_user_id) is None:
            raise UnknownUserError(reassign_user_id)

        store.update_assignment(assignment_id, target, now, user_id=reassign_user_id)
        change = StatusChange(assignment_id, task.id, target)
        logger.info(
            "Assignment %d of task %d set to %s%s",
            assignment_id, task.id, target.value,
            f" and reassigned to user {reassign_user_id}" if reassign_user_id is not None else "",
        )

        if target in RESOLVING_STATUSES:
            change.promoted_id = promote_next_waiting(store, task.id, now)
        elif target == AssignmentStatus.PENDING:
            change.demoted_ids = demote_other_pending(store, task.id, assignment_id, now)

    return change
