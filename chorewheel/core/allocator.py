"""
Chorewheel — Allocator.

Static tasks go straight to their owner. Dynamic tasks are shuffled, optionally
batched by recurrence unit, and handed out greedily: each task goes to the
highest-scoring user whose running effort is still within their workload
share. There is no backtracking.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Union

from chorewheel.core.qualification import DynamicTask, StaticTask
from chorewheel.core.scorer import ScoreMatrix
from chorewheel.data.models import RecurrenceUnit, TaskDefinition, User

logger = logging.getLogger(__name__)

Log = Union[logging.Logger, logging.LoggerAdapter]

# Batch order when grouping by recurrence unit.
RECURRENCE_ORDER = (RecurrenceUnit.WEEKLY, RecurrenceUnit.MONTHLY, RecurrenceUnit.ONCE)

REASON_STATIC_OWNER_MISSING = "static owner missing"
REASON_NO_ELIGIBLE_USER = "no eligible user"


@dataclass(frozen=True)
class Pick:
    """A task handed to a user for this cycle."""

    task: TaskDefinition
    user: User

    @property
    def effort(self) -> int:
        return self.task.effort_per_cycle


@dataclass(frozen=True)
class UnassignedTask:
    task: TaskDefinition
    reason: str


@dataclass
class AllocationResult:
    picks: list[Pick] = field(default_factory=list)
    unassigned: list[UnassignedTask] = field(default_factory=list)

    def extend(self, other: AllocationResult) -> None:
        self.picks.extend(other.picks)
        self.unassigned.extend(other.unassigned)


def allocate_static(
    static_tasks: list[StaticTask],
    users: list[User],
    log: Log = logger,
) -> AllocationResult:
    """Assign each static task to its owner, or report it when the owner is gone."""
    users_by_id = {u.id: u for u in users}
    result = AllocationResult()

    for static in static_tasks:
        owner = users_by_id.get(static.owner_id)
        if owner is None:
            log.warning(
                "Static owner %d of task #%d '%s' no longer exists; task left unassigned",
                static.owner_id, static.task.id, static.task.name,
            )
            result.unassigned.append(UnassignedTask(static.task, REASON_STATIC_OWNER_MISSING))
            continue
        result.picks.append(Pick(static.task, owner))
        log.info("Assigned static task #%d to user %d", static.task.id, owner.id)
    return result


def order_dynamic_tasks(
    tasks: list[DynamicTask],
    rng: random.Random,
    group_by_recurrence: bool = False,
) -> list[list[DynamicTask]]:
    """Shuffle tasks and split them into the batches they are allocated in."""
    shuffled = list(tasks)
    rng.shuffle(shuffled)

    if not group_by_recurrence:
        return [shuffled] if shuffled else []

    batches = []
    for unit in RECURRENCE_ORDER:
        batch = [t for t in shuffled if t.task.recurrence_unit == unit]
        if batch:
            batches.append(batch)
    return batches


def is_user_eligible(user: User, current_effort: int, total_effort: int) -> bool:
    """Workload cap: a participating user is eligible until their share is used up.

    A user with no effort yet is always eligible, so everybody can receive
    a first task.
    """
    if user.participation_share <= 0:
        return False
    if current_effort == 0:
        return True
    # current_effort <= share / 100 * total_effort, kept in integers
    return current_effort * 100 <= user.participation_share * total_effort


def select_best_user(
    task: TaskDefinition,
    users: list[User],
    scores: ScoreMatrix,
    running_effort: dict[int, int],
    total_effort: int,
) -> User | None:
    """Highest-scoring eligible user; ties keep the earlier user in ``users``."""
    best_user: User | None = None
    best_score = 0
    for user in users:
        if not is_user_eligible(user, running_effort.get(user.id, 0), total_effort):
            continue
        score = scores.get((task.id, user.id), 0)
        if best_user is None or score > best_score:
            best_user = user
            best_score = score
    return best_user


def allocate_dynamic(
    tasks: list[DynamicTask],
    users: list[User],
    scores: ScoreMatrix,
    total_effort: int,
    rng: random.Random,
    group_by_recurrence: bool = False,
    running_effort: dict[int, int] | None = None,
    log: Log = logger,
) -> AllocationResult:
    """Greedily allocate dynamic tasks.

    Args:
        tasks: Dynamic tasks qualified this cycle.
        users: Active users in roster order.
        scores: Score matrix from the scorer.
        total_effort: Effort of every qualified task, computed once up front.
        rng: Source of the task shuffle.
        group_by_recurrence: Allocate weekly, then monthly, then one-shot tasks.
        running_effort: Effort already assigned per user id this run; updated
            in place.
    """
    effort = running_effort if running_effort is not None else {}
    result = AllocationResult()

    for batch in order_dynamic_tasks(tasks, rng, group_by_recurrence):
        for dynamic in batch:
            task = dynamic.task
            user = select_best_user(task, users, scores, effort, total_effort)
            if user is None:
                log.warning(
                    "No eligible user for task #%d '%s'; task left unassigned",
                    task.id, task.name,
                )
                result.unassigned.append(UnassignedTask(task, REASON_NO_ELIGIBLE_USER))
                continue

            result.picks.append(Pick(task, user))
            effort[user.id] = effort.get(user.id, 0) + task.effort_per_cycle
            log.info(
                "Assigned task #%d '%s' to user %d (score %d, effort now %d)",
                task.id, task.name, user.id,
                scores.get((task.id, user.id), 0), effort[user.id],
            )
    return result
