"""
Chorewheel — Affinity Scorer.

Computes an integer score for every (dynamic task, user) pair. Higher means
the user is a better pick for the task this cycle:

- penalty points the user spent on the task count against them,
- recent completions of the same task count against them, fading out
  linearly over 60 days,
- a user whose last go at the task ended postponed or failed gets a flat
  bonus so the task goes back to someone who already engaged with it.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import datetime
from typing import Iterable

from chorewheel.core.clock import days_between
from chorewheel.core.qualification import RETRY_STATUSES, DynamicTask, history_recency_key
from chorewheel.data.models import AssignmentStatus, HistoryEntry, PenaltyPoint, User

logger = logging.getLogger(__name__)

RETRY_BONUS = 50
RECENCY_MAX_PENALTY = 5
RECENCY_DECAY = 4
RECENCY_WINDOW_DAYS = 60

ScoreMatrix = dict[tuple[int, int], int]


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def recency_penalty(entry: HistoryEntry, now: datetime) -> int:
    """Penalty for one completed history entry.

    Decays from 5 to 1 over 60 days and is divided by how often the task
    repeated per cycle at that time; 0 once the entry is older than 60 days.
    """
    days_ago = days_between(entry.created_at, now)
    if days_ago > RECENCY_WINDOW_DAYS:
        return 0
    repeats = entry.repeats_per_cycle or 1
    raw = RECENCY_MAX_PENALTY - (days_ago / RECENCY_WINDOW_DAYS) * RECENCY_DECAY
    return _round_half_up(raw / repeats)


def score_pair(
    task_id: int,
    user_id: int,
    penalty_points: int,
    pair_history: list[HistoryEntry],
    now: datetime,
) -> int:
    """Score one (task, user) pair. ``pair_history`` must be newest first."""
    score = -penalty_points

    for entry in pair_history:
        if entry.status == AssignmentStatus.COMPLETED:
            score -= recency_penalty(entry, now)

    if pair_history and pair_history[0].status in RETRY_STATUSES:
        score += RETRY_BONUS

    logger.debug("Task %d / user %d scored %d", task_id, user_id, score)
    return score


def calculate_scores(
    tasks: Iterable[DynamicTask],
    users: list[User],
    penalty_points: list[PenaltyPoint],
    history: list[HistoryEntry],
    now: datetime,
) -> ScoreMatrix:
    """Build the score matrix keyed by ``(task_id, user_id)``.

    Args:
        tasks: Dynamic tasks qualified this cycle.
        users: Active users.
        penalty_points: The whole penalty ledger.
        history: History within the lookback window.
        now: Reference time of this run.
    """
    points_by_pair = {(p.task_id, p.user_id): p.points for p in penalty_points}

    history_by_pair: dict[tuple[int, int], list[HistoryEntry]] = defaultdict(list)
    for entry in history:
        history_by_pair[(entry.task_id, entry.user_id)].append(entry)
    for entries in history_by_pair.values():
        entries.sort(key=history_recency_key, reverse=True)

    scores: ScoreMatrix = {}
    for dynamic in tasks:
        task_id = dynamic.task.id
        for user in users:
            pair = (task_id, user.id)
            scores[pair] = score_pair(
                task_id,
                user.id,
                points_by_pair.get(pair, 0),
                history_by_pair.get(pair, []),
                now,
            )
    return scores
