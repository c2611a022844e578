"""Tests for chorewheel.core.allocator — static and greedy dynamic allocation."""

import logging
import random

import pytest

from chorewheel.core.allocator import (
    REASON_NO_ELIGIBLE_USER,
    REASON_STATIC_OWNER_MISSING,
    allocate_dynamic,
    allocate_static,
    is_user_eligible,
    order_dynamic_tasks,
    select_best_user,
)
from chorewheel.core.qualification import DynamicTask, StaticTask
from chorewheel.data.models import RecurrenceUnit, TaskDefinition, User


def _task(task_id, effort=10, unit=RecurrenceUnit.WEEKLY, repeats=1, owner=None):
    return TaskDefinition(
        id=task_id, name=f"task-{task_id}", recurrence_unit=unit,
        effort_minutes=effort, repeats_per_cycle=repeats, static_user_id=owner,
    )


def _users(*shares):
    return [User(id=i + 1, name=f"user-{i + 1}", participation_share=s) for i, s in enumerate(shares)]


class TestAllocateStatic:
    def test_assigns_to_owner(self):
        users = _users(50, 50)
        result = allocate_static([StaticTask(_task(1, owner=2))], users)
        assert [(p.task.id, p.user.id) for p in result.picks] == [(1, 2)]
        assert result.unassigned == []

    def test_missing_owner_warns_and_reports(self, caplog):
        users = _users(100)
        with caplog.at_level(logging.WARNING):
            result = allocate_static([StaticTask(_task(1, owner=99))], users)
        assert result.picks == []
        assert result.unassigned[0].task.id == 1
        assert result.unassigned[0].reason == REASON_STATIC_OWNER_MISSING
        assert "no longer exists" in caplog.text


class TestIsUserEligible:
    def test_zero_share_never_eligible(self):
        assert is_user_eligible(User(id=1, name="a", participation_share=0), 0, 100) is False

    def test_first_task_always_allowed(self):
        assert is_user_eligible(User(id=1, name="a", participation_share=1), 0, 100) is True

    def test_cap_is_inclusive(self):
        user = User(id=1, name="a", participation_share=50)
        assert is_user_eligible(user, 50, 100) is True
        assert is_user_eligible(user, 51, 100) is False


class TestSelectBestUser:
    def test_highest_score_wins(self):
        users = _users(50, 50)
        scores = {(1, 1): -3, (1, 2): 0}
        assert select_best_user(_task(1), users, scores, {}, 100).id == 2

    def test_tie_keeps_roster_order(self):
        users = _users(50, 50)
        assert select_best_user(_task(1), users, {}, {}, 100).id == 1

    def test_negative_scores_still_pick(self):
        users = _users(50, 50)
        scores = {(1, 1): -5, (1, 2): -2}
        assert select_best_user(_task(1), users, scores, {}, 100).id == 2

    def test_skips_capped_user(self):
        users = _users(50, 50)
        scores = {(1, 1): 10, (1, 2): 0}
        assert select_best_user(_task(1), users, scores, {1: 80}, 100).id == 2

    def test_none_when_nobody_eligible(self):
        assert select_best_user(_task(1), _users(0, 0), {}, {}, 100) is None


class TestOrderDynamicTasks:
    def test_shuffle_is_reproducible_with_seed(self):
        tasks = [DynamicTask(_task(i)) for i in range(10)]
        first = order_dynamic_tasks(tasks, random.Random(7))
        second = order_dynamic_tasks(tasks, random.Random(7))
        assert first == second
        assert sorted(t.task.id for t in first[0]) == list(range(10))

    def test_grouping_puts_weekly_before_monthly_before_once(self):
        tasks = [
            DynamicTask(_task(1, unit=RecurrenceUnit.ONCE)),
            DynamicTask(_task(2, unit=RecurrenceUnit.MONTHLY)),
            DynamicTask(_task(3, unit=RecurrenceUnit.WEEKLY)),
            DynamicTask(_task(4, unit=RecurrenceUnit.WEEKLY)),
        ]
        batches = order_dynamic_tasks(tasks, random.Random(1), group_by_recurrence=True)
        units = [{t.task.recurrence_unit for t in batch} for batch in batches]
        assert units == [{RecurrenceUnit.WEEKLY}, {RecurrenceUnit.MONTHLY}, {RecurrenceUnit.ONCE}]

    def test_empty(self):
        assert order_dynamic_tasks([], random.Random(1)) == []


class TestAllocateDynamic:
    def test_updates_running_effort(self):
        users = _users(50, 50)
        tasks = [DynamicTask(_task(1, effort=30, repeats=2))]
        effort = {}
        result = allocate_dynamic(tasks, users, {}, 60, random.Random(1), running_effort=effort)
        assert len(result.picks) == 1
        assert effort == {result.picks[0].user.id: 60}

    def test_spreads_work_between_users(self):
        users = _users(50, 50)
        tasks = [DynamicTask(_task(i, effort=10)) for i in range(1, 5)]
        result = allocate_dynamic(tasks, users, {}, 40, random.Random(3))
        per_user = {}
        for pick in result.picks:
            per_user[pick.user.id] = per_user.get(pick.user.id, 0) + pick.effort
        assert per_user == {1: 30, 2: 10} or per_user == {1: 20, 2: 20}
        assert len(result.picks) == 4

    def test_no_participants_leaves_task_unassigned(self, caplog):
        users = _users(0, 0)
        with caplog.at_level(logging.WARNING):
            result = allocate_dynamic([DynamicTask(_task(1))], users, {}, 10, random.Random(1))
        assert result.picks == []
        assert result.unassigned[0].reason == REASON_NO_ELIGIBLE_USER
        assert "No eligible user" in caplog.text

    def test_seeded_running_effort_respected(self):
        users = _users(50, 50)
        # user 1 already carries a static task worth the whole share
        result = allocate_dynamic(
            [DynamicTask(_task(2, effort=10))], users, {(2, 1): 100}, 40,
            random.Random(1), running_effort={1: 30},
        )
        assert result.picks[0].user.id == 2

    @pytest.mark.parametrize("seed", range(25))
    def test_fairness_bound(self, seed):
        """No user ends up more than one task's effort above their share."""
        rng = random.Random(seed)
        user_count = rng.randint(2, 5)
        cuts = sorted(rng.sample(range(1, 100), user_count - 1))
        shares = [b - a for a, b in zip([0, *cuts], [*cuts, 100])]
        users = _users(*shares)

        tasks = [
            DynamicTask(_task(i, effort=rng.randint(5, 90), repeats=rng.randint(1, 3)))
            for i in range(1, rng.randint(5, 30))
        ]
        total = sum(t.task.effort_per_cycle for t in tasks)
        scores = {
            (t.task.id, u.id): rng.randint(-10, 60) for t in tasks for u in users
        }

        result = allocate_dynamic(tasks, users, scores, total, rng)

        max_task = max(t.task.effort_per_cycle for t in tasks)
        assigned = {u.id: 0 for u in users}
        for pick in result.picks:
            assigned[pick.user.id] += pick.effort
        for user in users:
            cap = user.participation_share / 100 * total
            assert assigned[user.id] <= cap + max_task
        # shares sum to 100, so some user always has room
        assert result.unassigned == []
