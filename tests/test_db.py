"""Tests for chorewheel.data.db — TaskDB (SQLite storage)."""

import pytest

from chorewheel.core.errors import StoreError
from chorewheel.data.models import AssignmentStatus, NewAssignment, RecurrenceUnit

from conftest import ts


def _rows(task_id, user_id, *statuses, created=None):
    created = created or ts()
    return [NewAssignment(task_id, user_id, AssignmentStatus(s), created) for s in statuses]


class TestTaskDBUsers:
    def test_add_and_list_users(self, task_db):
        task_db.add_user("alice", 60, ts())
        task_db.add_user("bob", 40, ts())
        users = task_db.list_active_users()
        assert [u.name for u in users] == ["alice", "bob"]
        assert users[0].participation_share == 60

    def test_soft_deleted_user_not_active(self, task_db):
        user = task_db.add_user("alice", 100, ts())
        assert task_db.soft_delete_user(user.id, ts()) is True
        assert task_db.list_active_users() == []
        assert task_db.get_user(user.id) is None
        assert len(task_db.list_users(include_deleted=True)) == 1

    def test_set_participation_shares(self, task_db):
        a = task_db.add_user("a", 100, ts())
        b = task_db.add_user("b", 0, ts())
        task_db.set_participation_shares({a.id: 30, b.id: 70}, ts())
        shares = {u.name: u.participation_share for u in task_db.list_active_users()}
        assert shares == {"a": 30, "b": 70}

    def test_duplicate_user_name_raises_store_error(self, task_db):
        task_db.add_user("alice", 100, ts())
        with pytest.raises(StoreError):
            task_db.add_user("alice", 0, ts())


class TestTaskDBTasks:
    def test_add_task_returns_task(self, task_db):
        task = task_db.add_task(
            "vacuum", RecurrenceUnit.WEEKLY, 45, ts(), repeats_per_cycle=2,
        )
        assert task.id is not None
        assert task.recurrence_unit is RecurrenceUnit.WEEKLY
        assert task.repeats_per_cycle == 2
        assert task.is_active is True

    def test_qualifiable_tasks_exclude_inactive_and_deleted(self, task_db):
        keep = task_db.add_task("keep", RecurrenceUnit.WEEKLY, 10, ts())
        off = task_db.add_task("off", RecurrenceUnit.WEEKLY, 10, ts(), is_active=False)
        gone = task_db.add_task("gone", RecurrenceUnit.WEEKLY, 10, ts())
        task_db.soft_delete_task(gone.id, "gone___deleted_1", ts())
        ids = [t.id for t in task_db.list_qualifiable_tasks()]
        assert ids == [keep.id]
        assert off.id not in ids

    def test_count_ledger_tasks_skips_static_inactive_deleted(self, task_db):
        user = task_db.add_user("a", 100, ts())
        task_db.add_task("a", RecurrenceUnit.WEEKLY, 10, ts())
        task_db.add_task("b", RecurrenceUnit.MONTHLY, 10, ts())
        task_db.add_task("static", RecurrenceUnit.WEEKLY, 10, ts(), static_user_id=user.id)
        task_db.add_task("inactive", RecurrenceUnit.WEEKLY, 10, ts(), is_active=False)
        gone = task_db.add_task("gone", RecurrenceUnit.WEEKLY, 10, ts())
        task_db.soft_delete_task(gone.id, "gone___deleted_1", ts())
        assert task_db.count_ledger_tasks() == 2

    def test_deactivate_tasks(self, task_db):
        t = task_db.add_task("a", RecurrenceUnit.ONCE, 10, ts())
        assert task_db.deactivate_tasks([t.id], ts()) == 1
        assert task_db.get_task(t.id).is_active is False
        assert task_db.deactivate_tasks([], ts()) == 0


class TestTaskDBAssignments:
    def test_insert_and_list_in_id_order(self, household):
        store, dishes, alice = household["store"], household["dishes"], household["alice"]
        ids = store.insert_assignments(_rows(dishes.id, alice.id, "pending", "waiting"))
        assert len(ids) == 2
        listed = store.list_assignments(task_id=dishes.id)
        assert [a.id for a in listed] == ids
        assert listed[0].status is AssignmentStatus.PENDING

    def test_filter_by_status(self, household):
        store, dishes, alice = household["store"], household["dishes"], household["alice"]
        store.insert_assignments(_rows(dishes.id, alice.id, "pending", "waiting", "completed"))
        waiting = store.list_assignments(statuses=[AssignmentStatus.WAITING])
        assert len(waiting) == 1
        assert store.list_assignments(statuses=[]) == []

    def test_fail_assignments(self, household):
        store, dishes, alice = household["store"], household["dishes"], household["alice"]
        store.insert_assignments(_rows(dishes.id, alice.id, "pending", "waiting", "completed"))
        failed = store.fail_assignments([AssignmentStatus.PENDING, AssignmentStatus.WAITING], ts())
        assert failed == 2
        statuses = sorted(a.status.value for a in store.list_assignments())
        assert statuses == ["completed", "failed", "failed"]

    def test_archive_copies_snapshot_and_clears(self, household):
        store, laundry, bob = household["store"], household["laundry"], household["bob"]
        store.insert_assignments(_rows(laundry.id, bob.id, "completed", "failed", created=ts(7)))
        assert store.archive_assignments(ts()) == 2
        assert store.list_assignments() == []

        history = store.list_history(task_id=laundry.id)
        assert len(history) == 2
        entry = history[0]
        assert entry.user_id == bob.id
        assert entry.status is AssignmentStatus.COMPLETED
        assert entry.repeats_per_cycle == 2
        assert entry.effort_minutes == 20
        assert entry.recurrence_unit is RecurrenceUnit.WEEKLY
        assert entry.created_at == ts(7)
        assert entry.archived_at == ts()

    def test_recent_history_newest_first_within_window(self, household):
        store, dishes, alice = household["store"], household["dishes"], household["alice"]
        store.add_history_entry(dishes, alice.id, AssignmentStatus.COMPLETED, ts(200))
        store.add_history_entry(dishes, alice.id, AssignmentStatus.COMPLETED, ts(14))
        store.add_history_entry(dishes, alice.id, AssignmentStatus.FAILED, ts(7))
        recent = store.list_recent_history(ts(100))
        assert [e.created_at for e in recent] == [ts(7), ts(14)]


class TestTaskDBPenaltyPoints:
    def test_set_points_upserts(self, household):
        store, dishes, alice = household["store"], household["dishes"], household["alice"]
        store.set_penalty_points(dishes.id, alice.id, 2, ts())
        store.set_penalty_points(dishes.id, alice.id, 3, ts())
        points = store.list_penalty_points()
        assert len(points) == 1
        assert points[0].points == 3

    def test_negative_points_rejected_by_schema(self, household):
        store, dishes, alice = household["store"], household["dishes"], household["alice"]
        with pytest.raises(StoreError):
            store.set_penalty_points(dishes.id, alice.id, -1, ts())

    def test_delete_point(self, household):
        store, dishes, alice = household["store"], household["dishes"], household["alice"]
        store.set_penalty_points(dishes.id, alice.id, 2, ts())
        store.delete_penalty_point(dishes.id, alice.id)
        assert store.get_penalty_point(dishes.id, alice.id) is None


class TestTaskDBTransaction:
    def test_commit(self, household):
        store, dishes, alice = household["store"], household["dishes"], household["alice"]
        with store.transaction():
            store.insert_assignments(_rows(dishes.id, alice.id, "pending"))
            store.set_penalty_points(dishes.id, alice.id, 1, ts())
        assert len(store.list_assignments()) == 1
        assert len(store.list_penalty_points()) == 1

    def test_rollback_on_error(self, household):
        store, dishes, alice = household["store"], household["dishes"], household["alice"]
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.insert_assignments(_rows(dishes.id, alice.id, "pending"))
                raise RuntimeError("boom")
        assert store.list_assignments() == []

    def test_reads_inside_transaction_see_own_writes(self, household):
        store, dishes, alice = household["store"], household["dishes"], household["alice"]
        with store.transaction():
            store.insert_assignments(_rows(dishes.id, alice.id, "pending"))
            assert len(store.list_assignments()) == 1

    def test_nested_transaction_joins_outer(self, household):
        store, dishes, alice = household["store"], household["dishes"], household["alice"]
        with pytest.raises(RuntimeError):
            with store.transaction():
                with store.transaction():
                    store.insert_assignments(_rows(dishes.id, alice.id, "pending"))
                raise RuntimeError("outer fails")
        assert store.list_assignments() == []
