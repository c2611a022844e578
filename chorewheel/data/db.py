"""
Chorewheel — Task Database.

SQLite-backed task store for one household (tenant). Holds the user roster,
task definitions, live assignments, the penalty-point ledger and the
append-only history archive.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

from chorewheel.core.errors import StoreError
from chorewheel.data.models import (
    Assignment,
    AssignmentStatus,
    HistoryEntry,
    NewAssignment,
    PenaltyPoint,
    RecurrenceUnit,
    TaskDefinition,
    User,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS users (
        id                  INTEGER PRIMARY KEY AUTOINCREMENT,
        name                TEXT    NOT NULL UNIQUE,
        participation_share INTEGER NOT NULL DEFAULT 0,
        deleted_at          TEXT,
        created_at          TEXT    NOT NULL,
        updated_at          TEXT    NOT NULL
    );

    CREATE TABLE IF NOT EXISTS tasks (
        id                INTEGER PRIMARY KEY AUTOINCREMENT,
        name              TEXT    NOT NULL UNIQUE,
        description       TEXT    NOT NULL DEFAULT '',
        notice            TEXT    NOT NULL DEFAULT '',
        recurrence_unit   TEXT    NOT NULL
                          CHECK (recurrence_unit IN ('once', 'weekly', 'monthly')),
        recurrence_value  INTEGER NOT NULL DEFAULT 1,
        repeats_per_cycle INTEGER NOT NULL DEFAULT 1,
        effort_minutes    INTEGER NOT NULL DEFAULT 0,
        static_user_id    INTEGER REFERENCES users (id),
        eligible_from     TEXT,
        is_active         INTEGER NOT NULL DEFAULT 1,
        deleted_at        TEXT,
        created_at        TEXT    NOT NULL,
        updated_at        TEXT    NOT NULL
    );

    CREATE TABLE IF NOT EXISTS assignments (
        id         INTEGER PRIMARY KEY AUTOINCREMENT,
        task_id    INTEGER NOT NULL REFERENCES tasks (id),
        user_id    INTEGER NOT NULL REFERENCES users (id),
        status     TEXT    NOT NULL,
        created_at TEXT    NOT NULL,
        updated_at TEXT    NOT NULL
    );

    CREATE TABLE IF NOT EXISTS penalty_points (
        id         INTEGER PRIMARY KEY AUTOINCREMENT,
        task_id    INTEGER NOT NULL REFERENCES tasks (id),
        user_id    INTEGER NOT NULL REFERENCES users (id),
        points     INTEGER NOT NULL CHECK (points >= 0),
        created_at TEXT    NOT NULL,
        updated_at TEXT    NOT NULL,
        UNIQUE (task_id, user_id)
    );

    CREATE TABLE IF NOT EXISTS history (
        id                INTEGER PRIMARY KEY AUTOINCREMENT,
        task_id           INTEGER NOT NULL REFERENCES tasks (id),
        user_id           INTEGER NOT NULL REFERENCES users (id),
        status            TEXT    NOT NULL,
        recurrence_unit   TEXT,
        recurrence_value  INTEGER,
        repeats_per_cycle INTEGER,
        effort_minutes    INTEGER,
        created_at        TEXT    NOT NULL,
        updated_at        TEXT    NOT NULL,
        archived_at       TEXT    NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_history_created ON history (created_at);
    CREATE INDEX IF NOT EXISTS idx_assignments_task ON assignments (task_id);
"""


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class TaskDB:
    """SQLite-backed task store for a single tenant."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        if db_path is None:
            from chorewheel.config import settings
            db_path = settings.database_path(settings.DEFAULT_TENANT)

        self._db_path = str(db_path)
        self._local = threading.local()
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @property
    def path(self) -> str:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_db(self) -> None:
        """Create all tables if they don't exist."""
        conn = self._connect()
        try:
            conn.executescript(_SCHEMA)
        finally:
            conn.close()
        logger.debug("Task store initialized at %s", self._db_path)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group every store call in the block into one commit.

        Nested calls join the outer transaction. Any exception rolls back
        all writes made in the block.
        """
        if getattr(self._local, "conn", None) is not None:
            yield
            return

        conn = self._connect()
        self._local.conn = conn
        try:
            with conn:
                yield
        except sqlite3.Error as exc:
            raise StoreError(f"Transaction on {self._db_path} failed: {exc}") from exc
        finally:
            self._local.conn = None
            conn.close()

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Yield the open transaction's connection, or a short-lived one."""
        tx_conn = getattr(self._local, "conn", None)
        if tx_conn is not None:
            try:
                yield tx_conn
            except sqlite3.Error as exc:
                raise StoreError(str(exc)) from exc
            return

        conn = self._connect()
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            participation_share=row["participation_share"],
            deleted_at=row["deleted_at"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> TaskDefinition:
        return TaskDefinition(
            id=row["id"],
            name=row["name"],
            recurrence_unit=RecurrenceUnit(row["recurrence_unit"]),
            recurrence_value=row["recurrence_value"],
            repeats_per_cycle=row["repeats_per_cycle"],
            effort_minutes=row["effort_minutes"],
            static_user_id=row["static_user_id"],
            eligible_from=row["eligible_from"],
            is_active=bool(row["is_active"]),
            deleted_at=row["deleted_at"],
            description=row["description"],
            notice=row["notice"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_assignment(row: sqlite3.Row) -> Assignment:
        return Assignment(
            id=row["id"],
            task_id=row["task_id"],
            user_id=row["user_id"],
            status=AssignmentStatus(row["status"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_penalty(row: sqlite3.Row) -> PenaltyPoint:
        return PenaltyPoint(
            id=row["id"],
            task_id=row["task_id"],
            user_id=row["user_id"],
            points=row["points"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_history(row: sqlite3.Row) -> HistoryEntry:
        unit = row["recurrence_unit"]
        return HistoryEntry(
            id=row["id"],
            task_id=row["task_id"],
            user_id=row["user_id"],
            status=AssignmentStatus(row["status"]),
            recurrence_unit=RecurrenceUnit(unit) if unit else None,
            recurrence_value=row["recurrence_value"],
            repeats_per_cycle=row["repeats_per_cycle"],
            effort_minutes=row["effort_minutes"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            archived_at=row["archived_at"],
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def add_user(self, name: str, participation_share: int, now: str) -> User:
        """Insert a new user."""
        with self._session() as conn:
            cursor = conn.execute(
                """
                INSERT INTO users (name, participation_share, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (name, participation_share, now, now),
            )
            user_id = cursor.lastrowid
        logger.info("User added: #%d '%s' with %d%% share", user_id, name, participation_share)
        return User(id=user_id, name=name, participation_share=participation_share, created_at=now)

    def get_user(self, user_id: int) -> User | None:
        """Fetch a non-deleted user by ID."""
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE id = ? AND deleted_at IS NULL", (user_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def find_user_by_name(self, name: str) -> User | None:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM users WHERE name = ?", (name,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self, include_deleted: bool = False) -> list[User]:
        query = "SELECT * FROM users"
        if not include_deleted:
            query += " WHERE deleted_at IS NULL"
        query += " ORDER BY id"
        with self._session() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_user(r) for r in rows]

    def list_active_users(self) -> list[User]:
        """Return all users that are not soft-deleted, in roster order."""
        return self.list_users(include_deleted=False)

    def set_participation_shares(self, shares: dict[int, int], now: str) -> None:
        with self._session() as conn:
            conn.executemany(
                "UPDATE users SET participation_share = ?, updated_at = ? WHERE id = ?",
                [(share, now, user_id) for user_id, share in shares.items()],
            )
        logger.info("Participation shares updated for %d users", len(shares))

    def soft_delete_user(self, user_id: int, now: str) -> bool:
        with self._session() as conn:
            cursor = conn.execute(
                """
                UPDATE users SET deleted_at = ?, participation_share = 0, updated_at = ?
                WHERE id = ? AND deleted_at IS NULL
                """,
                (now, now, user_id),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("User #%d soft-deleted", user_id)
        return deleted

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def add_task(
        self,
        name: str,
        recurrence_unit: RecurrenceUnit,
        effort_minutes: int,
        now: str,
        recurrence_value: int = 1,
        repeats_per_cycle: int = 1,
        static_user_id: int | None = None,
        eligible_from: str | None = None,
        is_active: bool = True,
        description: str = "",
        notice: str = "",
    ) -> TaskDefinition:
        """Insert a new task definition."""
        with self._session() as conn:
            cursor = conn.execute(
                """
                INSERT INTO tasks
                    (name, description, notice, recurrence_unit, recurrence_value,
                     repeats_per_cycle, effort_minutes, static_user_id,
                     eligible_from, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    name, description, notice, RecurrenceUnit(recurrence_unit).value,
                    recurrence_value, repeats_per_cycle, effort_minutes,
                    static_user_id, eligible_from, int(is_active), now, now,
                ),
            )
            task_id = cursor.lastrowid
        logger.info("Task added: #%d '%s' (%s)", task_id, name, RecurrenceUnit(recurrence_unit).value)
        return self.get_task(task_id)

    def update_task(self, task: TaskDefinition, now: str) -> None:
        """Write every editable field of a task back to the store."""
        with self._session() as conn:
            conn.execute(
                """
                UPDATE tasks SET
                    name = ?, description = ?, notice = ?, recurrence_unit = ?,
                    recurrence_value = ?, repeats_per_cycle = ?, effort_minutes = ?,
                    static_user_id = ?, eligible_from = ?, is_active = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    task.name, task.description, task.notice, task.recurrence_unit.value,
                    task.recurrence_value, task.repeats_per_cycle, task.effort_minutes,
                    task.static_user_id, task.eligible_from, int(task.is_active), now,
                    task.id,
                ),
            )
        task.updated_at = now
        logger.info("Task #%d '%s' updated", task.id, task.name)

    def get_task(self, task_id: int) -> TaskDefinition | None:
        """Fetch a single task by ID, deleted or not."""
        with self._session() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def find_task_by_name(self, name: str) -> TaskDefinition | None:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM tasks WHERE name = ?", (name,)).fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    def list_tasks(self, include_deleted: bool = False) -> list[TaskDefinition]:
        query = "SELECT * FROM tasks"
        if not include_deleted:
            query += " WHERE deleted_at IS NULL"
        query += " ORDER BY id"
        with self._session() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_task(r) for r in rows]

    def list_qualifiable_tasks(self) -> list[TaskDefinition]:
        """Return active, non-deleted tasks; recurrence rules are applied in core."""
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM tasks WHERE deleted_at IS NULL AND is_active = 1 ORDER BY id"
            ).fetchall()
        return [self._row_to_task(r) for r in rows]

    def count_ledger_tasks(self) -> int:
        """Count tasks penalty points can be spent on (active, not deleted, not static)."""
        with self._session() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) FROM tasks
                WHERE deleted_at IS NULL AND is_active = 1 AND static_user_id IS NULL
                """
            ).fetchone()
        return int(row[0])

    def deactivate_tasks(self, task_ids: Iterable[int], now: str) -> int:
        ids = list(task_ids)
        if not ids:
            return 0
        with self._session() as conn:
            cursor = conn.execute(
                f"UPDATE tasks SET is_active = 0, updated_at = ? "
                f"WHERE id IN ({_placeholders(len(ids))})",
                [now, *ids],
            )
        logger.info("Deactivated %d tasks: %s", cursor.rowcount, ids)
        return cursor.rowcount

    def soft_delete_task(self, task_id: int, new_name: str, now: str) -> bool:
        """Mark a task deleted and free up its name."""
        with self._session() as conn:
            cursor = conn.execute(
                """
                UPDATE tasks SET deleted_at = ?, name = ?, is_active = 0, updated_at = ?
                WHERE id = ? AND deleted_at IS NULL
                """,
                (now, new_name, now, task_id),
            )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Task #%d soft-deleted as '%s'", task_id, new_name)
        return deleted

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def list_assignments(
        self,
        task_id: int | None = None,
        statuses: Iterable[AssignmentStatus] | None = None,
    ) -> list[Assignment]:
        """List live assignments, oldest first, optionally filtered."""
        conditions: list[str] = []
        params: list = []
        if task_id is not None:
            conditions.append("task_id = ?")
            params.append(task_id)
        if statuses is not None:
            values = [AssignmentStatus(s).value for s in statuses]
            if not values:
                return []
            conditions.append(f"status IN ({_placeholders(len(values))})")
            params.extend(values)

        query = "SELECT * FROM assignments"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id"

        with self._session() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_assignment(r) for r in rows]

    def get_assignment(self, assignment_id: int) -> Assignment | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM assignments WHERE id = ?", (assignment_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_assignment(row)

    def insert_assignments(self, rows: list[NewAssignment]) -> list[int]:
        """Insert assignment rows and return their new IDs in order."""
        ids: list[int] = []
        with self._session() as conn:
            for row in rows:
                cursor = conn.execute(
                    """
                    INSERT INTO assignments (task_id, user_id, status, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (row.task_id, row.user_id, row.status.value, row.created_at, row.updated_at),
                )
                ids.append(cursor.lastrowid)
        logger.info("Inserted %d assignments", len(ids))
        return ids

    def update_assignment(
        self,
        assignment_id: int,
        status: AssignmentStatus,
        now: str,
        user_id: int | None = None,
    ) -> None:
        with self._session() as conn:
            if user_id is None:
                conn.execute(
                    "UPDATE assignments SET status = ?, updated_at = ? WHERE id = ?",
                    (status.value, now, assignment_id),
                )
            else:
                conn.execute(
                    "UPDATE assignments SET status = ?, user_id = ?, updated_at = ? WHERE id = ?",
                    (status.value, user_id, now, assignment_id),
                )

    def set_assignments_status(
        self, assignment_ids: Iterable[int], status: AssignmentStatus, now: str
    ) -> int:
        ids = list(assignment_ids)
        if not ids:
            return 0
        with self._session() as conn:
            cursor = conn.execute(
                f"UPDATE assignments SET status = ?, updated_at = ? "
                f"WHERE id IN ({_placeholders(len(ids))})",
                [status.value, now, *ids],
            )
        return cursor.rowcount

    def fail_assignments(self, statuses: Iterable[AssignmentStatus], now: str) -> int:
        """Force every assignment in one of ``statuses`` to failed."""
        values = [AssignmentStatus(s).value for s in statuses]
        if not values:
            return 0
        with self._session() as conn:
            cursor = conn.execute(
                f"UPDATE assignments SET status = ?, updated_at = ? "
                f"WHERE status IN ({_placeholders(len(values))})",
                [AssignmentStatus.FAILED.value, now, *values],
            )
        return cursor.rowcount

    def archive_assignments(self, now: str) -> int:
        """Copy every live assignment into history with a task snapshot, then clear them."""
        with self._session() as conn:
            cursor = conn.execute(
                """
                INSERT INTO history
                    (task_id, user_id, status, recurrence_unit, recurrence_value,
                     repeats_per_cycle, effort_minutes, created_at, updated_at, archived_at)
                SELECT a.task_id, a.user_id, a.status, t.recurrence_unit,
                       t.recurrence_value, t.repeats_per_cycle, t.effort_minutes,
                       a.created_at, a.updated_at, ?
                FROM assignments a
                LEFT JOIN tasks t ON t.id = a.task_id
                ORDER BY a.id
                """,
                (now,),
            )
            archived = cursor.rowcount
            conn.execute("DELETE FROM assignments")
        return archived

    def delete_all_assignments(self) -> int:
        with self._session() as conn:
            cursor = conn.execute("DELETE FROM assignments")
        return cursor.rowcount

    def delete_assignments_for_task(self, task_id: int) -> int:
        with self._session() as conn:
            cursor = conn.execute("DELETE FROM assignments WHERE task_id = ?", (task_id,))
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Penalty points
    # ------------------------------------------------------------------

    def list_penalty_points(self, user_id: int | None = None) -> list[PenaltyPoint]:
        query = "SELECT * FROM penalty_points"
        params: list = []
        if user_id is not None:
            query += " WHERE user_id = ?"
            params.append(user_id)
        query += " ORDER BY id"
        with self._session() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_penalty(r) for r in rows]

    def get_penalty_point(self, task_id: int, user_id: int) -> PenaltyPoint | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM penalty_points WHERE task_id = ? AND user_id = ?",
                (task_id, user_id),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_penalty(row)

    def set_penalty_points(self, task_id: int, user_id: int, points: int, now: str) -> None:
        """Insert or overwrite the points of one (task, user) pair."""
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO penalty_points (task_id, user_id, points, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (task_id, user_id)
                DO UPDATE SET points = excluded.points, updated_at = excluded.updated_at
                """,
                (task_id, user_id, points, now, now),
            )

    def delete_penalty_point(self, task_id: int, user_id: int) -> None:
        with self._session() as conn:
            conn.execute(
                "DELETE FROM penalty_points WHERE task_id = ? AND user_id = ?",
                (task_id, user_id),
            )

    def delete_penalty_points_for_task(self, task_id: int) -> int:
        with self._session() as conn:
            cursor = conn.execute("DELETE FROM penalty_points WHERE task_id = ?", (task_id,))
        return cursor.rowcount

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def list_recent_history(self, since: str) -> list[HistoryEntry]:
        """Return history entries created after ``since``, newest first."""
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM history WHERE created_at > ? ORDER BY created_at DESC, id DESC",
                (since,),
            ).fetchall()
        return [self._row_to_history(r) for r in rows]

    def list_history(self, task_id: int | None = None) -> list[HistoryEntry]:
        query = "SELECT * FROM history"
        params: list = []
        if task_id is not None:
            query += " WHERE task_id = ?"
            params.append(task_id)
        query += " ORDER BY id"
        with self._session() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_history(r) for r in rows]

    def add_history_entry(
        self,
        task: TaskDefinition,
        user_id: int,
        status: AssignmentStatus,
        created_at: str,
        archived_at: str | None = None,
    ) -> HistoryEntry:
        """Append one history row with the task's current snapshot (imports, seeding)."""
        archived_at = archived_at or created_at
        with self._session() as conn:
            cursor = conn.execute(
                """
                INSERT INTO history
                    (task_id, user_id, status, recurrence_unit, recurrence_value,
                     repeats_per_cycle, effort_minutes, created_at, updated_at, archived_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.id, user_id, status.value, task.recurrence_unit.value,
                    task.recurrence_value, task.repeats_per_cycle, task.effort_minutes,
                    created_at, created_at, archived_at,
                ),
            )
            entry_id = cursor.lastrowid
        return HistoryEntry(
            id=entry_id,
            task_id=task.id,
            user_id=user_id,
            status=status,
            recurrence_unit=task.recurrence_unit,
            recurrence_value=task.recurrence_value,
            repeats_per_cycle=task.repeats_per_cycle,
            effort_minutes=task.effort_minutes,
            created_at=created_at,
            updated_at=created_at,
            archived_at=archived_at,
        )
