"""Task store port — the narrow storage interface the assignment engine needs.

Core modules depend on this protocol, never on a specific database.
All calls are synchronous; writes made inside ``transaction()`` are committed
together or not at all.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Iterable, Protocol

from chorewheel.data.models import (
    Assignment,
    AssignmentStatus,
    HistoryEntry,
    NewAssignment,
    PenaltyPoint,
    TaskDefinition,
    User,
)


class TaskStore(Protocol):
    """Storage operations used by the assignment engine and state machine."""

    def transaction(self) -> AbstractContextManager[None]: ...

    # Reads

    def list_active_users(self) -> list[User]: ...

    def get_user(self, user_id: int) -> User | None: ...

    def list_qualifiable_tasks(self) -> list[TaskDefinition]: ...

    def list_tasks(self, include_deleted: bool = False) -> list[TaskDefinition]: ...

    def get_task(self, task_id: int) -> TaskDefinition | None: ...

    def count_ledger_tasks(self) -> int: ...

    def list_penalty_points(self, user_id: int | None = None) -> list[PenaltyPoint]: ...

    def list_recent_history(self, since: str) -> list[HistoryEntry]: ...

    def list_assignments(
        self,
        task_id: int | None = None,
        statuses: Iterable[AssignmentStatus] | None = None,
    ) -> list[Assignment]: ...

    def get_assignment(self, assignment_id: int) -> Assignment | None: ...

    # Writes

    def deactivate_tasks(self, task_ids: Iterable[int], now: str) -> int: ...

    def fail_assignments(
        self, statuses: Iterable[AssignmentStatus], now: str
    ) -> int: ...

    def archive_assignments(self, now: str) -> int: ...

    def delete_all_assignments(self) -> int: ...

    def delete_penalty_point(self, task_id: int, user_id: int) -> None: ...

    def set_penalty_points(
        self, task_id: int, user_id: int, points: int, now: str
    ) -> None: ...

    def insert_assignments(self, rows: list[NewAssignment]) -> list[int]: ...

    def update_assignment(
        self,
        assignment_id: int,
        status: AssignmentStatus,
        now: str,
        user_id: int | None = None,
    ) -> None: ...

    def set_assignments_status(
        self, assignment_ids: Iterable[int], status: AssignmentStatus, now: str
    ) -> int: ...
