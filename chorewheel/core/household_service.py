"""
Chorewheel — Household Service.

UI-agnostic service layer around the task store: registering users,
editing workload shares and tasks, manual assignment, the penalty-point
ledger, status changes and on-demand allocation runs.

Each front end (web API, CLI, voice shortcut) calls this service and renders
the response objects in its own way. Domain errors never escape; they come
back as ErrorResponse.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, ValidationError

from chorewheel.core.clock import Clock, to_timestamp, utc_now
from chorewheel.core.errors import (
    AssignmentExistsError,
    ChorewheelError,
    DuplicateTaskError,
    ParticipationShareError,
    PenaltyPointLimitError,
    TaskNotFoundError,
    UnknownUserError,
)
from chorewheel.core.persister import expand_assignment
from chorewheel.core.state_machine import StatusChange, set_assignment_status
from chorewheel.data.models import AssignmentStatus, RecurrenceUnit, TaskDefinition, User

if TYPE_CHECKING:
    from chorewheel.adapters.store_factory import StoreRegistry
    from chorewheel.core.engine import RunResult
    from chorewheel.data.db import TaskDB

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


class ResponseKind(Enum):
    SUCCESS = "success"
    ERROR = "error"
    NO_ACTION = "no_action"


@dataclass
class ServiceResponse:
    kind: ResponseKind
    message: str

    @property
    def success(self) -> bool:
        return self.kind != ResponseKind.ERROR


@dataclass
class SuccessResponse(ServiceResponse):
    data: object | None = None


@dataclass
class ErrorResponse(ServiceResponse):
    pass


@dataclass
class NoActionResponse(ServiceResponse):
    pass


@dataclass
class RunSummaryResponse(ServiceResponse):
    picks: list[tuple[int, int]] = field(default_factory=list)   # (task_id, user_id)
    unassigned: list[int] = field(default_factory=list)          # task ids


def _error(message: str) -> ErrorResponse:
    return ErrorResponse(kind=ResponseKind.ERROR, message=message)


# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------


class TaskInput(BaseModel):
    """Editable fields of a task definition."""

    name: str = Field(min_length=1)
    recurrence_unit: RecurrenceUnit
    recurrence_value: int = Field(default=1, ge=1)
    repeats_per_cycle: int = Field(default=1, ge=1, le=7)
    effort_minutes: int = Field(ge=0)
    static_user_id: int | None = None
    eligible_from: datetime | None = None
    is_active: bool = True
    description: str = ""
    notice: str = ""

    def store_fields(self) -> dict:
        """Field values as persisted; timestamps become naive UTC ISO strings."""
        fields = self.model_dump()
        if self.eligible_from is not None:
            fields["eligible_from"] = to_timestamp(self.eligible_from)
        return fields


# ---------------------------------------------------------------------------
# HouseholdService
# ---------------------------------------------------------------------------


class HouseholdService:
    """Business operations on one household's task store."""

    def __init__(
        self,
        store: TaskDB,
        clock: Clock = utc_now,
        max_points_per_task: int | None = None,
    ) -> None:
        if max_points_per_task is None:
            from chorewheel.config import settings
            max_points_per_task = settings.MAX_PENALTY_POINTS_PER_TASK

        self._store = store
        self._clock = clock
        self._max_points_per_task = max_points_per_task

    def _now(self) -> str:
        return to_timestamp(self._clock())

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def register_user(self, name: str) -> ServiceResponse:
        """Add a user on first contact, giving them whatever share is unclaimed."""
        existing = self._store.find_user_by_name(name)
        if existing is not None:
            return NoActionResponse(
                kind=ResponseKind.NO_ACTION, message=f"User '{name}' already exists",
            )

        with self._store.transaction():
            claimed = sum(u.participation_share for u in self._store.list_users())
            share = max(0, 100 - claimed)
            user = self._store.add_user(name, share, self._now())

        return SuccessResponse(
            kind=ResponseKind.SUCCESS,
            message=f"User '{name}' added with {share}% participation",
            data=user,
        )

    def update_participation_shares(self, shares: dict[int, int]) -> ServiceResponse:
        """Replace workload shares; they must cover every active user and sum to 100."""
        try:
            self._validate_shares(shares)
            with self._store.transaction():
                active_ids = {u.id for u in self._store.list_active_users()}
                unknown = set(shares) - active_ids
                if unknown:
                    raise UnknownUserError(min(unknown))
                missing = active_ids - set(shares)
                if missing:
                    raise ParticipationShareError(
                        f"Missing participation share for users {sorted(missing)}"
                    )
                self._store.set_participation_shares(shares, self._now())
        except ChorewheelError as exc:
            logger.warning("Participation update rejected: %s", exc)
            return _error(str(exc))

        return SuccessResponse(kind=ResponseKind.SUCCESS, message="Participation shares updated")

    @staticmethod
    def _validate_shares(shares: dict[int, int]) -> None:
        for user_id, share in shares.items():
            if not 0 <= share <= 100:
                raise ParticipationShareError(
                    f"Participation share of user {user_id} must be between 0 and 100"
                )
        total = sum(shares.values())
        if total != 100:
            raise ParticipationShareError(
                f"Sum of participation shares must be 100, got {total}"
            )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def create_task(self, **fields: object) -> ServiceResponse:
        """Create a task definition from raw field values."""
        try:
            data = TaskInput(**fields)
        except ValidationError as exc:
            return _error(f"Invalid task: {exc.errors()[0]['msg']}")

        try:
            with self._store.transaction():
                self._check_static_owner(data.static_user_id)
                if self._store.find_task_by_name(data.name) is not None:
                    raise DuplicateTaskError(f"A task named '{data.name}' already exists")
                task = self._store.add_task(now=self._now(), **data.store_fields())
        except ChorewheelError as exc:
            logger.warning("Task creation rejected: %s", exc)
            return _error(str(exc))

        return SuccessResponse(kind=ResponseKind.SUCCESS, message="Task created", data=task)

    def update_task(self, task_id: int, **changes: object) -> ServiceResponse:
        """Update a task. Giving it a static owner drops its penalty points."""
        task = self._store.get_task(task_id)
        if task is None or task.is_deleted:
            return _error(str(TaskNotFoundError(task_id)))

        current = {name: getattr(task, name) for name in TaskInput.model_fields}
        current.update(changes)
        try:
            data = TaskInput(**current)
        except ValidationError as exc:
            return _error(f"Invalid task: {exc.errors()[0]['msg']}")

        try:
            with self._store.transaction():
                self._check_static_owner(data.static_user_id)
                clash = self._store.find_task_by_name(data.name)
                if clash is not None and clash.id != task_id:
                    raise DuplicateTaskError(f"A task named '{data.name}' already exists")

                updated = TaskDefinition(id=task_id, created_at=task.created_at, **data.store_fields())
                self._store.update_task(updated, self._now())
                if updated.is_static:
                    removed = self._store.delete_penalty_points_for_task(task_id)
                    if removed:
                        logger.info(
                            "Removed %d penalty entries of now-static task #%d", removed, task_id,
                        )
        except ChorewheelError as exc:
            logger.warning("Task update rejected: %s", exc)
            return _error(str(exc))

        return SuccessResponse(kind=ResponseKind.SUCCESS, message="Task updated", data=updated)

    def delete_task(self, task_id: int) -> ServiceResponse:
        """Soft-delete a task together with its live assignments and penalty points."""
        task = self._store.get_task(task_id)
        if task is None or task.is_deleted:
            return _error(str(TaskNotFoundError(task_id)))

        now = self._clock()
        new_name = f"{task.name}___deleted_{int(now.timestamp() * 1000)}"
        with self._store.transaction():
            self._store.delete_assignments_for_task(task_id)
            self._store.delete_penalty_points_for_task(task_id)
            self._store.soft_delete_task(task_id, new_name, to_timestamp(now))

        return SuccessResponse(kind=ResponseKind.SUCCESS, message="Task deleted")

    def _check_static_owner(self, user_id: int | None) -> None:
        if user_id is not None and self._store.get_user(user_id) is None:
            raise UnknownUserError(user_id)

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    def assign_task(self, task_id: int, user_id: int) -> ServiceResponse:
        """Manually give a task to a user for the current cycle."""
        try:
            with self._store.transaction():
                task = self._store.get_task(task_id)
                if task is None or task.is_deleted:
                    raise TaskNotFoundError(task_id)
                if self._store.get_user(user_id) is None:
                    raise UnknownUserError(user_id)
                if self._store.list_assignments(task_id=task_id):
                    raise AssignmentExistsError(
                        f"Task {task_id} is already assigned this cycle"
                    )
                rows = expand_assignment(task, user_id, self._now())
                ids = self._store.insert_assignments(rows)
        except ChorewheelError as exc:
            logger.warning("Manual assignment rejected: %s", exc)
            return _error(str(exc))

        logger.info("Task #%d manually assigned to user %d (%d rows)", task_id, user_id, len(ids))
        return SuccessResponse(kind=ResponseKind.SUCCESS, message="Assignment created", data=ids)

    def change_assignment_status(
        self,
        assignment_id: int,
        status: AssignmentStatus | str,
        reassign_user_id: int | None = None,
    ) -> ServiceResponse:
        try:
            change: StatusChange = set_assignment_status(
                self._store, assignment_id, status, reassign_user_id, clock=self._clock,
            )
        except ChorewheelError as exc:
            logger.warning("Status change of assignment %d rejected: %s", assignment_id, exc)
            return _error(str(exc))
        return SuccessResponse(kind=ResponseKind.SUCCESS, message="Assignment updated", data=change)

    # ------------------------------------------------------------------
    # Penalty points
    # ------------------------------------------------------------------

    def update_penalty_points(self, user_id: int, task_id: int, points: int) -> ServiceResponse:
        """Set how many points a user spends to avoid a task."""
        try:
            with self._store.transaction():
                self._check_penalty_update(user_id, task_id, points)
                self._store.set_penalty_points(task_id, user_id, points, self._now())
        except ChorewheelError as exc:
            logger.warning("Penalty point update rejected: %s", exc)
            return _error(str(exc))
        return SuccessResponse(kind=ResponseKind.SUCCESS, message="Penalty points updated")

    def _check_penalty_update(self, user_id: int, task_id: int, points: int) -> None:
        if points < 0:
            raise PenaltyPointLimitError("Penalty points cannot be negative")
        if points > self._max_points_per_task:
            raise PenaltyPointLimitError(
                f"Max penalty points for this task is {self._max_points_per_task}"
            )

        user: User | None = self._store.get_user(user_id)
        if user is None:
            raise UnknownUserError(user_id)
        task = self._store.get_task(task_id)
        if task is None or task.is_deleted:
            raise TaskNotFoundError(task_id)
        if task.is_static:
            raise PenaltyPointLimitError("Statically assigned tasks cannot carry penalty points")

        current = self._store.get_penalty_point(task_id, user_id)
        current_points = current.points if current is not None else 0
        total = sum(p.points for p in self._store.list_penalty_points(user_id=user_id))
        capacity = self._store.count_ledger_tasks()
        if total + (points - current_points) > capacity:
            raise PenaltyPointLimitError(
                f"Max sum of penalty points reached ({capacity})"
            )


# ---------------------------------------------------------------------------
# On-demand allocation
# ---------------------------------------------------------------------------


def trigger_assignment(
    registry: StoreRegistry,
    tenant: str,
    reassign: bool = False,
    dry_run: bool = False,
    group_by_recurrence: bool | None = None,
) -> ServiceResponse:
    """Run the assignment engine for a tenant and summarize the outcome."""
    from chorewheel.config import settings
    from chorewheel.core.engine import RunOptions, run_for_tenant

    if group_by_recurrence is None:
        group_by_recurrence = settings.GROUP_BY_RECURRENCE
    options = RunOptions(
        dry_run=dry_run,
        clear_and_reassign=reassign,
        group_by_recurrence=group_by_recurrence,
    )

    try:
        result: RunResult = run_for_tenant(registry, tenant, options)
    except (ChorewheelError, ValueError) as exc:
        logger.error("Autoassign failed for tenant '%s': %s", tenant, exc)
        return _error(f"Failed during autoassign: {exc}")

    prefix = "Dry run" if dry_run else "Autoassign"
    return RunSummaryResponse(
        kind=ResponseKind.SUCCESS,
        message=(
            f"{prefix} successful: {len(result.picks)} tasks assigned, "
            f"{len(result.unassigned)} left unassigned"
        ),
        picks=[(p.task.id, p.user.id) for p in result.picks],
        unassigned=[u.task.id for u in result.unassigned],
    )
