"""Domain errors raised by the chorewheel core and its task store."""

from __future__ import annotations


class ChorewheelError(Exception):
    """Base class for all chorewheel errors."""


class StoreError(ChorewheelError):
    """Raised when a task store operation fails; the current run is aborted."""


class InvalidStatusError(ChorewheelError, ValueError):
    """Raised when a status is not allowed for an assignment's task."""

    def __init__(
        self,
        status: str,
        allowed: list[str],
        assignment_id: int | None = None,
    ) -> None:
        self.status = status
        self.allowed = allowed
        self.assignment_id = assignment_id
        target = f" for assignment {assignment_id}" if assignment_id is not None else ""
        super().__init__(
            f"Invalid status '{status}'{target} given the task's recurrence "
            f"and repeats per cycle. Allowed: {allowed}"
        )


class AssignmentNotFoundError(ChorewheelError, LookupError):
    """Raised when an assignment id does not exist."""

    def __init__(self, assignment_id: int) -> None:
        self.assignment_id = assignment_id
        super().__init__(f"Assignment {assignment_id} not found")


class TaskNotFoundError(ChorewheelError, LookupError):
    """Raised when a task id does not exist or is deleted."""

    def __init__(self, task_id: int) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class UnknownUserError(ChorewheelError, LookupError):
    """Raised when a user id does not exist or is deleted."""

    def __init__(self, user_id: int) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class PenaltyPointLimitError(ChorewheelError, ValueError):
    """Raised when a penalty point update would break the ledger limits."""


class ParticipationShareError(ChorewheelError, ValueError):
    """Raised when participation shares are out of range or don't sum to 100."""


class DuplicateTaskError(ChorewheelError, ValueError):
    """Raised when a task name is already taken."""


class AssignmentExistsError(ChorewheelError, ValueError):
    """Raised when a task already has live assignments this cycle."""
