"""
Chorewheel — Assignment Engine.

Entry point called once per cycle (by a scheduler) or on demand (by an API
handler). A real run is:

    maintenance -> qualification -> scoring -> allocation -> persistence

and happens inside a single store transaction, so a failure anywhere leaves
the previous cycle intact for the next trigger to retry.

Options:
    dry_run             compute and return picks; no writes, no maintenance
    clear_and_reassign  wipe the live assignments and allocate again,
                        skipping maintenance
    group_by_recurrence allocate weekly, then monthly, then one-shot tasks
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from pydantic import BaseModel

from chorewheel.core.allocator import (
    AllocationResult,
    Log,
    Pick,
    UnassignedTask,
    allocate_dynamic,
    allocate_static,
)
from chorewheel.core.clock import Clock, to_timestamp, utc_now
from chorewheel.core.maintenance import MaintenanceReport, run_maintenance
from chorewheel.core.persister import persist_picks
from chorewheel.core.qualification import qualify_tasks
from chorewheel.core.scorer import calculate_scores
from chorewheel.data.models import NewAssignment

if TYPE_CHECKING:
    from chorewheel.adapters.store_factory import StoreRegistry
    from chorewheel.ports.task_store import TaskStore

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 100


class RunOptions(BaseModel):
    """Options of a single allocation run."""

    dry_run: bool = False
    clear_and_reassign: bool = False
    group_by_recurrence: bool = False


@dataclass
class RunResult:
    picks: list[Pick] = field(default_factory=list)
    unassigned: list[UnassignedTask] = field(default_factory=list)
    rows: list[NewAssignment] = field(default_factory=list)
    maintenance: MaintenanceReport | None = None
    dry_run: bool = False


class AssignmentEngine:
    """Allocates the qualified tasks of one tenant's store."""

    def __init__(
        self,
        store: TaskStore,
        logger: Log | None = None,
        rng: random.Random | None = None,
        clock: Clock = utc_now,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    ) -> None:
        self._store = store
        self._log = logger if logger is not None else logging.getLogger(__name__)
        self._rng = rng if rng is not None else random.Random()
        self._clock = clock
        self._lookback = timedelta(days=lookback_days)

    def run(self, options: RunOptions | None = None) -> RunResult:
        """Run one allocation and return the picks, persisted unless dry-run."""
        options = options or RunOptions()
        now = self._clock()
        self._log.info(
            "Assignment run started (dry_run=%s, clear_and_reassign=%s, group_by_recurrence=%s)",
            options.dry_run, options.clear_and_reassign, options.group_by_recurrence,
        )

        if options.dry_run:
            return self._allocate(options, now)

        try:
            with self._store.transaction():
                maintenance = None
                if options.clear_and_reassign:
                    cleared = self._store.delete_all_assignments()
                    self._log.info("Cleared %d live assignments before reassigning", cleared)
                else:
                    maintenance = run_maintenance(self._store, to_timestamp(now))

                result = self._allocate(options, now)
                result.maintenance = maintenance
        except Exception as exc:
            self._log.error("Assignment run aborted, nothing was committed: %s", exc)
            raise

        return result

    def _allocate(self, options: RunOptions, now: datetime) -> RunResult:
        store = self._store
        users = store.list_active_users()
        tasks = store.list_qualifiable_tasks()
        history = store.list_recent_history(to_timestamp(now - self._lookback))
        penalty_points = store.list_penalty_points()

        qualified = qualify_tasks(tasks, history, now)
        total_effort = qualified.total_effort

        allocation = AllocationResult()
        allocation.extend(allocate_static(qualified.static, users, log=self._log))

        running_effort: dict[int, int] = {}
        for pick in allocation.picks:
            running_effort[pick.user.id] = running_effort.get(pick.user.id, 0) + pick.effort

        scores = calculate_scores(qualified.dynamic, users, penalty_points, history, now)
        allocation.extend(
            allocate_dynamic(
                qualified.dynamic,
                users,
                scores,
                total_effort,
                self._rng,
                group_by_recurrence=options.group_by_recurrence,
                running_effort=running_effort,
                log=self._log,
            )
        )

        rows = persist_picks(
            store, allocation.picks, to_timestamp(now), dry_run=options.dry_run, log=self._log,
        )

        if allocation.unassigned:
            self._log.warning(
                "%d tasks left unassigned this cycle: %s",
                len(allocation.unassigned),
                ", ".join(f"#{u.task.id} ({u.reason})" for u in allocation.unassigned),
            )
        self._log.info(
            "Assignment run finished: %d picks, %d rows, %d unassigned",
            len(allocation.picks), len(rows), len(allocation.unassigned),
        )
        return RunResult(
            picks=allocation.picks,
            unassigned=allocation.unassigned,
            rows=rows,
            dry_run=options.dry_run,
        )


def run_for_tenant(
    registry: StoreRegistry,
    tenant: str,
    options: RunOptions | None = None,
    rng: random.Random | None = None,
    clock: Clock = utc_now,
) -> RunResult:
    """Run the engine for one tenant, serialized with other runs of that tenant."""
    from chorewheel.config import settings

    if options is None:
        options = RunOptions(group_by_recurrence=settings.GROUP_BY_RECURRENCE)
    if rng is None:
        rng = random.Random(settings.RANDOM_SEED)

    tenant_log = logging.LoggerAdapter(logger, {"tenant": tenant})
    with registry.lock(tenant):
        store = registry.get(tenant)
        engine = AssignmentEngine(
            store,
            logger=tenant_log,
            rng=rng,
            clock=clock,
            lookback_days=settings.HISTORY_LOOKBACK_DAYS,
        )
        return engine.run(options)
