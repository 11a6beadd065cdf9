"""
Background plan recomputation.

Allocation changes schedule a recompute of the current month's plans on a
single worker thread. Each job is a full recompute from stored state, so
duplicate or reordered jobs converge on the same plans. Failures are logged
and never reach the code that triggered them.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Iterable, Optional

import structlog

from ..errors import RecomputeError
from ..events.bus import AllocationChanged, EventBus
from ..models import MonthlyPlan
from ..utils.time import Clock, month_label, utc_now
from .plans import MonthlyPlanService

logger = structlog.get_logger(__name__)


class PlanRecomputeWorker:
    """Runs plan recomputes off the caller's thread."""

    def __init__(self, plan_service: MonthlyPlanService, clock: Clock = utc_now):
        self.plan_service = plan_service
        self.clock = clock
        self.logger = logger
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="plan-recompute")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self.failures = 0

    def attach(self, event_bus: EventBus) -> None:
        """Recompute whenever allocations change."""
        event_bus.subscribe(AllocationChanged, self.on_allocation_changed)

    def on_allocation_changed(self, event: AllocationChanged) -> None:
        self.schedule(event.goal_ids)

    def schedule(self, goal_ids: Optional[Iterable[str]] = None,
                 month: Optional[str] = None) -> "Future[list[MonthlyPlan]]":
        """
        Queue a recompute.

        Args:
            goal_ids: Goals to refresh, all goals when None
            month: Month label, defaults to the current month
        """
        target_month = month or month_label(self.clock())
        ids = tuple(goal_ids) if goal_ids is not None else None

        future = self._executor.submit(self._run, target_month, ids)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)

        self.logger.debug("Recompute scheduled", month_label=target_month, goal_ids=ids)
        return future

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every scheduled recompute has finished.

        Returns:
            True if nothing is pending afterwards
        """
        with self._lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)

    def _run(self, month: str, goal_ids: Optional[tuple[str, ...]]) -> list[MonthlyPlan]:
        try:
            return self.plan_service.recompute_plans(month, goal_ids)
        except Exception as e:
            raise RecomputeError(
                f"Plan recompute failed: {e}",
                month_label=month,
                goal_ids=list(goal_ids or ())
            ) from e

    def _on_done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

        if future.cancelled():
            return

        error = future.exception()
        if error is not None:
            self.failures += 1
            self.logger.error(
                "Background recompute failed",
                month_label=getattr(error, "month_label", None),
                goal_ids=getattr(error, "goal_ids", None),
                error=str(error)
            )
