"""Per-invocation resource budget and pause decisions."""

import logging
import time
from collections.abc import Callable

import psutil

from siteexport.config import ResourceBudget
from siteexport.state.models import PauseReason

logger = logging.getLogger(__name__)


class PauseController:
    """Decides when the current invocation should checkpoint and yield.

    The budget is enforced by the exporter itself, before the host's own
    execution-time or memory ceiling can kill the process mid-write.
    """

    def __init__(
        self,
        budget: ResourceBudget,
        started_at: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        memory_sampler: Callable[[], int] | None = None,
    ):
        self.budget = budget
        self.clock = clock
        self.started_at = clock() if started_at is None else started_at
        self._memory_sampler = memory_sampler or _process_rss
        self._memory_limit = budget.memory_limit_bytes or psutil.virtual_memory().total

    @property
    def elapsed(self) -> float:
        return self.clock() - self.started_at

    @property
    def memory_limit(self) -> int:
        return self._memory_limit

    def time_exhausted(self) -> bool:
        return self.elapsed >= self.budget.time_budget_seconds

    def should_pause(self, files_since_batch: int = 0) -> PauseReason | None:
        if self.time_exhausted():
            return PauseReason.TIME_BUDGET

        max_files = self.budget.max_files_per_run
        if max_files is not None and files_since_batch >= max_files:
            return PauseReason.FILE_BATCH

        usage = self._memory_sampler()
        if usage >= self._memory_limit * self.budget.memory_fraction:
            logger.info(
                "Memory usage %d bytes reached %.0f%% of %d bytes",
                usage,
                self.budget.memory_fraction * 100,
                self._memory_limit,
            )
            return PauseReason.MEMORY

        return None


def _process_rss() -> int:
    return psutil.Process().memory_info().rss
