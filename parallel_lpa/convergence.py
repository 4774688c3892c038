import logging
import time
from dataclasses import dataclass, field
from enum import Enum

from .scheduler import BatchScheduler

logger = logging.getLogger(__name__)


class ConvergenceState(Enum):
    RUNNING = "running"
    CONVERGED = "converged"


@dataclass
class RunSummary:
    converged: bool
    elapsed: float
    history: list = field(default_factory=list)

    @property
    def num_passes(self):
        return len(self.history)

    @property
    def changed_nodes(self):
        return sum(r.changed_nodes for r in self.history)


class ConvergenceTracker:
    """
    Drives passes until one of them changes nothing.

    RUNNING -> RUNNING while the last pass had changed batches,
    RUNNING -> CONVERGED (terminal) on the first pass with none.
    `max_passes` optionally caps the loop; hitting it leaves the state RUNNING.
    """

    def __init__(self, max_passes=None):
        if max_passes is not None and max_passes < 1:
            raise ValueError(f"max_passes must be >= 1, got {max_passes}")
        self.max_passes = max_passes
        self.state = ConvergenceState.RUNNING
        self.history = []

    @property
    def converged(self):
        return self.state is ConvergenceState.CONVERGED

    def record(self, result):
        self.history.append(result)
        if result.changed_batches == 0:
            self.state = ConvergenceState.CONVERGED
        return self.state

    def run(self, scheduler, observer=None):
        """
        Run passes on a started scheduler.

        observer(pass_number, changed_count, elapsed) is called after every
        pass, with the legacy changed-batches count.
        """
        run_start = time.time()
        while not self.converged:
            if self.max_passes is not None and len(self.history) >= self.max_passes:
                logger.warning("Stopped after %d passes without converging", len(self.history))
                break
            result = scheduler.run_pass()
            self.record(result)
            if observer is not None:
                observer(result.pass_number, result.changed_batches, result.elapsed)

        return RunSummary(
            converged=self.converged,
            elapsed=time.time() - run_start,
            history=list(self.history),
        )


def find_communities(store, num_workers, backend="process", seed=None,
                     max_passes=None, observer=None, order_policy=None):
    """Run label propagation on `store` until convergence; labels are updated in place."""
    tracker = ConvergenceTracker(max_passes=max_passes)
    with BatchScheduler(store, num_workers, backend=backend, seed=seed,
                        order_policy=order_policy) as scheduler:
        summary = tracker.run(scheduler, observer=observer)
    logger.info(
        "Detection %s after %d passes in %.4f seconds",
        "complete" if summary.converged else "stopped",
        summary.num_passes,
        summary.elapsed,
    )
    return summary
