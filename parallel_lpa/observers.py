"""Per-pass observers: callables taking (pass_number, changed_count, elapsed)."""
import logging
import os
from pathlib import Path

import psutil

from .membership_io import write_memberships

logger = logging.getLogger(__name__)


def log_pass_progress(pass_number, changed_count, elapsed):
    mem_usage_mb = psutil.Process(os.getpid()).memory_info().rss / (1024 * 1024)
    logger.info(
        "Pass %d: %d batches changed in %.4f seconds. Memory used: %.2f MB",
        pass_number,
        changed_count,
        elapsed,
        mem_usage_mb,
    )


class MembershipSnapshotObserver:
    """Writes iter<N>memberships.txt into `directory` after every pass."""

    def __init__(self, store, directory):
        self.store = store
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def __call__(self, pass_number, changed_count, elapsed):
        path = self.directory / f"iter{pass_number}memberships.txt"
        write_memberships(path, self.store.labels)
        logger.debug("Pass %d memberships written to %s", pass_number, path)


def chain(*observers):
    """Combine several observers into one."""
    def observe(pass_number, changed_count, elapsed):
        for observer in observers:
            observer(pass_number, changed_count, elapsed)
    return observe
