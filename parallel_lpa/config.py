"""Run configuration for parallel label propagation."""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .scheduler import BACKENDS

NUM_WORKERS_ENV = "LPA_NUM_WORKERS"
BACKEND_ENV = "LPA_BACKEND"
OUTPUT_DIR_ENV = "LPA_OUTPUT_DIR"

DEFAULT_BACKEND = "process"
DEFAULT_OUTPUT_DIR = Path(".")
MEMBERSHIP_FILENAME = "membership.txt"
RENUMBERED_FILENAME = "memberships_renumbered.txt"


def _get_env(name, default=None):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


def default_num_workers():
    raw = _get_env(NUM_WORKERS_ENV)
    if raw is None:
        return os.cpu_count() or 1
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{NUM_WORKERS_ENV} must be an integer, got {raw!r}") from exc


def default_backend():
    return _get_env(BACKEND_ENV, DEFAULT_BACKEND)


def default_output_dir():
    return Path(_get_env(OUTPUT_DIR_ENV, str(DEFAULT_OUTPUT_DIR))).expanduser()


@dataclass(frozen=True)
class RunConfig:
    """Everything a single detection run needs, fixed at startup."""

    num_nodes: int
    edge_file: Path
    output_file: Path
    renumbered_file: Optional[Path]
    num_workers: int
    backend: str = DEFAULT_BACKEND
    seed_memberships: Optional[Path] = None
    seed: Optional[int] = None
    max_passes: Optional[int] = None
    snapshot_dir: Optional[Path] = None

    def validate(self):
        if self.num_nodes < 0:
            raise ValueError(f"num_nodes must be >= 0, got {self.num_nodes}")
        if self.num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {self.num_workers}")
        if self.backend not in BACKENDS:
            raise ValueError(f"backend must be one of {BACKENDS}, got {self.backend!r}")
        if self.max_passes is not None and self.max_passes < 1:
            raise ValueError(f"max_passes must be >= 1, got {self.max_passes}")
        return self
