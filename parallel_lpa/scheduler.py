"""
Batch scheduler: runs one label-propagation pass as a sequence of fork-join
batches over a fixed pool of P worker slots.

Within a batch every node id sits in exactly one slot, so no two workers ever
write the same label. Neighbor reads may race with writes of the same batch,
which is the asynchronous flavour of label propagation. The barrier at the
end of each batch keeps those races from crossing batch boundaries.
"""
import logging
import multiprocessing as mp
import queue
import threading
import time
from dataclasses import dataclass

import numpy as np

from .errors import WorkerFailure
from .worker import SENTINEL, process_worker, serve

logger = logging.getLogger(__name__)

BACKENDS = ("process", "thread")


@dataclass(frozen=True)
class PassResult:
    pass_number: int
    changed_batches: int   # batches with at least one change (legacy progress count)
    changed_nodes: int     # labels actually rewritten
    batches: int
    elapsed: float


def shuffle_order(order, rng):
    """Default order policy: a fresh random permutation every pass."""
    rng.shuffle(order)


def iter_batches(order, size):
    """Slice `order` into batches of exactly `size` entries, padding with SENTINEL."""
    for i in range(0, len(order), size):
        batch = order[i:i + size].tolist()
        batch.extend([SENTINEL] * (size - len(batch)))
        yield batch


class _WorkerPool:
    """Per-slot task queues, one shared result queue, and a collect-all barrier."""

    poll_interval = 0.5

    def __init__(self, store, num_workers):
        self.store = store
        self.num_workers = num_workers
        self.workers = []
        self.task_queues = []
        self.result_queue = None

    @property
    def started(self):
        return bool(self.workers)

    def run_batch(self, batch):
        """Dispatch one entry per slot and block until every slot has reported."""
        for slot, node in enumerate(batch):
            self.task_queues[slot].put(("node", node))

        flags = [False] * len(batch)
        pending = len(batch)
        while pending:
            try:
                msg_type, worker_id, node, payload = self.result_queue.get(timeout=self.poll_interval)
            except queue.Empty:
                self._check_alive(batch)
                continue
            if msg_type == "error":
                raise WorkerFailure(node, worker_id, payload)
            flags[worker_id] = payload
            pending -= 1
        return flags

    def _check_alive(self, batch):
        for slot, w in enumerate(self.workers):
            if not w.is_alive():
                exitcode = getattr(w, "exitcode", None)
                raise WorkerFailure(batch[slot], slot, f"worker exited without reporting (exitcode={exitcode})")

    def _stop_workers(self, timeout=5.0):
        for q in self.task_queues:
            q.put(("stop", None))
        for w in self.workers:
            w.join(timeout)
        stuck = [w for w in self.workers if w.is_alive()]
        self.workers = []
        return stuck


class ThreadWorkerPool(_WorkerPool):
    """P threads working directly on the in-process GraphStore."""

    def start(self):
        if self.started:
            return
        self.result_queue = queue.Queue()
        self.task_queues = [queue.Queue() for _ in range(self.num_workers)]
        for worker_id in range(self.num_workers):
            t = threading.Thread(
                target=serve,
                args=(worker_id, self.store, self.task_queues[worker_id], self.result_queue),
                name=f"lpa-worker-{worker_id}",
                daemon=True,
            )
            t.start()
            self.workers.append(t)
        logger.debug("Started %d worker threads", self.num_workers)

    def close(self):
        if not self.started:
            return
        stuck = self._stop_workers()
        if stuck:
            logger.warning("%d worker threads did not stop in time", len(stuck))


class ProcessWorkerPool(_WorkerPool):
    """P processes attached to a shared-memory copy of the GraphStore."""

    def __init__(self, store, num_workers):
        super().__init__(store, num_workers)
        self.shared = None

    def start(self):
        if self.started:
            return
        spawn_start = time.time()
        self.shared = self.store.share()
        self.result_queue = mp.Queue()
        self.task_queues = [mp.Queue() for _ in range(self.num_workers)]
        for worker_id in range(self.num_workers):
            p = mp.Process(
                target=process_worker,
                args=(worker_id, self.shared.handle, self.task_queues[worker_id], self.result_queue),
                daemon=True,
            )
            p.start()
            self.workers.append(p)
        logger.debug("Spawned %d worker processes in %.4f seconds", self.num_workers, time.time() - spawn_start)

    def close(self):
        if self.started:
            for p in self._stop_workers():
                logger.warning("Terminating worker process %d", p.pid)
                p.terminate()
                p.join()
        if self.shared is not None:
            # Copies the final labels back into private memory
            self.shared.close()
            self.shared = None


def make_pool(backend, store, num_workers):
    if backend == "process":
        return ProcessWorkerPool(store, num_workers)
    elif backend == "thread":
        return ThreadWorkerPool(store, num_workers)
    raise ValueError(f"Unknown backend {backend!r}, expected one of {BACKENDS}")


class BatchScheduler:
    """
    Iteration engine over a fixed pool of `num_workers` slots.

    Use as a context manager so the pool is started once and always torn
    down, also when a WorkerFailure aborts a pass:

        with BatchScheduler(store, 4) as scheduler:
            result = scheduler.run_pass()
    """

    def __init__(self, store, num_workers, backend="process", seed=None, order_policy=None):
        if num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {num_workers}")
        self.store = store
        self.num_workers = num_workers
        self.backend = backend
        self.rng = np.random.default_rng(seed)
        self.order = np.arange(store.num_nodes + 1, dtype=np.int64)
        self.order_policy = order_policy or shuffle_order
        self.pool = make_pool(backend, store, num_workers)
        self.passes_run = 0

    def start(self):
        self.pool.start()

    def close(self):
        self.pool.close()

    def __enter__(self):
        try:
            self.start()
        except BaseException:
            # A half-started pool still holds shared memory
            self.close()
            raise
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def run_pass(self):
        """Sweep every node once. Returns the pass's PassResult."""
        if not self.pool.started:
            raise RuntimeError("Worker pool is not running; use the scheduler as a context manager")

        pass_start = time.time()
        self.passes_run += 1
        self.order_policy(self.order, self.rng)

        changed_batches = 0
        changed_nodes = 0
        batches = 0
        for batch in iter_batches(self.order, self.num_workers):
            flags = self.pool.run_batch(batch)
            batches += 1
            if any(flags):
                changed_batches += 1
                changed_nodes += sum(flags)
                if changed_batches == 1:
                    logger.debug("Another pass will be needed.")

        return PassResult(
            pass_number=self.passes_run,
            changed_batches=changed_batches,
            changed_nodes=changed_nodes,
            batches=batches,
            elapsed=time.time() - pass_start,
        )
