import multiprocessing as mp
import os
import signal

import numpy as np
import pytest

from parallel_lpa import (
    SENTINEL,
    BatchScheduler,
    GraphStore,
    WorkerFailure,
    choose_label,
    iter_batches,
)
from parallel_lpa.scheduler import ProcessWorkerPool, ThreadWorkerPool, make_pool

from conftest import descending_order


class StubPool:
    started = True

    def __init__(self, flags):
        self.flags = list(flags)
        self.batches = []

    def run_batch(self, batch):
        self.batches.append(batch)
        return self.flags.pop(0)


def test_iter_batches_pads_the_last_batch():
    order = np.arange(7)
    batches = list(iter_batches(order, 3))
    assert batches == [[0, 1, 2], [3, 4, 5], [6, SENTINEL, SENTINEL]]
    assert all(len(b) == 3 for b in batches)


def test_iter_batches_assigns_every_node_exactly_once():
    order = np.random.default_rng(1).permutation(23)
    seen = [n for b in iter_batches(order, 4) for n in b if n != SENTINEL]
    assert sorted(seen) == list(range(23))


def test_padding_scenario_has_one_sentinel_per_batch():
    # Ids 0..2 over four slots
    store = GraphStore.build(2, [(1, 2)])
    scheduler = BatchScheduler(store, 4, backend="thread", seed=3)
    scheduler.pool = StubPool([[False] * 4])
    result = scheduler.run_pass()
    assert result.batches == 1
    (batch,) = scheduler.pool.batches
    assert batch.count(SENTINEL) == 1
    assert batch[-1] == SENTINEL


def test_placeholder_node_fills_the_last_slot():
    # Ids 0..3 over four slots: node 0 is part of the order, so nothing is padded
    store = GraphStore.build(3, [(1, 2), (2, 3)])
    scheduler = BatchScheduler(store, 4, backend="thread", seed=3)
    scheduler.pool = StubPool([[False] * 4])
    result = scheduler.run_pass()
    assert result.batches == 1
    (batch,) = scheduler.pool.batches
    assert SENTINEL not in batch
    assert sorted(batch) == [0, 1, 2, 3]


def test_padding_scenario_sentinel_never_alters_nodes():
    store = GraphStore.build(2, [(1, 2)])
    with BatchScheduler(store, 4, backend="thread", seed=3) as scheduler:
        for _ in range(5):
            scheduler.run_pass()
    # Only nodes 1 and 2 may have moved, and only to each other's labels
    assert store.get_label(0) == 0
    assert {store.get_label(1), store.get_label(2)} <= {1, 2}


def test_changed_counters_count_batches_and_nodes_separately():
    store = GraphStore.build(8, [])
    scheduler = BatchScheduler(store, 3, backend="thread")
    scheduler.pool = StubPool([
        [True, True, False],
        [False, False, False],
        [True, True, True],
    ])
    result = scheduler.run_pass()
    assert result.batches == 3
    assert result.changed_batches == 2
    assert result.changed_nodes == 5
    assert result.pass_number == 1


def test_order_is_reshuffled_every_pass():
    store = GraphStore.build(50, [])
    seen = []

    def record(order, rng):
        rng.shuffle(order)
        seen.append(order.copy())

    with BatchScheduler(store, 2, backend="thread", seed=0, order_policy=record) as scheduler:
        scheduler.run_pass()
        scheduler.run_pass()
    assert sorted(seen[0].tolist()) == list(range(51))
    assert not np.array_equal(seen[0], seen[1])


def test_run_pass_requires_started_pool(scenario_a_store):
    scheduler = BatchScheduler(scenario_a_store, 2, backend="thread")
    with pytest.raises(RuntimeError):
        scheduler.run_pass()


@pytest.mark.parametrize("workers", [0, -2])
def test_rejects_empty_pool(scenario_a_store, workers):
    with pytest.raises(ValueError):
        BatchScheduler(scenario_a_store, workers)


def test_make_pool(scenario_a_store):
    assert isinstance(make_pool("thread", scenario_a_store, 2), ThreadWorkerPool)
    assert isinstance(make_pool("process", scenario_a_store, 2), ProcessWorkerPool)
    with pytest.raises(ValueError):
        make_pool("gpu", scenario_a_store, 2)


def test_single_worker_pass_is_sequential(scenario_a_store):
    with BatchScheduler(scenario_a_store, 1, backend="thread", order_policy=descending_order) as scheduler:
        first = scheduler.run_pass()
    # 5 -> 4, 3 -> 2, 2 -> 1; 4 and 1 already agree with their neighbors
    assert scenario_a_store.labels.tolist() == [0, 1, 1, 2, 4, 4]
    assert first.changed_nodes == 3
    assert first.changed_batches == 3


def test_worker_failure_aborts_and_names_the_node(scenario_a_store, monkeypatch):
    from parallel_lpa import worker

    real_update = worker.update_node

    def failing_update(store, node):
        if node == 3:
            raise ValueError("corrupt adjacency")
        return real_update(store, node)

    monkeypatch.setattr(worker, "update_node", failing_update)
    with pytest.raises(WorkerFailure) as exc:
        with BatchScheduler(scenario_a_store, 2, backend="thread", seed=1) as scheduler:
            scheduler.run_pass()
    assert exc.value.node_id == 3
    assert "corrupt adjacency" in exc.value.detail


def test_converged_state_is_a_fixed_point(karate_store):
    with BatchScheduler(karate_store, 4, backend="thread", seed=11) as scheduler:
        for _ in range(100):
            if scheduler.run_pass().changed_batches == 0:
                break
        else:
            pytest.fail("no convergence within 100 passes")
        again = scheduler.run_pass()

    assert again.changed_batches == 0
    assert again.changed_nodes == 0
    labels = karate_store.labels
    for v in range(karate_store.num_nodes + 1):
        neighbor_labels = labels[karate_store.neighbors(v)]
        assert choose_label(neighbor_labels, labels[v]) == labels[v]


def test_process_backend_detects_disjoint_cliques(two_cliques_store):
    with BatchScheduler(two_cliques_store, 2, backend="process", seed=5) as scheduler:
        for _ in range(100):
            if scheduler.run_pass().changed_batches == 0:
                break
        else:
            pytest.fail("no convergence within 100 passes")

    labels = two_cliques_store.labels.tolist()
    assert len(set(labels[:4])) == 1
    assert len(set(labels[4:])) == 1
    assert labels[0] in range(4)
    assert labels[4] in range(4, 8)


@pytest.mark.skipif(not hasattr(signal, "SIGKILL"), reason="needs SIGKILL")
def test_dead_worker_process_fails_the_batch(two_cliques_store):
    scheduler = BatchScheduler(two_cliques_store, 2, backend="process", seed=5)
    with pytest.raises(WorkerFailure) as exc:
        with scheduler:
            scheduler.run_pass()
            victim = scheduler.pool.workers[0]
            os.kill(victim.pid, signal.SIGKILL)
            victim.join(5)
            scheduler.run_pass()

    assert exc.value.worker_id == 0
    assert "exitcode" in exc.value.detail
    # Pool is torn down and labels are back in private memory
    assert scheduler.pool.shared is None
    assert not scheduler.pool.workers
    assert two_cliques_store.labels.flags.owndata


def test_failed_process_start_releases_shared_memory(scenario_a_store, monkeypatch):
    def refuse(self):
        raise OSError("cannot fork")

    monkeypatch.setattr(mp.Process, "start", refuse)
    scheduler = BatchScheduler(scenario_a_store, 2, backend="process")
    with pytest.raises(OSError, match="cannot fork"):
        with scheduler:
            pytest.fail("pool should not have started")

    assert scheduler.pool.shared is None
    for arr in (scenario_a_store.indptr, scenario_a_store.indices, scenario_a_store.labels):
        assert arr.flags.owndata
    assert scenario_a_store.labels.tolist() == [0, 1, 2, 3, 4, 5]
    assert scenario_a_store.neighbors(2).tolist() == [1, 3]
