"""Shared fixtures for the parallel_lpa test suite."""
import networkx as nx
import numpy as np
import pytest

from parallel_lpa import GraphStore

SCENARIO_A_EDGES = [(1, 2), (2, 3), (4, 5)]


def descending_order(order, rng):
    """Order policy that always visits the highest id first."""
    order[:] = np.arange(len(order))[::-1]


class StubScheduler:
    """Hands out pre-baked PassResults instead of running workers."""

    def __init__(self, results):
        self.results = list(results)
        self.calls = 0

    def run_pass(self):
        self.calls += 1
        return self.results.pop(0)


@pytest.fixture
def scenario_a_store():
    return GraphStore.build(5, SCENARIO_A_EDGES)


@pytest.fixture
def karate_store():
    return GraphStore.from_networkx(nx.karate_club_graph())


@pytest.fixture
def two_cliques_store():
    G = nx.disjoint_union(nx.complete_graph(4), nx.complete_graph(4))
    return GraphStore.from_networkx(G)


@pytest.fixture
def write_file(tmp_path):
    def _write(name, text):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path
    return _write
