"""
GraphStore - fixed node table for label propagation.

Adjacency is kept in CSR form (indptr / indices) and every node's label in a
single int64 array, so one label is one aligned machine word: a concurrent
reader sees either the old or the new value, never a mixture.
"""
from collections import namedtuple
from multiprocessing import shared_memory

import networkx as nx
import numpy as np

from .errors import RangeError

# Everything a worker process needs to re-attach to the shared arrays
SharedGraphHandle = namedtuple(
    "SharedGraphHandle",
    ["indptr_name", "indices_name", "labels_name", "num_nodes", "num_indices"],
)


def _check_range(ids, num_nodes):
    bad = (ids < 0) | (ids > num_nodes)
    if bad.any():
        raise RangeError(int(ids[bad][0]), num_nodes)


class GraphStore:
    """
    Dense node table indexed 0..num_nodes.

    Node 0 is a placeholder so that 1-based external ids index directly.
    Adjacency never changes after build(); only labels do, and get_label /
    set_label do no locking of their own. The scheduler guarantees that a
    node is written by at most one worker per batch.
    """

    def __init__(self, indptr, indices, labels):
        self.indptr = indptr
        self.indices = indices
        self.labels = labels

    @classmethod
    def build(cls, num_nodes, edges):
        """
        Allocate num_nodes + 1 singleton nodes and insert every edge both ways.

        Parameters:
        -----------
        num_nodes : int
            Highest valid node id.
        edges : array-like of shape (m, 2)
            Undirected edges. Ids must lie in [0, num_nodes].

        Raises:
        -------
        RangeError
            If an edge references an id outside [0, num_nodes].
        """
        if num_nodes < 0:
            raise ValueError(f"num_nodes must be >= 0, got {num_nodes}")
        edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
        _check_range(edges.ravel(), num_nodes)

        src = np.concatenate([edges[:, 0], edges[:, 1]])
        dst = np.concatenate([edges[:, 1], edges[:, 0]])

        # Neighbors form a set: repeated edges collapse to one entry.
        # np.unique also leaves the pairs sorted by (src, dst).
        stride = num_nodes + 1
        keys = np.unique(src * stride + dst)
        src, dst = np.divmod(keys, stride)

        indptr = np.zeros(num_nodes + 2, dtype=np.int64)
        np.cumsum(np.bincount(src, minlength=stride), out=indptr[1:])
        labels = np.arange(stride, dtype=np.int64)
        return cls(indptr, dst.astype(np.int64), labels)

    @classmethod
    def from_networkx(cls, G, num_nodes=None):
        """Build from an integer-labelled networkx graph."""
        if num_nodes is None:
            num_nodes = max(G.nodes(), default=0)
        return cls.build(num_nodes, list(G.edges()))

    def to_networkx(self):
        G = nx.Graph()
        G.add_nodes_from(range(self.num_nodes + 1))
        for v in range(self.num_nodes + 1):
            for w in self.neighbors(v):
                if v <= w:
                    G.add_edge(v, int(w))
        nx.set_node_attributes(G, dict(enumerate(self.labels.tolist())), "label")
        return G

    @property
    def num_nodes(self):
        return len(self.labels) - 1

    @property
    def num_edges(self):
        # Each edge is stored twice, self-loops once
        owners = np.repeat(np.arange(self.num_nodes + 1), np.diff(self.indptr))
        self_loops = int(np.count_nonzero(owners == self.indices))
        return (len(self.indices) + self_loops) // 2

    def neighbors(self, node):
        return self.indices[self.indptr[node]:self.indptr[node + 1]]

    def degree(self, node):
        return int(self.indptr[node + 1] - self.indptr[node])

    def get_label(self, node):
        return int(self.labels[node])

    def set_label(self, node, value):
        self.labels[node] = value

    def load_labels(self, pairs):
        """Override singleton labels from (node, label) pairs or a mapping."""
        if hasattr(pairs, "items"):
            pairs = pairs.items()
        for node, label in pairs:
            if node < 0 or node > self.num_nodes:
                raise RangeError(node, self.num_nodes)
            self.labels[node] = label

    def snapshot_labels(self):
        return self.labels.copy()

    def communities(self):
        """Group node ids by their current label."""
        groups = {}
        for node, label in enumerate(self.labels.tolist()):
            groups.setdefault(label, set()).add(node)
        return groups

    def share(self):
        """Move the arrays into shared memory for worker processes."""
        return SharedGraph.create(self)

    @staticmethod
    def attach(handle):
        """Attach to arrays shared by another process's GraphStore.share()."""
        return SharedGraph.attach(handle)


class SharedGraph:
    """
    Shared-memory backing for a GraphStore.

    The creating process owns the blocks and unlinks them on close(); worker
    processes only attach and detach. While the blocks are open, `store`
    reads and writes go straight to shared memory.
    """

    def __init__(self, store, blocks, handle, owner):
        self.store = store
        self.handle = handle
        self.owner = owner
        self._blocks = blocks
        self._closed = False

    @classmethod
    def create(cls, store):
        blocks = {}
        views = {}
        for key in ("indptr", "indices", "labels"):
            arr = getattr(store, key)
            # Zero-sized blocks are rejected, graphs without edges still need one
            shm = shared_memory.SharedMemory(create=True, size=max(arr.nbytes, 1))
            view = np.ndarray(arr.shape, dtype=np.int64, buffer=shm.buf)
            view[:] = arr[:]
            blocks[key] = shm
            views[key] = view

        handle = SharedGraphHandle(
            indptr_name=blocks["indptr"].name,
            indices_name=blocks["indices"].name,
            labels_name=blocks["labels"].name,
            num_nodes=store.num_nodes,
            num_indices=len(store.indices),
        )
        store.indptr = views["indptr"]
        store.indices = views["indices"]
        store.labels = views["labels"]
        return cls(store, blocks, handle, owner=True)

    @classmethod
    def attach(cls, handle):
        blocks = {
            "indptr": shared_memory.SharedMemory(name=handle.indptr_name),
            "indices": shared_memory.SharedMemory(name=handle.indices_name),
            "labels": shared_memory.SharedMemory(name=handle.labels_name),
        }
        n = handle.num_nodes
        store = GraphStore(
            np.ndarray((n + 2,), dtype=np.int64, buffer=blocks["indptr"].buf),
            np.ndarray((handle.num_indices,), dtype=np.int64, buffer=blocks["indices"].buf),
            np.ndarray((n + 1,), dtype=np.int64, buffer=blocks["labels"].buf),
        )
        return cls(store, blocks, handle, owner=False)

    def close(self):
        if self._closed:
            return
        self._closed = True
        # Views must be dropped before their blocks can be closed
        if self.owner:
            self.store.indptr = np.array(self.store.indptr)
            self.store.indices = np.array(self.store.indices)
            self.store.labels = np.array(self.store.labels)
        else:
            self.store.indptr = self.store.indices = self.store.labels = None
        for shm in self._blocks.values():
            shm.close()
            if self.owner:
                shm.unlink()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
