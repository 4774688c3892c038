"""
parallel_lpa - community detection by parallel, asynchronous label propagation.
"""

from .convergence import ConvergenceState, ConvergenceTracker, RunSummary, find_communities
from .errors import (
    GraphIOError,
    LabelPropagationError,
    ParseError,
    RangeError,
    WorkerFailure,
)
from .graph_store import GraphStore, SharedGraph
from .membership_io import (
    read_edge_list,
    read_memberships,
    write_memberships,
    write_renumbered_memberships,
)
from .renumber import renumber_labels
from .scheduler import BatchScheduler, PassResult, iter_batches, shuffle_order
from .worker import SENTINEL, choose_label, update_node

__all__ = [
    'GraphStore',
    'SharedGraph',
    'BatchScheduler',
    'PassResult',
    'ConvergenceTracker',
    'ConvergenceState',
    'RunSummary',
    'find_communities',
    'choose_label',
    'update_node',
    'iter_batches',
    'shuffle_order',
    'SENTINEL',
    'renumber_labels',
    'read_edge_list',
    'read_memberships',
    'write_memberships',
    'write_renumbered_memberships',
    'LabelPropagationError',
    'ParseError',
    'RangeError',
    'GraphIOError',
    'WorkerFailure',
]

__version__ = '1.0.0'
