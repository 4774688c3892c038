"""
Error taxonomy for label propagation runs.
Load/save failures are fatal, worker failures abort the whole pass loop.
"""


class LabelPropagationError(Exception):
    """Base class for every error raised by parallel_lpa."""


class ParseError(LabelPropagationError, ValueError):
    def __init__(self, path, line_no, line):
        self.path = str(path)
        self.line_no = line_no
        self.line = line
        super().__init__(f"{self.path}:{line_no}: malformed line {line!r}")


class RangeError(LabelPropagationError, IndexError):
    def __init__(self, node_id, num_nodes, path=None, line_no=None):
        self.node_id = node_id
        self.num_nodes = num_nodes
        self.path = str(path) if path is not None else None
        self.line_no = line_no
        where = f"{self.path}:{line_no}: " if self.path is not None else ""
        super().__init__(f"{where}node id {node_id} outside [0, {num_nodes}]")


class GraphIOError(LabelPropagationError, OSError):
    def __init__(self, path, reason):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")


class WorkerFailure(LabelPropagationError):
    """A worker raised (or died) while deciding the label of `node_id`."""

    def __init__(self, node_id, worker_id, detail):
        self.node_id = node_id
        self.worker_id = worker_id
        self.detail = detail
        super().__init__(f"Worker {worker_id} failed on node {node_id}: {detail}")
