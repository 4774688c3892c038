"""
Edge list and membership file formats.

Edge list:   "<a>\t<b>" per line, 1-based ids.
Memberships: "<id> <label>" per line for every id 0..num_nodes.
"""
import logging

import numpy as np

from .errors import GraphIOError, ParseError, RangeError
from .renumber import renumber_labels

logger = logging.getLogger(__name__)

# Labels live in an int64 array
LABEL_MIN = int(np.iinfo(np.int64).min)
LABEL_MAX = int(np.iinfo(np.int64).max)


def _parse_pair(path, line_no, line, sep):
    parts = line.split(sep)
    if len(parts) != 2:
        raise ParseError(path, line_no, line)
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        raise ParseError(path, line_no, line) from None


def _io_error(path, e):
    return GraphIOError(path, e.strerror or str(e))


def read_edge_list(path, num_nodes):
    """
    Read a tab-separated edge list. Blank lines are skipped; nothing is
    sorted, de-duplicated or filtered.

    Raises ParseError for malformed lines, RangeError for ids outside
    [0, num_nodes] and GraphIOError if the file can't be read.
    """
    edges = []
    try:
        with open(path, "r", encoding="utf-8") as file:
            for line_no, line in enumerate(file, start=1):
                line = line.rstrip("\r\n")
                if not line.strip():
                    continue
                u, v = _parse_pair(path, line_no, line, "\t")
                for node in (u, v):
                    if node < 0 or node > num_nodes:
                        raise RangeError(node, num_nodes, path, line_no)
                edges.append((u, v))
    except OSError as e:
        raise _io_error(path, e) from e

    logger.debug("Read %d edges from %s", len(edges), path)
    return np.array(edges, dtype=np.int64).reshape(-1, 2)


def read_memberships(path, num_nodes):
    """Read "<id> <label>" lines, e.g. to seed or resume a run."""
    pairs = []
    try:
        with open(path, "r", encoding="utf-8") as file:
            for line_no, line in enumerate(file, start=1):
                if not line.strip():
                    continue
                node, label = _parse_pair(path, line_no, line.strip(), None)
                if node < 0 or node > num_nodes:
                    raise RangeError(node, num_nodes, path, line_no)
                if label < LABEL_MIN or label > LABEL_MAX:
                    raise ParseError(path, line_no, line.strip())
                pairs.append((node, label))
    except OSError as e:
        raise _io_error(path, e) from e
    return pairs


def write_memberships(path, labels):
    try:
        with open(path, "w", encoding="utf-8") as file:
            for node, label in enumerate(np.asarray(labels).tolist()):
                file.write(f"{node} {label}\n")
    except OSError as e:
        raise _io_error(path, e) from e


def write_renumbered_memberships(path, labels):
    """Write memberships with labels renumbered to 1..K. Returns K."""
    dense, num_communities = renumber_labels(labels)
    logger.info("Found %d communities.", num_communities)
    write_memberships(path, dense)
    return num_communities
