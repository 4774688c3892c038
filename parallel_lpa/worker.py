import logging
import os
import traceback

import numpy as np

from .graph_store import SharedGraph

logger = logging.getLogger(__name__)

# Pads the last batch of a pass: "no node assigned to this slot"
SENTINEL = -1


def choose_label(neighbor_labels, current):
    """
    Most frequent label among the neighbors, ties broken by the smallest label.
    A node without neighbors keeps `current`.
    """
    if len(neighbor_labels) == 0:
        return current
    # np.unique sorts, and argmax returns the first maximum
    values, counts = np.unique(neighbor_labels, return_counts=True)
    return int(values[np.argmax(counts)])


def update_node(store, node):
    """Recompute one node's label in place. Returns True if it changed."""
    if node == SENTINEL:
        return False

    # Live read: other workers of the same batch may be rewriting these
    neighbor_labels = store.labels[store.neighbors(node)]
    current = store.get_label(node)
    new_label = choose_label(neighbor_labels, current)
    if new_label != current:
        store.set_label(node, new_label)
        return True
    return False


def serve(worker_id, store, task_queue, result_queue):
    """Process ("node", id) messages until a ("stop", None) arrives."""
    while True:
        msg_type, payload = task_queue.get()
        if msg_type == "stop":
            break
        elif msg_type != "node":
            raise RuntimeError(f"Unexpected message {msg_type!r}")

        try:
            changed = update_node(store, payload)
        except Exception:
            result_queue.put(("error", worker_id, payload, traceback.format_exc()))
        else:
            result_queue.put(("changed", worker_id, payload, changed))


def process_worker(worker_id, handle, task_queue, result_queue):
    """Entry point of a worker process: attach to shared memory, then serve."""
    shared = SharedGraph.attach(handle)
    logger.debug("[Worker %d] STARTED in process %d", worker_id, os.getpid())
    try:
        serve(worker_id, shared.store, task_queue, result_queue)
    finally:
        shared.close()
    logger.debug("[Worker %d] FINISHED", worker_id)
