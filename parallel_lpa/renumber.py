import numpy as np


def renumber_labels(labels):
    """
    Map raw labels to dense ids 1..K in order of first appearance.

    Returns:
    --------
    (numpy.ndarray, int)
        Dense label per node (same order as `labels`) and K, the number of
        distinct labels.
    """
    labels = np.asarray(labels, dtype=np.int64)
    if len(labels) == 0:
        return np.empty(0, dtype=np.int64), 0

    uniques, first_idx, inverse = np.unique(labels, return_index=True, return_inverse=True)
    # np.unique orders by value; re-rank by where each label first shows up
    rank = np.empty(len(uniques), dtype=np.int64)
    rank[np.argsort(first_idx)] = np.arange(1, len(uniques) + 1)
    return rank[inverse.reshape(-1)], len(uniques)
