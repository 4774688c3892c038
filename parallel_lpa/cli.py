"""
Command-line entry point: load an edge list, detect communities, write memberships.

Usage:
    parallel-lpa data/com-youtube.ungraph.txt --num-nodes 1134890 -w 8
    parallel-lpa edges.txt --num-nodes 5 --backend thread --max-passes 50 -o out/membership.txt
    python -m parallel_lpa edges.txt --num-nodes 5 --compare-networkx
"""
import argparse
import logging
import sys
import time
from pathlib import Path

import networkx as nx

from .config import (
    MEMBERSHIP_FILENAME,
    RENUMBERED_FILENAME,
    RunConfig,
    default_backend,
    default_num_workers,
    default_output_dir,
)
from .convergence import find_communities
from .errors import GraphIOError, LabelPropagationError
from .graph_store import GraphStore
from .logging_utils import setup_logging
from .membership_io import (
    read_edge_list,
    read_memberships,
    write_memberships,
    write_renumbered_memberships,
)
from .observers import MembershipSnapshotObserver, chain, log_pass_progress
from .scheduler import BACKENDS

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="parallel-lpa",
        description="Parallel label propagation community detection",
    )
    parser.add_argument("edge_file", type=Path, help="tab-separated edge list, 1-based node ids")
    parser.add_argument("--num-nodes", type=int, required=True, help="highest node id in the graph")
    parser.add_argument("-w", "--workers", type=int, default=None,
                        help="worker pool size (default: $LPA_NUM_WORKERS or CPU count)")
    parser.add_argument("--backend", choices=BACKENDS, default=None,
                        help="run workers as processes or threads (default: $LPA_BACKEND or process)")
    parser.add_argument("-o", "--output", type=Path, default=None,
                        help=f"membership output file (default: $LPA_OUTPUT_DIR/{MEMBERSHIP_FILENAME})")
    parser.add_argument("--renumbered", type=Path, default=None,
                        help=f"renumbered membership output file (default: $LPA_OUTPUT_DIR/{RENUMBERED_FILENAME})")
    parser.add_argument("--no-renumbered", action="store_true", help="skip the renumbered output")
    parser.add_argument("--seed-memberships", type=Path, default=None,
                        help="membership file whose labels replace the singleton start")
    parser.add_argument("--seed", type=int, default=None, help="random seed for the node order")
    parser.add_argument("--max-passes", type=int, default=None, help="stop after this many passes")
    parser.add_argument("--snapshot-dir", type=Path, default=None,
                        help="write iter<N>memberships.txt here after every pass")
    parser.add_argument("--compare-networkx", action="store_true",
                        help="also run networkx asynchronous LPA and log both results")
    parser.add_argument("--log-file", type=Path, default=None, help="verbose log file")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging on the console")
    return parser


def config_from_args(args):
    output_dir = default_output_dir()
    renumbered = None
    if not args.no_renumbered:
        renumbered = args.renumbered or output_dir / RENUMBERED_FILENAME
    return RunConfig(
        num_nodes=args.num_nodes,
        edge_file=args.edge_file,
        output_file=args.output or output_dir / MEMBERSHIP_FILENAME,
        renumbered_file=renumbered,
        num_workers=args.workers if args.workers is not None else default_num_workers(),
        backend=args.backend or default_backend(),
        seed_memberships=args.seed_memberships,
        seed=args.seed,
        max_passes=args.max_passes,
        snapshot_dir=args.snapshot_dir,
    ).validate()


def _ensure_parent(path):
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise GraphIOError(path, e.strerror or str(e)) from e


def compare_with_networkx(store, seed=None):
    """Run networkx's asynchronous LPA on the same graph. Returns (ours, theirs) community counts."""
    G = store.to_networkx()
    start_time = time.time()
    communities = list(nx.algorithms.community.asyn_lpa_communities(G, seed=seed))
    logger.info("NetworkX asyn LPA: %d communities in %.4f seconds", len(communities), time.time() - start_time)
    ours = len(store.communities())
    logger.info("parallel_lpa: %d communities", ours)
    return ours, len(communities)


def run(config, compare_networkx=False):
    total_start = time.time()

    load_start = time.time()
    edges = read_edge_list(config.edge_file, config.num_nodes)
    store = GraphStore.build(config.num_nodes, edges)
    logger.info(
        "Loaded %d nodes and %d edges in %.4f seconds",
        config.num_nodes, store.num_edges, time.time() - load_start,
    )
    if config.seed_memberships is not None:
        store.load_labels(read_memberships(config.seed_memberships, config.num_nodes))
        logger.info("Memberships loaded from %s", config.seed_memberships)

    observer = log_pass_progress
    if config.snapshot_dir is not None:
        observer = chain(log_pass_progress, MembershipSnapshotObserver(store, config.snapshot_dir))

    summary = find_communities(
        store,
        config.num_workers,
        backend=config.backend,
        seed=config.seed,
        max_passes=config.max_passes,
        observer=observer,
    )

    save_start = time.time()
    _ensure_parent(config.output_file)
    write_memberships(config.output_file, store.labels)
    logger.info("Membership list written to %s", config.output_file)
    if config.renumbered_file is not None:
        _ensure_parent(config.renumbered_file)
        write_renumbered_memberships(config.renumbered_file, store.labels)
        logger.info("Renumbered membership list written to %s", config.renumbered_file)
    logger.info("Saving took %.4f seconds", time.time() - save_start)

    if compare_networkx:
        compare_with_networkx(store, seed=config.seed)

    logger.info("Elapsed time: %.4f seconds", time.time() - total_start)
    return store, summary


def _start_logging(args):
    level = logging.DEBUG if args.verbose else logging.INFO
    try:
        setup_logging(level, args.log_file)
    except OSError as e:
        # Keep the console so the failure itself gets reported
        setup_logging(level)
        raise GraphIOError(args.log_file, e.strerror or str(e)) from e


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        _start_logging(args)
        config = config_from_args(args)
        store, summary = run(config, compare_networkx=args.compare_networkx)
    except LabelPropagationError as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 1
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 2
    return 0 if summary.converged else 3


if __name__ == "__main__":
    sys.exit(main())
