#!/usr/bin/env python3
"""
entrypoint.py
- Manual entrypoint for triggering operator tasks, e.g. via `kubectl exec`.
- Usage:
    node-metadata reconcile <namespace>/<machineset>
    node-metadata resync
    node-metadata verify <namespace>/<machineset> <label> [--value V | --absent] [--node-only]
    node-metadata run
"""

import argparse
import json
import sys

from loguru import logger

from node_metadata.core.config import configure_logging
from node_metadata.core.config_loader import load_operator_settings
from node_metadata.core.constants import MAX_WAIT_TIME, POLL_INTERVAL
from node_metadata.core.errors import InvalidKey, PropagationError
from node_metadata.core.objects import split_namespaced_key
from node_metadata.lib.common.waiters import ConvergenceTimeout
from node_metadata.lib.sync.convergence import wait_for_label, wait_for_label_absence
from node_metadata.runner import label_sync


def machine_set_key(value):
    try:
        split_namespaced_key(value)
    except InvalidKey as e:
        raise argparse.ArgumentTypeError(str(e))
    return value


def build_parser():
    parser = argparse.ArgumentParser(
        prog="node-metadata",
        description="Propagate MachineSet labels to Machines and Nodes.",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--config", help="Operator settings file (default: $OPERATOR_CONFIG)")
    sub = parser.add_subparsers(dest="command", required=True)

    reconcile = sub.add_parser("reconcile", help="Run one propagation pass for a MachineSet")
    reconcile.add_argument("key", type=machine_set_key, help="MachineSet as <namespace>/<name>")
    reconcile.add_argument("--dry-run", action="store_true", help="Compute changes without writing them")

    resync = sub.add_parser("resync", help="Run a pass for every MachineSet in the watched namespaces")
    resync.add_argument("--dry-run", action="store_true", help="Compute changes without writing them")

    verify = sub.add_parser("verify", help="Wait until a label has converged on a MachineSet's Machines and Nodes")
    verify.add_argument("key", type=machine_set_key, help="MachineSet as <namespace>/<name>")
    verify.add_argument("label")
    group = verify.add_mutually_exclusive_group(required=True)
    group.add_argument("--value", help="Expected label value")
    group.add_argument("--absent", action="store_true", help="Wait for the label to be removed")
    verify.add_argument("--node-only", action="store_true", help="Only check Nodes")
    verify.add_argument("--timeout", type=float, default=MAX_WAIT_TIME)
    verify.add_argument("--interval", type=float, default=POLL_INTERVAL)

    sub.add_parser("run", help="Run the operator (API, watcher and trigger loop)")
    return parser


def _configure(args, store=None):
    settings = load_operator_settings(args.config)
    if getattr(args, "dry_run", False):
        settings["dry_run"] = True
    return label_sync.configure(store=store, operator_settings=settings)


def main(argv=None, store=None):
    args = build_parser().parse_args(argv)
    configure_logging("DEBUG" if args.debug else "INFO")

    if args.command == "run":
        from node_metadata.main import main as run_operator
        run_operator(args.config)
        return 0

    reconciler = _configure(args, store=store)

    if args.command == "reconcile":
        outcome = label_sync.trigger(args.key, reconciler)
        print(json.dumps(outcome.to_dict(), indent=2))
        return 0 if outcome.ok else 1

    if args.command == "resync":
        outcomes = label_sync.resync_all(reconciler)
        print(json.dumps([o.to_dict() for o in outcomes], indent=2))
        return 0 if all(o.ok for o in outcomes) else 1

    try:
        if args.absent:
            wait_for_label_absence(reconciler.store, args.key, args.label, timeout=args.timeout, interval=args.interval)
        else:
            wait_for_label(
                reconciler.store, args.key, args.label, args.value,
                node_only=args.node_only, timeout=args.timeout, interval=args.interval,
            )
    except ConvergenceTimeout as e:
        logger.error(f"[verify] {e}")
        return 1
    except PropagationError as e:
        logger.error(f"[verify] Could not read cluster state: {e}")
        return 1
    print(f"✅ {args.label} converged on {args.key}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
