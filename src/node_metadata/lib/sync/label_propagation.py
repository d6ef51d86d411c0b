"""
label_propagation.py
- Main reconciliation logic: propagates a MachineSet's template labels to every Machine
  it owns, and from each Machine to the Node backing it.
- One call to reconcile() is one complete pass computed from freshly read state.
- Strict failure policy: the first fetch, list or update failure aborts the pass and is
  returned as an error outcome; the trigger runner re-invokes the pass later.
"""

import time
from threading import Lock
from dataclasses import dataclass, field
from enum import Enum

from loguru import logger

from node_metadata.core.constants import (
    DEFAULT_PROTECTED_NODE_LABEL_PREFIXES,
    PROPAGATED_LABELS_ANNOTATION,
)
from node_metadata.core.errors import ErrorKind, NotFoundError, PassCancelled, PropagationError
from node_metadata.core.objects import ObjectKind, split_namespaced_key
from node_metadata.lib.sync.label_diff import filter_protected, owned_keys, reconcile_labels
from node_metadata.lib.sync.node_lookup import get_node_for_machine
from node_metadata.lib.sync.ownership import get_machines_for_machine_set
from node_metadata.lib.sync.provenance import read_propagated_keys, record_propagated_keys

# --- Metrics ---
reconcile_passes_total = 0
reconcile_errors_total = 0
machine_label_updates_total = 0
node_label_updates_total = 0
reconcile_last_duration_seconds = 0.0
_metrics_lock = Lock()


class PassStatus(Enum):
    NOOP = "noop"
    UPDATED = "updated"
    ERROR = "error"


@dataclass
class ReconcileOutcome:
    key: str
    status: PassStatus = PassStatus.NOOP
    machines_updated: int = 0
    nodes_updated: int = 0
    unbound_machines: list[str] = field(default_factory=list)
    error_kind: ErrorKind | None = None
    message: str = ""
    dry_run: bool = False
    missing: bool = False

    @property
    def ok(self) -> bool:
        return self.status != PassStatus.ERROR

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "status": self.status.value,
            "machines_updated": self.machines_updated,
            "nodes_updated": self.nodes_updated,
            "unbound_machines": list(self.unbound_machines),
            "error_kind": self.error_kind.value if self.error_kind else None,
            "message": self.message,
            "dry_run": self.dry_run,
            "missing": self.missing,
        }


class MachineSetLabelReconciler:
    """Runs label propagation passes against an ObjectStore."""

    def __init__(
        self,
        store,
        resolve_node=get_node_for_machine,
        protected_node_label_prefixes=None,
        annotation=PROPAGATED_LABELS_ANNOTATION,
        dry_run=False,
    ):
        self.store = store
        self.resolve_node = resolve_node
        self.protected_node_label_prefixes = list(
            DEFAULT_PROTECTED_NODE_LABEL_PREFIXES if protected_node_label_prefixes is None else protected_node_label_prefixes
        )
        self.annotation = annotation
        self.dry_run = dry_run

    def reconcile(self, key, cancel=None) -> ReconcileOutcome:
        """
        Run one propagation pass for the MachineSet identified by `key` (namespace/name).

        Args:
            key (str): MachineSet key.
            cancel (threading.Event | None): Checked before every read and write.

        Returns:
            ReconcileOutcome: never raises for store or cancellation failures.
        """
        global reconcile_passes_total, reconcile_errors_total, reconcile_last_duration_seconds

        start_time = time.time()
        outcome = ReconcileOutcome(key=key, dry_run=self.dry_run)
        try:
            self._reconcile(key, outcome, cancel)
        except PropagationError as e:
            outcome.status = PassStatus.ERROR
            outcome.error_kind = e.kind
            outcome.message = str(e)
            with _metrics_lock:
                reconcile_errors_total += 1
            logger.error(f"[propagation] Pass for {key} failed ({e.kind.value}): {e}")
        finally:
            with _metrics_lock:
                reconcile_passes_total += 1
                reconcile_last_duration_seconds = time.time() - start_time

        if outcome.ok:
            logger.info(
                f"[propagation] Pass for {key} finished: {outcome.status.value} "
                f"(machines={outcome.machines_updated}, nodes={outcome.nodes_updated}, unbound={len(outcome.unbound_machines)})"
            )
        return outcome

    def _reconcile(self, key, outcome, cancel):
        namespace, name = split_namespaced_key(key)

        self._check_cancelled(cancel, key)
        try:
            machine_set = self.store.get(ObjectKind.MACHINE_SET, name, namespace)
        except NotFoundError:
            logger.info(f"[propagation] MachineSet {key} not found; nothing to do.")
            outcome.missing = True
            return

        # An empty template still runs: it is what removes previously propagated labels.
        desired = dict(machine_set.template_labels or {})
        node_desired = filter_protected(desired, self.protected_node_label_prefixes)
        if len(node_desired) != len(desired):
            skipped = sorted(set(desired) - set(node_desired))
            logger.debug(f"[propagation] {key}: protected labels not propagated to nodes: {skipped}")

        self._check_cancelled(cancel, key)
        machines = get_machines_for_machine_set(self.store, machine_set)
        logger.debug(f"[propagation] {key}: desired={desired}, {len(machines)} machine(s)")

        for machine in machines:
            if self._sync_labels(machine, desired, machine_set.key, cancel):
                outcome.machines_updated += 1

            self._check_cancelled(cancel, key)
            node = self.resolve_node(self.store, machine)
            if node is None:
                outcome.unbound_machines.append(machine.key)
                logger.debug(f"[propagation] {machine.key} is not bound to a node yet, skipping node labels.")
                continue

            if self._sync_labels(node, node_desired, machine_set.key, cancel):
                outcome.nodes_updated += 1

        if outcome.machines_updated or outcome.nodes_updated:
            outcome.status = PassStatus.UPDATED

    def _sync_labels(self, obj, desired, source, cancel):
        """
        Apply `desired` to one Machine or Node and persist it if anything changed.

        Returns:
            bool: True if the object was (or, in dry-run mode, would have been) updated.
        """
        global machine_label_updates_total, node_label_updates_total

        annotations = dict(obj.annotations or {})
        propagated = read_propagated_keys(annotations, source, self.annotation)
        labels, diff = reconcile_labels(desired, obj.labels, propagated)
        provenance_changed = record_propagated_keys(
            annotations, source, owned_keys(diff, desired, propagated), self.annotation
        )

        if not diff.changed and not provenance_changed:
            logger.debug(f"[propagation] {obj.kind.value} {obj.key} already up to date.")
            return False

        if self.dry_run:
            logger.info(f"[propagation] (Dry Run) Would update {obj.kind.value} {obj.key}: {diff.summary()}")
            return True

        obj.labels = labels
        obj.annotations = annotations
        self._check_cancelled(cancel, source)
        self.store.update_labels(obj)
        logger.info(f"[propagation] Updated {obj.kind.value} {obj.key}: {diff.summary()}")

        with _metrics_lock:
            if obj.kind == ObjectKind.NODE:
                node_label_updates_total += 1
            else:
                machine_label_updates_total += 1
        return True

    @staticmethod
    def _check_cancelled(cancel, key):
        if cancel is not None and cancel.is_set():
            raise PassCancelled(f"Pass for {key} cancelled")
