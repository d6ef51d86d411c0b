#!/usr/bin/env python3
"""Tests for the label propagation reconciler."""

import threading
from unittest.mock import MagicMock

import pytest

from conftest import NAMESPACE, make_machine, make_machine_set, make_node, set_desired
from node_metadata.core.constants import PROPAGATED_LABELS_ANNOTATION
from node_metadata.core.errors import ErrorKind, ListFailure, UpdateConflict, UpdateFailure
from node_metadata.core.objects import ObjectKind
from node_metadata.lib.sync import label_propagation
from node_metadata.lib.sync.label_propagation import MachineSetLabelReconciler, PassStatus

KEY = f"{NAMESPACE}/workers"


def machine_labels(store, name):
    return store.get(ObjectKind.MACHINE, name, NAMESPACE).labels


def node_labels(store, name):
    return store.get(ObjectKind.NODE, name).labels


class TestEndToEnd:
    """Full three-level propagation against the in-memory store."""

    def test_first_pass_propagates_to_machines_and_bound_node(self, cluster):
        outcome = MachineSetLabelReconciler(cluster).reconcile(KEY)

        assert outcome.status == PassStatus.UPDATED
        assert outcome.machines_updated == 2
        assert outcome.nodes_updated == 1
        assert outcome.unbound_machines == [f"{NAMESPACE}/worker-b"]
        assert machine_labels(cluster, "worker-a") == {"env": "prod"}
        assert machine_labels(cluster, "worker-b") == {"env": "prod"}
        assert node_labels(cluster, "node-a")["env"] == "prod"

    def test_no_node_update_for_unbound_machine(self, cluster):
        MachineSetLabelReconciler(cluster).reconcile(KEY)
        node_writes = [key for kind, key in cluster.update_calls if kind == ObjectKind.NODE]
        assert node_writes == ["node-a"]

    def test_clearing_desired_removes_propagated_labels(self, cluster):
        reconciler = MachineSetLabelReconciler(cluster)
        reconciler.reconcile(KEY)

        set_desired(cluster, {})
        outcome = reconciler.reconcile(KEY)

        assert outcome.status == PassStatus.UPDATED
        assert machine_labels(cluster, "worker-a") == {}
        assert machine_labels(cluster, "worker-b") == {}
        assert "env" not in node_labels(cluster, "node-a")
        node = cluster.get(ObjectKind.NODE, "node-a")
        assert PROPAGATED_LABELS_ANNOTATION not in (node.annotations or {})

    def test_unset_desired_also_removes(self, cluster):
        """A template with no labels at all still triggers removal."""
        reconciler = MachineSetLabelReconciler(cluster)
        reconciler.reconcile(KEY)
        set_desired(cluster, None)
        reconciler.reconcile(KEY)
        assert machine_labels(cluster, "worker-a") == {}

    def test_second_pass_is_noop(self, cluster):
        reconciler = MachineSetLabelReconciler(cluster)
        reconciler.reconcile(KEY)
        writes = len(cluster.update_calls)

        outcome = reconciler.reconcile(KEY)

        assert outcome.status == PassStatus.NOOP
        assert len(cluster.update_calls) == writes

    def test_value_change_updates_everywhere(self, cluster):
        reconciler = MachineSetLabelReconciler(cluster)
        reconciler.reconcile(KEY)
        set_desired(cluster, {"env": "staging"})
        reconciler.reconcile(KEY)
        assert machine_labels(cluster, "worker-a") == {"env": "staging"}
        assert node_labels(cluster, "node-a")["env"] == "staging"

    def test_machine_bound_later_gets_node_labels(self, cluster):
        reconciler = MachineSetLabelReconciler(cluster)
        reconciler.reconcile(KEY)

        machine = cluster.get(ObjectKind.MACHINE, "worker-b", NAMESPACE)
        machine.node_name = "node-b"
        cluster.add(machine)
        cluster.add(make_node("node-b", labels={"kubernetes.io/hostname": "node-b"}))

        outcome = reconciler.reconcile(KEY)
        assert outcome.nodes_updated == 1
        assert outcome.unbound_machines == []
        assert node_labels(cluster, "node-b") == {"kubernetes.io/hostname": "node-b", "env": "prod"}


class TestNonDestructive:
    """Labels that did not come from the MachineSet survive every pass."""

    def test_node_pass_through_labels_preserved(self, cluster):
        reconciler = MachineSetLabelReconciler(cluster)
        reconciler.reconcile(KEY)
        set_desired(cluster, {"tier": "web"})
        reconciler.reconcile(KEY)
        set_desired(cluster, {})
        reconciler.reconcile(KEY)

        assert node_labels(cluster, "node-a") == {
            "kubernetes.io/hostname": "node-a",
            "node-role.kubernetes.io/worker": "",
        }

    def test_foreign_machine_label_preserved(self, store):
        store.add(make_machine_set("workers", labels={}))
        store.add(make_machine("worker-a", labels={"team": "infra"}))
        outcome = MachineSetLabelReconciler(store).reconcile(KEY)
        assert outcome.status == PassStatus.NOOP
        assert machine_labels(store, "worker-a") == {"team": "infra"}
        assert store.update_calls == []

    def test_protected_node_label_not_overridden(self, cluster):
        """A MachineSet cannot override the Node's role label; the Machine still gets it."""
        set_desired(cluster, {"env": "prod", "node-role.kubernetes.io/worker": "overruled"})
        MachineSetLabelReconciler(cluster).reconcile(KEY)

        assert machine_labels(cluster, "worker-a")["node-role.kubernetes.io/worker"] == "overruled"
        assert node_labels(cluster, "node-a")["node-role.kubernetes.io/worker"] == ""
        assert node_labels(cluster, "node-a")["env"] == "prod"

    def test_protection_can_be_disabled(self, cluster):
        set_desired(cluster, {"node-role.kubernetes.io/worker": "overruled"})
        MachineSetLabelReconciler(cluster, protected_node_label_prefixes=[]).reconcile(KEY)
        assert node_labels(cluster, "node-a")["node-role.kubernetes.io/worker"] == "overruled"

    def test_preexisting_label_with_same_value_survives_removal(self, cluster):
        """A label the Node already carried is never recorded, so dropping it from the template keeps it."""
        node = cluster.get(ObjectKind.NODE, "node-a")
        node.labels["topology.kubernetes.io/zone"] = "us-east-1a"
        cluster.add(node)
        reconciler = MachineSetLabelReconciler(cluster)

        set_desired(cluster, {"topology.kubernetes.io/zone": "us-east-1a"})
        reconciler.reconcile(KEY)
        set_desired(cluster, {})
        reconciler.reconcile(KEY)

        assert node_labels(cluster, "node-a")["topology.kubernetes.io/zone"] == "us-east-1a"
        assert machine_labels(cluster, "worker-a") == {}

    def test_labels_from_other_machineset_not_removed(self, store):
        """Keys recorded for another source are not removed by this MachineSet."""
        store.add(make_machine_set("workers", labels={}))
        store.add(make_machine(
            "worker-a",
            labels={"env": "prod"},
            annotations={PROPAGATED_LABELS_ANNOTATION: '{"source":"openshift-machine-api/infra","keys":["env"]}'},
        ))
        MachineSetLabelReconciler(store).reconcile(KEY)
        assert machine_labels(store, "worker-a") == {"env": "prod"}
        assert store.update_calls == []


class TestEdgeCases:
    def test_missing_machineset_is_terminal_success(self, store):
        outcome = MachineSetLabelReconciler(store).reconcile(f"{NAMESPACE}/gone")
        assert outcome.ok
        assert outcome.status == PassStatus.NOOP
        assert outcome.error_kind is None
        assert outcome.missing is True

    @pytest.mark.parametrize("key", ["workers", "/workers", f"{NAMESPACE}/", ""])
    def test_key_without_namespace_is_error_outcome(self, key):
        store = MagicMock()
        outcome = MachineSetLabelReconciler(store).reconcile(key)
        assert outcome.error_kind == ErrorKind.INVALID_KEY
        store.get.assert_not_called()

    def test_empty_desired_and_empty_targets_issue_no_update(self, store):
        store.add(make_machine_set("workers", labels={}))
        store.add(make_machine("worker-a", node="node-a"))
        store.add(make_node("node-a"))
        outcome = MachineSetLabelReconciler(store).reconcile(KEY)
        assert outcome.status == PassStatus.NOOP
        assert store.update_calls == []

    def test_machineset_without_machines(self, store):
        store.add(make_machine_set("workers", labels={"env": "prod"}))
        assert MachineSetLabelReconciler(store).reconcile(KEY).status == PassStatus.NOOP

    def test_dry_run_writes_nothing(self, cluster):
        outcome = MachineSetLabelReconciler(cluster, dry_run=True).reconcile(KEY)
        assert outcome.dry_run is True
        assert outcome.machines_updated == 2
        assert cluster.update_calls == []
        assert machine_labels(cluster, "worker-a") is None


class TestFailurePolicy:
    """First failure aborts the pass and is reported, never raised."""

    def test_update_conflict_aborts_pass(self, cluster):
        cluster.fail_update(f"{NAMESPACE}/worker-a", UpdateConflict("stale"))
        outcome = MachineSetLabelReconciler(cluster).reconcile(KEY)

        assert outcome.status == PassStatus.ERROR
        assert outcome.error_kind == ErrorKind.UPDATE_CONFLICT
        assert machine_labels(cluster, "worker-b") is None

    def test_stale_resource_version_is_conflict(self, cluster):
        """A write racing with another writer is rejected by the store."""
        store = cluster
        original_update = store.update_labels

        def racing_update(obj):
            if obj.kind == ObjectKind.NODE:
                node = store.get(ObjectKind.NODE, obj.name)
                node.labels["touched"] = "yes"
                store.add(node)
            return original_update(obj)

        store.update_labels = racing_update
        outcome = MachineSetLabelReconciler(store).reconcile(KEY)
        assert outcome.error_kind == ErrorKind.UPDATE_CONFLICT

    def test_retry_after_failure_converges(self, cluster):
        reconciler = MachineSetLabelReconciler(cluster)
        cluster.fail_update("node-a", UpdateFailure("apiserver unavailable"))
        assert reconciler.reconcile(KEY).error_kind == ErrorKind.UPDATE_FAILURE

        outcome = reconciler.reconcile(KEY)
        assert outcome.ok
        assert node_labels(cluster, "node-a")["env"] == "prod"

    def test_list_failure_reported(self):
        store = MagicMock()
        store.get.return_value = make_machine_set("workers", labels={"env": "prod"})
        store.list.side_effect = ListFailure("timeout")
        outcome = MachineSetLabelReconciler(store).reconcile(KEY)
        assert outcome.error_kind == ErrorKind.LIST_FAILURE
        store.update_labels.assert_not_called()

    def test_cancelled_pass(self, cluster):
        cancel = threading.Event()
        cancel.set()
        outcome = MachineSetLabelReconciler(cluster).reconcile(KEY, cancel=cancel)
        assert outcome.error_kind == ErrorKind.CANCELLED
        assert cluster.update_calls == []

    def test_error_counters(self, cluster):
        before = label_propagation.reconcile_errors_total
        cluster.fail_update(f"{NAMESPACE}/worker-a", UpdateFailure("boom"))
        MachineSetLabelReconciler(cluster).reconcile(KEY)
        assert label_propagation.reconcile_errors_total == before + 1

    def test_counters_exact_under_concurrent_passes(self, store):
        store.add(make_machine_set("workers", labels={}))
        reconciler = MachineSetLabelReconciler(store)
        before = label_propagation.reconcile_passes_total

        threads = [
            threading.Thread(target=lambda: [reconciler.reconcile(KEY) for _ in range(50)])
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert label_propagation.reconcile_passes_total == before + 400


class TestOutcome:
    def test_to_dict(self, cluster):
        data = MachineSetLabelReconciler(cluster).reconcile(KEY).to_dict()
        assert data["status"] == "updated"
        assert data["error_kind"] is None
        assert data["unbound_machines"] == [f"{NAMESPACE}/worker-b"]

    @pytest.mark.parametrize("status,ok", [
        (PassStatus.NOOP, True),
        (PassStatus.UPDATED, True),
        (PassStatus.ERROR, False),
    ])
    def test_ok(self, status, ok):
        assert label_propagation.ReconcileOutcome(key=KEY, status=status).ok is ok
