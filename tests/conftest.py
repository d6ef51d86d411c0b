"""Shared pytest fixtures for managed-node-metadata tests."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from node_metadata.core import retry_state
from node_metadata.core.objects import Machine, MachineSet, Node, ObjectKind
from memory_store import InMemoryStore
from node_metadata.runner import label_sync

NAMESPACE = "openshift-machine-api"
MACHINESET_LABEL = "machine.openshift.io/cluster-api-machineset"


def make_machine_set(name="workers", labels=None, selector=None, namespace=NAMESPACE):
    """MachineSet selecting Machines by the cluster-api-machineset label."""
    if selector is None:
        selector = {"matchLabels": {MACHINESET_LABEL: name}}
    return MachineSet(
        namespace=namespace,
        name=name,
        uid=f"uid-{name}",
        template_labels=labels,
        selector=selector,
    )


def make_machine(name, machine_set="workers", labels=None, node=None, annotations=None,
                 owner=True, namespace=NAMESPACE):
    return Machine(
        namespace=namespace,
        name=name,
        uid=f"uid-{name}",
        labels=labels,
        annotations=annotations,
        selector_labels={MACHINESET_LABEL: machine_set},
        node_name=node,
        owner_uid=f"uid-{machine_set}" if owner else None,
    )


def make_node(name, labels=None, annotations=None):
    return Node(name=name, labels=labels, annotations=annotations)


@pytest.fixture
def store():
    """Empty in-memory object store."""
    return InMemoryStore()


@pytest.fixture
def cluster(store):
    """
    One MachineSet with two Machines: worker-a bound to node-a, worker-b not provisioned yet.

    node-a carries kubelet-owned labels that must survive every pass.
    """
    store.add(make_machine_set("workers", labels={"env": "prod"}))
    store.add(make_machine("worker-a", node="node-a"))
    store.add(make_machine("worker-b"))
    store.add(make_node("node-a", labels={
        "kubernetes.io/hostname": "node-a",
        "node-role.kubernetes.io/worker": "",
    }))
    return store


def _reset_runner():
    retry_state.retry_state.clear()
    label_sync.stop_event.clear()
    label_sync.resync_requested.clear()
    label_sync.should_run = True
    label_sync.settings = None
    label_sync._store = None
    label_sync._reconciler = None


@pytest.fixture(autouse=True)
def reset_runner_state():
    """Runner and retry state are module-level; isolate every test."""
    _reset_runner()
    yield
    _reset_runner()


def set_desired(store, labels, name="workers"):
    """Change a stored MachineSet's template labels."""
    machine_set = store.get(ObjectKind.MACHINE_SET, name, NAMESPACE)
    machine_set.template_labels = labels
    store.add(machine_set)
