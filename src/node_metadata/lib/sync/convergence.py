"""
convergence.py
- Verification helpers: wait until a label has reached (or left) every Machine of a
  MachineSet and the Nodes backing them.
- Machines not bound to a Node yet are only checked at the Machine level.
"""

from node_metadata.core.constants import MAX_WAIT_TIME, POLL_INTERVAL
from node_metadata.core.objects import ObjectKind, split_namespaced_key
from node_metadata.lib.common.waiters import wait_until_all
from node_metadata.lib.sync.node_lookup import get_node_for_machine
from node_metadata.lib.sync.ownership import get_machines_for_machine_set


def _machines(store, machine_set_key):
    namespace, name = split_namespaced_key(machine_set_key)
    machine_set = store.get(ObjectKind.MACHINE_SET, name, namespace)
    return get_machines_for_machine_set(store, machine_set)


def label_check(store, label, value, node_only=False, resolve_node=get_node_for_machine):
    """Build a per-Machine check that `label` equals `value` on the Machine and its Node."""

    def check(machine):
        if not node_only and (machine.labels or {}).get(label) != value:
            return f"machine/{machine.name}"
        node = resolve_node(store, machine)
        if node is not None and (node.labels or {}).get(label) != value:
            return f"node/{node.name}"
        return None

    return check


def absence_check(store, label, resolve_node=get_node_for_machine):
    """Build a per-Machine check that `label` is missing from the Machine and its Node."""

    def check(machine):
        if label in (machine.labels or {}):
            return f"machine/{machine.name}"
        node = resolve_node(store, machine)
        if node is not None and label in (node.labels or {}):
            return f"node/{node.name}"
        return None

    return check


def wait_for_label(store, machine_set_key, label, value, node_only=False, timeout=MAX_WAIT_TIME, interval=POLL_INTERVAL, **kwargs):
    wait_until_all(
        lambda: _machines(store, machine_set_key),
        label_check(store, label, value, node_only=node_only),
        timeout=timeout,
        interval=interval,
        description=f"label '{label}={value}' on {machine_set_key}",
        **kwargs,
    )


def wait_for_label_absence(store, machine_set_key, label, timeout=MAX_WAIT_TIME, interval=POLL_INTERVAL, **kwargs):
    wait_until_all(
        lambda: _machines(store, machine_set_key),
        absence_check(store, label),
        timeout=timeout,
        interval=interval,
        description=f"absence of label '{label}' on {machine_set_key}",
        **kwargs,
    )
