"""
ownership.py
- Resolves the Machines owned by a MachineSet.
- matchLabels is pushed to the store as a server-side selector, matchExpressions are
  evaluated here, and Machines controlled by another MachineSet are dropped.
"""

from loguru import logger

from node_metadata.core.objects import ObjectKind


def expression_matches(expression, labels):
    key = expression.get("key")
    operator = expression.get("operator")
    values = expression.get("values") or []

    if operator == "In":
        return key in labels and labels[key] in values
    if operator == "NotIn":
        return key not in labels or labels[key] not in values
    if operator == "Exists":
        return key in labels
    if operator == "DoesNotExist":
        return key not in labels
    logger.warning(f"[ownership] Unsupported selector operator {operator!r} for key {key!r}; treating as no match.")
    return False


def selector_matches(selector, labels):
    """Evaluate a LabelSelector (matchLabels and matchExpressions) against a label map."""
    labels = labels or {}
    selector = selector or {}
    for key, value in (selector.get("matchLabels") or {}).items():
        if labels.get(key) != value:
            return False
    return all(expression_matches(expr, labels) for expr in selector.get("matchExpressions") or [])


def is_empty_selector(selector):
    selector = selector or {}
    return not selector.get("matchLabels") and not selector.get("matchExpressions")


def get_machines_for_machine_set(store, machine_set):
    """
    List the Machines owned by `machine_set`.

    A Machine belongs to the MachineSet when its controller owner reference carries the
    MachineSet's UID, or when it has no controller and matches the selector. An empty
    selector never matches by labels alone.

    Raises:
        ListFailure: The store could not list Machines.
    """
    selector = machine_set.selector or {}

    if is_empty_selector(selector):
        candidates = store.list(ObjectKind.MACHINE, namespace=machine_set.namespace)
        owned = [m for m in candidates if machine_set.uid and m.owner_uid == machine_set.uid]
        logger.debug(f"[ownership] {machine_set.key} has an empty selector; {len(owned)} machine(s) by owner reference.")
        return owned

    candidates = store.list(
        ObjectKind.MACHINE,
        namespace=machine_set.namespace,
        match_labels=selector.get("matchLabels") or None,
    )

    owned = []
    for machine in candidates:
        if not selector_matches(selector, machine.selector_labels):
            continue
        if machine.owner_uid and machine_set.uid and machine.owner_uid != machine_set.uid:
            logger.debug(f"[ownership] {machine.key} matches {machine_set.key} but is controlled by {machine.owner_uid}, skipping.")
            continue
        owned.append(machine)
    return owned
