"""
label_diff.py
- Computes the label changes needed to bring a Machine or Node in line with a MachineSet.
- Labels the operator never propagated are left alone; only keys previously
  propagated from the same MachineSet are candidates for removal.
- Pure functions: no I/O, the only side effect is mutating the label map passed in.
"""

from dataclasses import dataclass, field


@dataclass
class LabelDiff:
    added: dict[str, str] = field(default_factory=dict)
    updated: dict[str, str] = field(default_factory=dict)
    removed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)

    def summary(self) -> str:
        parts = []
        if self.added:
            parts.append("added " + ", ".join(f"{k}={v}" for k, v in sorted(self.added.items())))
        if self.updated:
            parts.append("updated " + ", ".join(f"{k}={v}" for k, v in sorted(self.updated.items())))
        if self.removed:
            parts.append("removed " + ", ".join(self.removed))
        return "; ".join(parts) or "no changes"


def compute_label_diff(desired, current, propagated=None) -> LabelDiff:
    """
    Diff a desired LabelSet against a current one.

    Args:
        desired (dict | None): The MachineSet's template labels.
        current (dict | None): The target's labels; None is treated as empty.
        propagated (Iterable[str] | None): Keys this MachineSet wrote on a previous pass.

    Returns:
        LabelDiff: Keys to add, keys whose value changes, keys to delete.
    """
    desired = desired or {}
    current = current or {}
    propagated = set(propagated or ())

    diff = LabelDiff()
    for key, value in desired.items():
        if key not in current:
            diff.added[key] = value
        elif current[key] != value:
            diff.updated[key] = value

    diff.removed = sorted(k for k in current if k not in desired and k in propagated)
    return diff


def apply_label_diff(diff, target) -> dict:
    """Apply a LabelDiff to `target` in place and return it."""
    target.update(diff.added)
    target.update(diff.updated)
    for key in diff.removed:
        target.pop(key, None)
    return target


def reconcile_labels(desired, target, propagated=None):
    """
    Bring `target` in line with `desired`.

    An unset target becomes a new empty dict; a target whose propagated keys are all
    removed is left as an empty dict, never None.

    Returns:
        tuple[dict, LabelDiff]: The (mutated) label map and the changes applied to it.
    """
    labels = target if target is not None else {}
    diff = compute_label_diff(desired, labels, propagated)
    apply_label_diff(diff, labels)
    return labels, diff


def owned_keys(diff, desired, propagated=None) -> set:
    """
    Keys to record as propagated after applying `diff`.

    A desired key the target already carried with the same value was never written
    here and stays unowned, unless an earlier pass recorded it.
    """
    desired_keys = set(desired or {})
    return (set(propagated or ()) & desired_keys) | set(diff.added) | set(diff.updated)


def filter_protected(labels, protected_prefixes):
    """Drop keys that start with any of the protected prefixes."""
    prefixes = tuple(protected_prefixes or ())
    return {k: v for k, v in (labels or {}).items() if not (prefixes and k.startswith(prefixes))}
