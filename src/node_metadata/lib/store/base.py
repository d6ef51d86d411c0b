"""
base.py
- Capability interface the reconciler needs from an object store: get, list, update_labels.
- Parameterized over ObjectKind so no runtime type registry is involved.
"""

from abc import ABC, abstractmethod

from node_metadata.core.objects import ObjectKind


class ObjectStore(ABC):
    """Read and write access to MachineSets, Machines and Nodes."""

    @abstractmethod
    def get(self, kind: ObjectKind, name: str, namespace: str | None = None):
        """
        Fetch one object.

        Raises:
            NotFoundError: The object does not exist.
            FetchFailure: Any other read error.
        """

    @abstractmethod
    def list(self, kind: ObjectKind, namespace: str | None = None, match_labels: dict | None = None) -> list:
        """
        List objects of a kind, optionally scoped to a namespace and filtered by exact label matches.
        Machines are matched on their metadata labels.

        Raises:
            ListFailure: The list call failed.
        """

    @abstractmethod
    def update_labels(self, obj) -> None:
        """
        Persist the object's label map and annotations.

        The write is conditional on the resourceVersion the object was read at;
        on success the record's resource_version is refreshed.

        Raises:
            UpdateConflict: The object changed since it was read.
            UpdateFailure: Any other write error.
        """


def matches_labels(labels: dict | None, match_labels: dict | None) -> bool:
    """True when every key/value in match_labels is present in labels."""
    labels = labels or {}
    return all(labels.get(k) == v for k, v in (match_labels or {}).items())
