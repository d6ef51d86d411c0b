"""
objects.py
- Records for the three object kinds the operator reads and writes.
- Each record keeps its raw API document so writes replace the full object
  with the resourceVersion it was read at.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from node_metadata.core.errors import InvalidKey


class ObjectKind(Enum):
    MACHINE_SET = "MachineSet"
    MACHINE = "Machine"
    NODE = "Node"


def object_key(namespace: str | None, name: str) -> str:
    """Return the `namespace/name` key, or just `name` for cluster-scoped objects."""
    return f"{namespace}/{name}" if namespace else name


def split_key(key: str) -> tuple[str | None, str]:
    """Inverse of object_key()."""
    if "/" in key:
        namespace, name = key.split("/", 1)
        return namespace, name
    return None, key


def split_namespaced_key(key: str) -> tuple[str, str]:
    """split_key() for namespaced objects; both parts are required."""
    namespace, name = split_key(key or "")
    if not namespace or not name or "/" in name:
        raise InvalidKey(f"Expected <namespace>/<name>, got {key!r}", ref=key)
    return namespace, name


def _dig(obj: dict, *path: str) -> Any:
    for part in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(part)
    return obj


def _controller_uid(metadata: dict) -> str | None:
    for ref in metadata.get("ownerReferences") or []:
        if ref.get("controller"):
            return ref.get("uid")
    return None


@dataclass
class MachineSet:
    """Desired label template plus the selector used to find owned Machines."""

    namespace: str
    name: str
    uid: str | None = None
    template_labels: dict[str, str] | None = None
    selector: dict[str, Any] = field(default_factory=dict)
    resource_version: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    kind = ObjectKind.MACHINE_SET

    @property
    def key(self) -> str:
        return object_key(self.namespace, self.name)

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "MachineSet":
        metadata = obj.get("metadata") or {}
        return cls(
            namespace=metadata.get("namespace"),
            name=metadata.get("name"),
            uid=metadata.get("uid"),
            template_labels=_dig(obj, "spec", "template", "spec", "metadata", "labels"),
            selector=_dig(obj, "spec", "selector") or {},
            resource_version=metadata.get("resourceVersion"),
            raw=copy.deepcopy(obj),
        )

    def to_dict(self) -> dict[str, Any]:
        obj = copy.deepcopy(self.raw)
        metadata = obj.setdefault("metadata", {})
        metadata.update({"namespace": self.namespace, "name": self.name})
        if self.uid:
            metadata["uid"] = self.uid
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        spec = obj.setdefault("spec", {})
        spec["selector"] = copy.deepcopy(self.selector)
        template_meta = spec.setdefault("template", {}).setdefault("spec", {}).setdefault("metadata", {})
        if self.template_labels is None:
            template_meta.pop("labels", None)
        else:
            template_meta["labels"] = dict(self.template_labels)
        return obj


@dataclass
class Machine:
    """
    A Machine and the labels it asks to be placed on its Node.

    `labels` is spec.metadata.labels, the LabelSet propagated from the MachineSet.
    `selector_labels` is metadata.labels, only used to match MachineSet selectors.
    """

    namespace: str
    name: str
    uid: str | None = None
    labels: dict[str, str] | None = None
    annotations: dict[str, str] | None = None
    selector_labels: dict[str, str] = field(default_factory=dict)
    node_name: str | None = None
    owner_uid: str | None = None
    resource_version: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    kind = ObjectKind.MACHINE

    @property
    def key(self) -> str:
        return object_key(self.namespace, self.name)

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "Machine":
        metadata = obj.get("metadata") or {}
        return cls(
            namespace=metadata.get("namespace"),
            name=metadata.get("name"),
            uid=metadata.get("uid"),
            labels=_dig(obj, "spec", "metadata", "labels"),
            annotations=metadata.get("annotations"),
            selector_labels=metadata.get("labels") or {},
            node_name=_dig(obj, "status", "nodeRef", "name"),
            owner_uid=_controller_uid(metadata),
            resource_version=metadata.get("resourceVersion"),
            raw=copy.deepcopy(obj),
        )

    def to_dict(self) -> dict[str, Any]:
        obj = copy.deepcopy(self.raw)
        metadata = obj.setdefault("metadata", {})
        metadata.update({"namespace": self.namespace, "name": self.name})
        if self.uid:
            metadata["uid"] = self.uid
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        if self.selector_labels:
            metadata["labels"] = dict(self.selector_labels)
        if self.annotations is not None:
            metadata["annotations"] = dict(self.annotations)
        if self.owner_uid and not metadata.get("ownerReferences"):
            metadata["ownerReferences"] = [{"kind": "MachineSet", "uid": self.owner_uid, "controller": True}]
        spec_meta = obj.setdefault("spec", {}).setdefault("metadata", {})
        if self.labels is not None:
            spec_meta["labels"] = dict(self.labels)
        if self.node_name:
            obj.setdefault("status", {})["nodeRef"] = {"kind": "Node", "name": self.node_name}
        return obj


@dataclass
class Node:
    name: str
    labels: dict[str, str] | None = None
    annotations: dict[str, str] | None = None
    resource_version: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    kind = ObjectKind.NODE

    @property
    def namespace(self) -> None:
        return None

    @property
    def key(self) -> str:
        return self.name

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> "Node":
        metadata = obj.get("metadata") or {}
        return cls(
            name=metadata.get("name"),
            labels=metadata.get("labels"),
            annotations=metadata.get("annotations"),
            resource_version=metadata.get("resourceVersion"),
            raw=copy.deepcopy(obj),
        )

    def to_dict(self) -> dict[str, Any]:
        obj = copy.deepcopy(self.raw)
        metadata = obj.setdefault("metadata", {})
        metadata["name"] = self.name
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        if self.labels is not None:
            metadata["labels"] = dict(self.labels)
        if self.annotations is not None:
            metadata["annotations"] = dict(self.annotations)
        return obj


RECORD_TYPES = {
    ObjectKind.MACHINE_SET: MachineSet,
    ObjectKind.MACHINE: Machine,
    ObjectKind.NODE: Node,
}
