"""
kubernetes.py
- ObjectStore backed by the Kubernetes API.
- MachineSets and Machines are custom objects of the Machine API group; Nodes are core objects.
- Writes are full-object replaces carrying the read resourceVersion, so a concurrent
  modification surfaces as a 409 and is mapped to UpdateConflict.
- Transient read errors (429 / 5xx) are retried here with tenacity; writes are not.
"""

from kubernetes import watch
from kubernetes.client.rest import ApiException
from loguru import logger
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from node_metadata.core.constants import (
    MACHINE_API_GROUP,
    MACHINE_API_VERSION,
    MACHINE_PLURAL,
    MACHINESET_PLURAL,
)
from node_metadata.core.errors import (
    FetchFailure,
    ListFailure,
    NotFoundError,
    UpdateConflict,
    UpdateFailure,
)
from node_metadata.core.objects import RECORD_TYPES, ObjectKind, object_key
from node_metadata.lib.store.base import ObjectStore

PLURALS = {
    ObjectKind.MACHINE_SET: MACHINESET_PLURAL,
    ObjectKind.MACHINE: MACHINE_PLURAL,
}


def is_transient(exception):
    """429 Too Many Requests and server-side errors are worth another attempt."""
    return isinstance(exception, ApiException) and (exception.status == 429 or (exception.status or 0) >= 500)


def label_selector(match_labels):
    """Render a matchLabels mapping as a Kubernetes label selector string."""
    return ",".join(f"{k}={v}" for k, v in sorted((match_labels or {}).items())) or None


transient_retry = retry(
    reraise=True,
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    retry=retry_if_exception(is_transient),
)


class KubernetesStore(ObjectStore):
    def __init__(self, custom_api, core_api):
        self.custom_api = custom_api
        self.core_api = core_api

    # --- Raw API calls ---
    @transient_retry
    def _read(self, kind, name, namespace):
        if kind == ObjectKind.NODE:
            node = self.core_api.read_node(name)
            return self.core_api.api_client.sanitize_for_serialization(node)
        return self.custom_api.get_namespaced_custom_object(
            MACHINE_API_GROUP, MACHINE_API_VERSION, namespace, PLURALS[kind], name
        )

    @transient_retry
    def _list(self, kind, namespace, selector):
        kwargs = {"label_selector": selector} if selector else {}
        if kind == ObjectKind.NODE:
            nodes = self.core_api.list_node(**kwargs)
            return self.core_api.api_client.sanitize_for_serialization(nodes).get("items", [])
        if namespace:
            result = self.custom_api.list_namespaced_custom_object(
                MACHINE_API_GROUP, MACHINE_API_VERSION, namespace, PLURALS[kind], **kwargs
            )
        else:
            result = self.custom_api.list_cluster_custom_object(
                MACHINE_API_GROUP, MACHINE_API_VERSION, PLURALS[kind], **kwargs
            )
        return result.get("items", [])

    # --- ObjectStore ---
    def get(self, kind, name, namespace=None):
        key = object_key(namespace, name)
        try:
            raw = self._read(kind, name, namespace)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"{kind.value} {key} not found", ref=(kind, namespace, name)) from e
            raise FetchFailure(f"Failed to fetch {kind.value} {key}: {e.status} {e.reason}", ref=(kind, namespace, name)) from e
        return RECORD_TYPES[kind].from_dict(raw)

    def list(self, kind, namespace=None, match_labels=None):
        try:
            items = self._list(kind, namespace, label_selector(match_labels))
        except ApiException as e:
            raise ListFailure(f"Failed to list {kind.value} in {namespace or 'all namespaces'}: {e.status} {e.reason}") from e
        return [RECORD_TYPES[kind].from_dict(item) for item in items]

    def update_labels(self, obj):
        ident = (obj.kind, obj.namespace, obj.name)
        body = obj.to_dict()
        try:
            if obj.kind == ObjectKind.NODE:
                result = self.core_api.replace_node(obj.name, body)
                result = self.core_api.api_client.sanitize_for_serialization(result)
            else:
                result = self.custom_api.replace_namespaced_custom_object(
                    MACHINE_API_GROUP, MACHINE_API_VERSION, obj.namespace, PLURALS[obj.kind], obj.name, body
                )
        except ApiException as e:
            if e.status == 409:
                raise UpdateConflict(f"{obj.kind.value} {obj.key} was modified concurrently", ref=ident) from e
            if e.status == 404:
                raise UpdateFailure(f"{obj.kind.value} {obj.key} no longer exists", ref=ident) from e
            raise UpdateFailure(f"Failed to update {obj.kind.value} {obj.key}: {e.status} {e.reason}", ref=ident) from e

        obj.resource_version = (result or {}).get("metadata", {}).get("resourceVersion", obj.resource_version)
        logger.debug(f"[store] Replaced {obj.kind.value} {obj.key} (resourceVersion={obj.resource_version})")

    # --- Event delivery ---
    def watch_machine_set_keys(self, namespace, stop_event=None, timeout_seconds=300):
        """
        Yield the key of every MachineSet that is added or modified in a namespace.

        The underlying stream is re-opened when the server closes it; returns once stop_event is set.
        """
        while stop_event is None or not stop_event.is_set():
            w = watch.Watch()
            try:
                for event in w.stream(
                    self.custom_api.list_namespaced_custom_object,
                    MACHINE_API_GROUP,
                    MACHINE_API_VERSION,
                    namespace,
                    MACHINESET_PLURAL,
                    timeout_seconds=timeout_seconds,
                ):
                    if stop_event is not None and stop_event.is_set():
                        break
                    if event.get("type") == "DELETED":
                        continue
                    metadata = (event.get("object") or {}).get("metadata") or {}
                    yield object_key(metadata.get("namespace"), metadata.get("name"))
            except ApiException as e:
                if e.status == 410:
                    logger.debug(f"[store] Watch on {namespace} expired, restarting.")
                    continue
                raise ListFailure(f"Watch on MachineSets in {namespace} failed: {e.status} {e.reason}") from e
            finally:
                w.stop()
