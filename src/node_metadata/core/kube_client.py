"""
kube_client.py
- Builds the shared Kubernetes API clients used by the store and the event watcher.
- Loads in-cluster credentials when IN_CLUSTER is set, the local kubeconfig otherwise.
"""

from kubernetes import client, config as k8s_config
from loguru import logger

from node_metadata.core.config import IN_CLUSTER

_clients = None


def init_kubernetes_client(in_cluster=IN_CLUSTER, force_reload=False):
    """
    Initialize the Kubernetes API clients once per process.

    Args:
        in_cluster (bool): Use the service account mounted into the pod.
        force_reload (bool): Reload credentials even if clients already exist.

    Returns:
        tuple: (CustomObjectsApi, CoreV1Api)
    """
    global _clients
    if _clients is not None and not force_reload:
        return _clients

    if in_cluster:
        k8s_config.load_incluster_config()
        logger.info("[kube] Loaded in-cluster Kubernetes configuration")
    else:
        k8s_config.load_kube_config()
        logger.info(f"[kube] Loaded kubeconfig from local system{' (refreshed)' if force_reload else ''}")

    _clients = (client.CustomObjectsApi(), client.CoreV1Api())
    return _clients
