"""
node_lookup.py
- Resolves the Node backing a Machine through the Machine's status.nodeRef.
- A Machine that is not provisioned yet, or whose Node has vanished, is unresolved, not an error.
"""

from loguru import logger

from node_metadata.core.errors import NotFoundError
from node_metadata.core.objects import ObjectKind


def get_node_for_machine(store, machine):
    """
    Return the Node for `machine`, or None if it cannot be resolved yet.

    Raises:
        FetchFailure: The Node lookup failed for a reason other than absence.
    """
    if not machine.node_name:
        logger.debug(f"[node_lookup] {machine.key} has no nodeRef yet.")
        return None

    try:
        return store.get(ObjectKind.NODE, machine.node_name)
    except NotFoundError:
        logger.warning(f"[node_lookup] {machine.key} references node {machine.node_name}, which does not exist.")
        return None
