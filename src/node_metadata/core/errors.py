"""
errors.py
- Error kinds produced while reading and writing MachineSets, Machines and Nodes.
- NotFound and unresolved Nodes are handled locally; every other kind fails the pass.
"""

from enum import Enum


class ErrorKind(Enum):
    NOT_FOUND = "not_found"
    FETCH_FAILURE = "fetch_failure"
    LIST_FAILURE = "list_failure"
    RESOLUTION_UNAVAILABLE = "resolution_unavailable"
    UPDATE_CONFLICT = "update_conflict"
    UPDATE_FAILURE = "update_failure"
    INVALID_KEY = "invalid_key"
    CANCELLED = "cancelled"


class PropagationError(Exception):
    """Base class for failures surfaced by a store or a reconciliation pass."""

    kind = ErrorKind.FETCH_FAILURE

    def __init__(self, message, ref=None):
        super().__init__(message)
        self.ref = ref


class NotFoundError(PropagationError):
    kind = ErrorKind.NOT_FOUND


class FetchFailure(PropagationError):
    kind = ErrorKind.FETCH_FAILURE


class ListFailure(PropagationError):
    kind = ErrorKind.LIST_FAILURE


class UpdateConflict(PropagationError):
    """The target changed since it was read; retrying the pass re-reads it."""

    kind = ErrorKind.UPDATE_CONFLICT


class UpdateFailure(PropagationError):
    kind = ErrorKind.UPDATE_FAILURE


class PassCancelled(PropagationError):
    kind = ErrorKind.CANCELLED


class InvalidKey(PropagationError):
    """A MachineSet reference that is not `namespace/name`."""

    kind = ErrorKind.INVALID_KEY
