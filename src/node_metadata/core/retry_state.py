'''
retry_state.py
- In-memory retry tracking for MachineSets whose last reconciliation pass failed.
- Centralized logic for retry cooldowns, backoff, and reset conditions.
'''

import time
from collections import defaultdict
from threading import Lock

from node_metadata.core.constants import DEFAULT_RETRY_INTERVALS

# Tracks {machineset_key: {failures: int, last_attempt: float_timestamp}}
retry_state = defaultdict(lambda: {"failures": 0, "last_attempt": 0})
_lock = Lock()


def should_retry(key, retry_intervals=DEFAULT_RETRY_INTERVALS):
    """
    Determine whether enough time has passed to retry a failed MachineSet pass.

    Args:
        key (str): The MachineSet key (namespace/name).
        retry_intervals (list[int]): Cooldown values in seconds per failure count.

    Returns:
        bool: True if retry is permitted, False otherwise.
    """
    with _lock:
        if key not in retry_state:
            return True
        state = retry_state[key]
        failures = state["failures"]
        last = state["last_attempt"]
    delay = retry_intervals[min(max(failures - 1, 0), len(retry_intervals) - 1)]
    return time.time() - last >= delay


def record_retry(key):
    """
    Increment failure count and record the attempt timestamp for a MachineSet.
    """
    with _lock:
        retry_state[key]["failures"] += 1
        retry_state[key]["last_attempt"] = time.time()


def clear_retry(key):
    """
    Reset the retry state for a MachineSet (e.g. after a successful pass).
    """
    with _lock:
        retry_state.pop(key, None)


def pending_retries():
    """Keys that currently have a recorded failure."""
    with _lock:
        return sorted(retry_state)
