"""
waiters.py
- Bounded polling helper: re-fetch a collection until a check holds for every item.
- Fixed interval, a fixed number of attempts derived from the timeout, and a
  ConvergenceTimeout naming the last item that failed.
"""

import time

from loguru import logger
from tenacity import RetryError, Retrying, retry_if_result, stop_after_attempt, wait_fixed

from node_metadata.core.constants import MAX_WAIT_TIME, POLL_INTERVAL


class ConvergenceTimeout(Exception):
    def __init__(self, message, last_failure=None):
        super().__init__(message)
        self.last_failure = last_failure


def first_failure(items, check):
    """Return the first non-None result of check(item), or None when all items pass."""
    for item in items:
        failure = check(item)
        if failure is not None:
            return failure
    return None


def wait_until_all(fetch, check, timeout=MAX_WAIT_TIME, interval=POLL_INTERVAL, description="condition", sleep=time.sleep):
    """
    Poll until check(item) returns None for every item produced by fetch().

    Args:
        fetch (Callable[[], Iterable]): Re-reads the collection on each attempt.
        check (Callable[[Any], str | None]): Returns a failure description, or None if the item is fine.
        timeout (float): Total time budget in seconds.
        interval (float): Seconds between attempts.
        description (str): Used in log lines and the timeout message.
        sleep (Callable[[float], None]): Injected for tests.

    Raises:
        ConvergenceTimeout: The condition did not hold within the budget.
    """
    attempts = max(1, int(timeout / interval)) if interval > 0 else 1
    last = {"failure": None}

    def attempt():
        failure = first_failure(fetch(), check)
        last["failure"] = failure
        if failure is not None:
            logger.debug(f"[wait] {description}: waiting on {failure}")
        return failure

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda failure: failure is not None),
        sleep=sleep,
    )
    try:
        retrying(attempt)
    except RetryError:
        raise ConvergenceTimeout(
            f"{description} did not hold after {timeout}s on {last['failure']}",
            last_failure=last["failure"],
        ) from None
    logger.info(f"[wait] {description} holds.")
