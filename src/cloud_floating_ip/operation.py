"""
Blocking wait for asynchronous provider operations.

GCE route inserts and deletes return an Operation resource immediately; the
route only exists (or is gone) once the operation reaches DONE. The waiter
polls the operation at a fixed interval up to a fixed number of attempts.
It never retries the operation itself: the three outcomes (done, error,
timeout) are reported to the caller which decides what to do.
"""

import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from .structured_events import StructuredEventLogger

logger = logging.getLogger(os.getenv("LOGGER_NAME", "CLOUD_FLOATING_IP"))

POLL_INTERVAL_SECONDS = 1.0
MAX_POLL_ATTEMPTS = 120
DONE_STATUS = "DONE"


class WaitOutcome(Enum):
    DONE = "done"
    ERROR = "error"
    TIMEOUT = "timeout"


@dataclass
class WaitResult:
    outcome: WaitOutcome
    operation: str
    attempts: int
    error: Optional[Any] = None


def wait_for_operation(fetch: Callable[[], Dict[str, Any]],
                       operation: str,
                       interval: float = POLL_INTERVAL_SECONDS,
                       max_attempts: int = MAX_POLL_ATTEMPTS,
                       sleep: Callable[[float], None] = time.sleep,
                       structured_logger: Optional[StructuredEventLogger] = None) -> WaitResult:
    """
    Poll an operation until it is done, failed, or the attempt bound is hit.

    Args:
        fetch: Returns the current operation resource as a dict with at least
            'status' and, on failure, 'error'. Exceptions raised by fetch
            propagate unchanged.
        operation: Operation name, for logs and the result.
        interval: Seconds to sleep between polls.
        max_attempts: Number of polls before giving up.
        sleep: Sleep function, replaceable in tests.
        structured_logger: Optional structured event logger.

    Returns:
        WaitResult: DONE, ERROR (with the provider's error payload) or TIMEOUT.
    """
    start_time = time.time()
    result = None

    for attempt in range(1, max_attempts + 1):
        current = fetch()

        # A failed GCE operation is reported as DONE with an error payload
        if current.get('error'):
            result = WaitResult(WaitOutcome.ERROR, operation, attempt, current['error'])
            break

        if current.get('status') == DONE_STATUS:
            result = WaitResult(WaitOutcome.DONE, operation, attempt)
            break

        logger.debug(f"Operation {operation} is {current.get('status', 'UNKNOWN')} "
                     f"(attempt {attempt}/{max_attempts})")
        if attempt < max_attempts:
            sleep(interval)

    if result is None:
        result = WaitResult(WaitOutcome.TIMEOUT, operation, max_attempts)

    if structured_logger:
        structured_logger.log_operation_wait(
            operation=operation,
            outcome=result.outcome.value,
            attempts=result.attempts,
            duration_ms=int((time.time() - start_time) * 1000),
            error_message=None if result.error is None else str(result.error),
        )

    return result
