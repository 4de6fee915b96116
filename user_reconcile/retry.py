"""
Retry utilities for handling transient failures.

Used at the directory connection boundary; the reconciliation pass itself
never retries.
"""

import time
import logging
from typing import Callable, Any, Tuple, Type, Optional

logger = logging.getLogger(__name__)

TRANSIENT_PATTERNS = (
    'timeout',
    'timed out',
    'connection reset',
    'connection refused',
    'network is unreachable',
    'temporary failure',
    'unavailable',
    'busy',
)


class MaxRetriesExceeded(Exception):
    """Raised when maximum retry attempts are exceeded."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: dict = None,
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception], None]] = None,
    retry_if: Optional[Callable[[Exception], bool]] = None
) -> Any:
    """
    Call a function, retrying on the given exception types.

    Args:
        func: Function to call
        args: Positional arguments for function
        kwargs: Keyword arguments for function
        max_attempts: Maximum number of attempts, including the first call
        delay: Seconds to wait before the first retry
        backoff: Multiplier applied to the delay after each retry
        exceptions: Exception types that trigger a retry; others propagate immediately
        on_retry: Optional callback invoked with (attempt, exception) before each retry
        retry_if: Optional predicate; a caught exception it rejects is re-raised at once

    Returns:
        Function result

    Raises:
        MaxRetriesExceeded: If every attempt fails
    """
    if kwargs is None:
        kwargs = {}

    last_exception = None
    current_delay = delay

    for attempt in range(1, max_attempts + 1):
        try:
            result = func(*args, **kwargs)
            if attempt > 1:
                logger.info(f"Operation succeeded on attempt {attempt}")
            return result

        except exceptions as e:
            last_exception = e

            if retry_if is not None and not retry_if(e):
                raise

            if attempt == max_attempts:
                break

            logger.debug(f"Attempt {attempt} failed with {type(e).__name__}: {e}, "
                         f"retrying in {current_delay:.1f} seconds")

            if on_retry:
                on_retry(attempt, e)

            time.sleep(current_delay)
            current_delay *= backoff

    raise MaxRetriesExceeded(max_attempts, last_exception)


def is_retryable_error(exception: Exception) -> bool:
    """
    Determine if an exception looks like a transient failure.

    Args:
        exception: Exception to check
    """
    if isinstance(exception, (ConnectionError, TimeoutError)):
        return True

    error_msg = str(exception).lower()
    return any(pattern in error_msg for pattern in TRANSIENT_PATTERNS)


def create_retry_callback(operation_name: str) -> Callable[[int, Exception], None]:
    """
    Create a callback that logs retry attempts for an operation.

    Args:
        operation_name: Name of the operation being retried
    """
    def on_retry(attempt: int, exception: Exception):
        logger.warning(f"{operation_name} failed on attempt {attempt}, "
                       f"retrying due to {type(exception).__name__}: {exception}")

    return on_retry
