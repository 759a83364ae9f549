"""
Retry utilities for directory connections.

The sync engine itself never retries. Connection establishment in the
directory client does, through retry_directory_call: ldap3 errors are retried
with a fixed or growing wait, and exhausting the attempts is reported as
DirectoryUnavailable.
"""

import time
import logging
from typing import Callable, Any, Tuple, Type, Optional

from ldap3.core.exceptions import LDAPException

from ldap_member_sync.exceptions import DirectoryUnavailable

logger = logging.getLogger(__name__)


class MaxRetriesExceeded(Exception):
    """Raised when every attempt of a retried call failed."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def retry_call(func: Callable[[], Any],
               max_attempts: int = 3,
               delay: float = 1.0,
               backoff: float = 1.0,
               exceptions: Tuple[Type[Exception], ...] = (Exception,),
               on_retry: Optional[Callable[[int, Exception], None]] = None) -> Any:
    """
    Call func until it returns or max_attempts calls have failed.

    Only exceptions listed in `exceptions` are retried; anything else
    propagates from the failing attempt. At least one attempt is made.

    Raises:
        MaxRetriesExceeded: If every attempt raised a listed exception
    """
    attempts = max(1, max_attempts)
    wait = delay

    for attempt in range(1, attempts + 1):
        try:
            result = func()
        except exceptions as e:
            if attempt == attempts:
                raise MaxRetriesExceeded(attempts, e)
            logger.debug(f"Attempt {attempt} of {attempts} failed with {type(e).__name__}: {e}")
            if on_retry:
                try:
                    on_retry(attempt, e)
                except Exception as callback_error:
                    logger.warning(f"Retry callback failed: {callback_error}")
            time.sleep(wait)
            wait *= backoff
        else:
            if attempt > 1:
                logger.info(f"Operation succeeded on attempt {attempt}")
            return result


def create_retry_callback(operation_name: str) -> Callable[[int, Exception], None]:
    """Return an on_retry callback that logs each failed attempt as a warning."""
    def on_retry(attempt: int, exception: Exception):
        logger.warning(f"{operation_name} failed on attempt {attempt}, "
                       f"retrying due to {type(exception).__name__}: {exception}")

    return on_retry


def retry_directory_call(func: Callable[[], Any], operation_name: str,
                         max_attempts: int = 3, delay: float = 1.0,
                         backoff: float = 1.0) -> Any:
    """
    Retry a directory call on ldap3 errors.

    Args:
        func: Zero-argument callable talking to the directory
        operation_name: Name used in log messages and the raised error
        max_attempts: Maximum number of attempts
        delay: Seconds to wait before the second attempt
        backoff: Multiplier applied to the wait after each failure

    Raises:
        DirectoryUnavailable: If every attempt failed with an ldap3 error
    """
    try:
        return retry_call(func, max_attempts=max_attempts, delay=delay, backoff=backoff,
                          exceptions=(LDAPException,),
                          on_retry=create_retry_callback(operation_name))
    except MaxRetriesExceeded as e:
        raise DirectoryUnavailable(
            f"{operation_name} failed after {e.attempts} attempts: {e.last_exception}"
        ) from e.last_exception
