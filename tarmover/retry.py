"""Retry logic with backoff for whole transfer jobs.

The transfer engine never retries a part on its own: a failed part fails the
job. This module is the calling layer that may re-run a job, from scratch,
when the failure looks transient. Upload jobs must build a fresh tar stream
on every attempt since a stream cannot be rewound.

Transient (Retryable):
- Connection errors and timeouts (botocore or httpx)
- Server errors (5xx)
- Rate limiting (429, SlowDown)
- Short response bodies

Permanent (Not Retryable):
- Missing objects or invalid ranges (NotFound)
- Local file errors (LocalIOError)
- Configuration errors
- Client errors (4xx except 429)
"""

import logging
import time
from typing import Any, Callable, Optional, Sequence

import httpx
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from tarmover.errors import TransferError, error_code, status_code

logger = logging.getLogger(__name__)

# HTTP status codes that indicate transient server issues
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

# S3 error codes that indicate transient server issues
RETRYABLE_ERROR_CODES = {"SlowDown", "RequestTimeout", "InternalError", "ServiceUnavailable"}


class RetryExhausted(Exception):
    """Raised when all retry attempts have been exhausted."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


def is_retryable_error(error: BaseException) -> bool:
    """Determine if an error is transient and worth retrying.

    TransferError is classified by its cause; one raised without a cause
    (a short body) is treated as transient.

    Args:
        error: The exception that was raised.

    Returns:
        True if the error is transient and should trigger a retry,
        False if the error is permanent and retrying won't help.
    """
    if isinstance(error, TransferError):
        if error.__cause__ is None:
            return True
        return is_retryable_error(error.__cause__)

    # Network-level errors are transient
    if isinstance(error, (httpx.ConnectError, httpx.ConnectTimeout, httpx.ReadTimeout)):
        return True
    if isinstance(
        error,
        (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError, ConnectionClosedError),
    ):
        return True

    # HTTP status errors need case-by-case handling
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES
    if isinstance(error, ClientError):
        return (
            status_code(error) in RETRYABLE_STATUS_CODES
            or error_code(error) in RETRYABLE_ERROR_CODES
        )

    # All other errors are not retryable by default
    return False


def retry_with_backoff(
    func: Callable[..., Any],
    max_attempts: int = 3,
    delays: Sequence[float] = (5.0, 15.0, 30.0),
    args: tuple = (),
    kwargs: Optional[dict] = None,
) -> Any:
    """Execute a function with retry logic and backoff.

    Args:
        func: The function to execute.
        max_attempts: Maximum number of attempts (including first try).
        delays: Sequence of delay times (seconds) between retries.
                delays[0] is used after first failure, etc.
        args: Positional arguments to pass to func.
        kwargs: Keyword arguments to pass to func.

    Returns:
        The return value of func if successful.

    Raises:
        RetryExhausted: If all attempts fail with retryable errors.
        Exception: If a non-retryable error occurs, it's raised immediately.
            With max_attempts=1 the first error is always raised as-is.

    Example:
        >>> result = retry_with_backoff(
        ...     runner.upload,
        ...     max_attempts=3,
        ...     delays=[5, 15, 30],
        ...     args=(paths, bucket, key),
        ... )
    """
    if kwargs is None:
        kwargs = {}

    last_error: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            last_error = e

            # Check if this error is worth retrying
            if max_attempts <= 1 or not is_retryable_error(e):
                # Permanent error - raise immediately
                raise

            # If we've exhausted all attempts, give up
            if attempt >= max_attempts:
                raise RetryExhausted(
                    f"Operation failed after {max_attempts} attempts",
                    attempts=max_attempts,
                    last_error=last_error,
                ) from last_error

            # Wait before retrying
            delay_index = min(attempt - 1, len(delays) - 1)
            delay = delays[delay_index]
            logger.warning("Attempt %d/%d failed (%s), retrying in %.0fs", attempt, max_attempts, e, delay)
            time.sleep(delay)

    # This should never be reached, but just in case
    raise RetryExhausted(
        f"Operation failed after {max_attempts} attempts",
        attempts=max_attempts,
        last_error=last_error,
    )
