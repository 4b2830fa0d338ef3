"""
Retry utilities for opening the backend stream.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

from ragpipe.orchestrator.errors import BackendRequestError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP statuses that represent transient backend conditions worth retrying.
# Everything else (bad request, auth, missing table, ...) is permanent.
_TRANSIENT_STATUSES: frozenset[int] = frozenset({429, 502, 503, 504})


def is_transient_http_error(exception: Exception) -> bool:
    """Check whether an error raised while opening the stream is worth retrying.

    Connection failures and timeouts are transient. A refused request is
    transient only for rate limiting and gateway/unavailable statuses.
    """
    if isinstance(exception, httpx.TransportError):
        return True
    if isinstance(exception, BackendRequestError):
        return exception.status_code in _TRANSIENT_STATUSES
    return False


async def run_with_retry(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
) -> T:
    """
    Execute an async function, retrying transient HTTP errors.

    Args:
        func: Async function to execute (no parameters)
        max_retries: Maximum number of attempts
        initial_delay: Delay in seconds before the first retry
        backoff_factor: Multiplier for delay between retries

    Returns:
        Result from the function

    Raises:
        Exception: The last error once retries are exhausted, or any
            non-retryable error immediately
    """
    attempts = max(1, max_retries)

    for attempt in range(attempts):
        try:
            return await func()
        except Exception as e:
            if not is_transient_http_error(e) or attempt >= attempts - 1:
                raise

            wait_time_match = re.search(r"(\d+)\s{0,10}seconds?", str(e), re.IGNORECASE)
            if wait_time_match:
                wait_time = float(wait_time_match.group(1))
            else:
                wait_time = initial_delay * (backoff_factor**attempt)

            logger.warning(
                "Transient backend error (%s). Attempt %s/%s. Waiting %.1f seconds before retry...",
                e,
                attempt + 1,
                attempts,
                wait_time,
            )
            await asyncio.sleep(wait_time)

    raise RuntimeError("unreachable: retry loop exited without result")
