"""Retry policy for remote store calls."""

import logging

import httpx
import structlog
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.stdlib.get_logger(__name__)

TRANSIENT_ERRORS = (httpx.TransportError,)


def remote_retry(
    max_attempts: int = 2,
    min_wait: float = 0.5,
    max_wait: float = 5.0,
    exceptions: tuple = TRANSIENT_ERRORS,
):
    """Short in-call retry for transient transport failures.

    Longer outages are handled by the sync queue's own backoff, so this only
    smooths over a dropped connection or a brief timeout.

    Args:
        max_attempts: Max attempts per call
        min_wait: Min wait between attempts (seconds)
        max_wait: Max wait between attempts (seconds)
        exceptions: Exception types to retry on
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
