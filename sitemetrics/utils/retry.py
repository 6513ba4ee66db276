# ==============================================================================
# Connect Retry
# ==============================================================================
"""
Retry policy for backend connection bootstrap.

Only connection establishment is retried (pool creation, client creation).
Metric queries are never retried: their failures propagate to the caller,
who owns any retry or backoff policy.

3 attempts, sleeping 1s then 2s between them.
"""

import logging
from typing import Tuple, Type

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

RETRY_ATTEMPTS_LIGHT = 3
RETRY_WAIT_MIN = 1  # seconds
RETRY_WAIT_MAX = 4  # seconds


def _warn_before_sleep(logger: logging.Logger):
    """Build a before_sleep callback that logs the failed connect attempt."""

    def _log(retry_state: RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Connect attempt %d/%d failed: %s",
            retry_state.attempt_number,
            RETRY_ATTEMPTS_LIGHT,
            exception,
        )

    return _log


def retry_light(exception_types: Tuple[Type[Exception], ...], logger: logging.Logger):
    """
    Decorate a connect function so transient failures are retried.

    Args:
        exception_types: Driver exceptions that mean "server not reachable yet"
        logger: Logger the attempts are reported on

    Anything outside ``exception_types`` is raised on the first attempt, and
    the last failure is re-raised once attempts run out.
    """
    return retry(
        stop=stop_after_attempt(RETRY_ATTEMPTS_LIGHT),
        wait=wait_exponential(multiplier=1, min=RETRY_WAIT_MIN, max=RETRY_WAIT_MAX),
        retry=retry_if_exception_type(exception_types),
        before_sleep=_warn_before_sleep(logger),
        reraise=True,
    )
