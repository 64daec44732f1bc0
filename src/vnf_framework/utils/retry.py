"""Retry helpers with exponential backoff and jitter."""
import logging
from typing import Callable

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ..errors import CommError

logger = logging.getLogger(__name__)


def is_retriable(exc: BaseException) -> bool:
    """Only CommErrors explicitly marked retriable are retried."""
    return isinstance(exc, CommError) and exc.retriable


def backoff_retrying(
    max_attempts: int,
    initial: float = 1.0,
    maximum: float = 10.0,
    jitter: float = 1.0,
    predicate: Callable[[BaseException], bool] = is_retriable,
) -> AsyncRetrying:
    """Build an AsyncRetrying controller.

    Waits are real ``asyncio.sleep`` calls between sequential attempts.

    Args:
        max_attempts: Total attempts including the first one
        initial: First backoff interval (seconds)
        maximum: Upper bound for the exponential part of a wait (seconds)
        jitter: Random extra wait added to each interval (seconds)
        predicate: Decides which exceptions are retried
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=initial, max=maximum) + wait_random(0, jitter),
        retry=retry_if_exception(predicate),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
