# storefront/utils/retry.py
import asyncio
import logging
import random
from typing import Awaitable, Callable

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from storefront.domain.errors import NetworkError, ServerError
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class wait_jittered(wait_base):
    """Adds up to `ratio` of the wrapped delay as random jitter."""

    def __init__(self, wait: wait_base, ratio: float = 0.1):
        self.wait = wait
        self.ratio = ratio

    def __call__(self, retry_state) -> float:
        delay = self.wait(retry_state)
        return delay + random.uniform(0, self.ratio * delay)


def is_retryable(exc: BaseException) -> bool:
    #5xx, timeouts and dropped connections only
    return isinstance(exc, (NetworkError, ServerError))


def http_retry(
    attempts: int = 3,
    base_delay: float = 1.0,
    jitter: float = 0.1,
    sleep: Sleep = asyncio.sleep,
) -> AsyncRetrying:
    # delay: base, 2*base, 4*base ... + jitter
    return AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_jittered(wait_exponential(multiplier=base_delay, exp_base=2), jitter),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
    )


def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
    )
