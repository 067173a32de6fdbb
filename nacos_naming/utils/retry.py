"""Exponential-backoff retry for registry calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from nacos_naming.constants import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_BASE_SECONDS, DEFAULT_RETRY_CAP_SECONDS
from nacos_naming.errors import RegistryRequestError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay doubles from `base` up to `cap`; at most `max_attempts` calls in total."""

    base: float = DEFAULT_RETRY_BASE_SECONDS
    cap: float = DEFAULT_RETRY_CAP_SECONDS
    max_attempts: int = DEFAULT_MAX_RETRIES
    retry_on: tuple[type[BaseException], ...] = (RegistryRequestError,)

    def delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return min(self.cap, self.base * 2 ** (attempt - 1))


async def call_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """Run `operation`, retrying exceptions in policy.retry_on.

    Other exceptions propagate immediately. After the last attempt the
    final exception is re-raised unchanged.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(multiplier=policy.base, max=policy.cap),
        retry=retry_if_exception_type(policy.retry_on),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )
    return await retrying(operation)
