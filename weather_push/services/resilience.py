"""Bounded retry and deadline helper for calls to external services."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from weather_push.services.errors import UpstreamTransient

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    retry_on: type[BaseException] | tuple[type[BaseException], ...],
    deadline: float | None = None,
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` with exponential backoff inside an overall deadline.

    Only exceptions matching ``retry_on`` are retried. The delay before retry
    ``n`` is ``base_delay * 2 ** (n - 1)``. When retries are exhausted the last
    exception is re-raised unchanged; when the deadline passes first an
    ``UpstreamTransient`` is raised instead.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        attempts: Total number of attempts, including the first
        base_delay: Delay in seconds before the first retry
        retry_on: Exception type(s) considered transient
        deadline: Seconds allowed for all attempts and backoff, or None
        description: Label used in log messages
        sleep: Coroutine used for backoff (injectable for tests)

    Returns:
        The operation's result
    """

    async def run() -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=base_delay, exp_base=2),
            retry=retry_if_exception_type(retry_on),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await operation()
        raise AssertionError("unreachable")  # pragma: no cover

    if deadline is None:
        return await run()

    try:
        async with asyncio.timeout(deadline):
            return await run()
    except TimeoutError as e:
        logger.warning(f"{description} exceeded its {deadline}s deadline")
        raise UpstreamTransient(f"{description} timed out after {deadline}s") from e
