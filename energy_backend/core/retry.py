from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    timeout: float | None = None,
    delay: float = 0.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    name: str = "operation",
) -> T:
    """Run ``operation`` up to ``attempts`` times.

    Each attempt is bounded by ``timeout`` seconds (``asyncio.TimeoutError`` is
    always retried). ``delay`` seconds are slept between attempts. The last
    error is re-raised once the attempts are exhausted.
    """

    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    retryable = (asyncio.TimeoutError, *retry_on)
    last_exc: BaseException | None = None
    for attempt in range(1, attempts + 1):
        try:
            if timeout is None:
                return await operation()
            return await asyncio.wait_for(operation(), timeout)
        except retryable as exc:
            last_exc = exc
            logger.warning(
                "%s failed",
                name,
                extra={"attempt": attempt, "attempts": attempts, "error": repr(exc)},
            )
            if attempt < attempts and delay > 0:
                await asyncio.sleep(delay)

    assert last_exc is not None
    raise last_exc
