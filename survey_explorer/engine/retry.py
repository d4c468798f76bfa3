from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

T = TypeVar("T")


@dataclass
class Succeeded(Generic[T]):
    value: T
    attempts: int


@dataclass
class Exhausted:
    attempts: int
    last_error: Optional[str] = None


RetryResult = Union[Succeeded[T], Exhausted]


async def _sleep_ms(ms: int) -> None:
    await asyncio.sleep(ms / 1000)


async def retry(
    operation: Callable[[int], Awaitable[Optional[T]]],
    max_attempts: int,
    interval_ms: int,
    sleep: Callable[[int], Awaitable[Any]] = _sleep_ms,
    wait_first: bool = False,
) -> RetryResult:
    """Run ``operation(attempt)`` until it returns something other than None.

    Exceptions count as a failed attempt. ``wait_first`` sleeps before every
    attempt instead of only between attempts.
    """

    last_error: Optional[str] = None
    for attempt in range(1, max_attempts + 1):
        if wait_first or attempt > 1:
            await sleep(interval_ms)
        try:
            value = await operation(attempt)
        except Exception as exc:
            last_error = str(exc)
            logging.debug("retry_attempt_failed attempt=%s reason=%s", attempt, exc)
            continue
        if value is not None:
            return Succeeded(value=value, attempts=attempt)
    return Exhausted(attempts=max_attempts, last_error=last_error)
