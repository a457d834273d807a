from __future__ import annotations

"""
Bounded retry with exponential backoff.

`retry_async` never raises the underlying error itself: it returns a
`RetryResult` that is either *succeeded* (carrying the value) or *exhausted*
(carrying the last error and the attempt count). Callers decide what
exhaustion means for them (`StorageUnavailable`, a queued CDN invalidation,
a failed backup target, ...). Cancellation always propagates.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, Tuple, Type, TypeVar

from app.core.metrics import inc_store_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryStatus(str, Enum):
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 0.25
    max_delay: float = 2.0
    jitter: float = 0.1

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("delays must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Backoff before attempt `attempt + 1` (attempt is 1-based)."""
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1))) + random.uniform(0, self.jitter)


@dataclass(frozen=True)
class RetryResult(Generic[T]):
    status: RetryStatus
    attempts: int
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status is RetryStatus.SUCCEEDED


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    operation: str = "operation",
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryResult[T]:
    """Run `fn` up to `policy.attempts` times; see module docstring."""
    last_exc: Optional[BaseException] = None
    for attempt in range(1, policy.attempts + 1):
        try:
            value = await fn()
            return RetryResult(RetryStatus.SUCCEEDED, attempt, value=value)
        except asyncio.CancelledError:
            raise
        except retry_on as e:
            last_exc = e
            if attempt >= policy.attempts:
                break
            delay = policy.delay_for(attempt)
            inc_store_retry(operation)
            logger.warning(
                "%s attempt %s/%s failed: %r (retrying in %.2fs)",
                operation, attempt, policy.attempts, e, delay,
            )
            await sleep(delay)
    logger.error("%s exhausted after %s attempts: %r", operation, policy.attempts, last_exc)
    return RetryResult(RetryStatus.EXHAUSTED, policy.attempts, error=last_exc)


__all__ = ["RetryPolicy", "RetryResult", "RetryStatus", "retry_async"]
