"""Per-call timeouts and retry with exponential backoff and jitter."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from ..core.config import ProvstoreConfig
from ..core.exceptions import RetryBudgetExhausted, TransientNetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE = (TransientNetworkError, TimeoutError)


@dataclass
class RetryPolicy:
    """How many times to try a network call and how long to wait between tries."""

    attempts: int = 3
    base_delay: float = 5.0
    max_delay: float = 60.0
    jitter: float = 0.5
    timeout: float = 30.0

    @classmethod
    def from_config(cls, config: ProvstoreConfig) -> RetryPolicy:
        return cls(
            attempts=config.retry_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            jitter=config.retry_jitter,
            timeout=config.call_timeout,
        )

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        """Backoff before retry number ``attempt`` (0-based), with jitter shaved off."""
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        if self.jitter:
            delay *= 1.0 - self.jitter * (rng or random).random()
        return delay


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    what: str = "call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: random.Random | None = None,
    timeout: float | None = None,
) -> T:
    """Await ``fn()`` with a per-call timeout, retrying transient failures.

    Only TransientNetworkError and timeouts are retried; anything else
    propagates on the first occurrence. When every attempt fails,
    RetryBudgetExhausted is raised with the last error attached.
    """
    per_call = timeout if timeout is not None else policy.timeout
    last_error: BaseException | None = None
    for attempt in range(policy.attempts):
        try:
            return await asyncio.wait_for(fn(), timeout=per_call)
        except RETRYABLE as e:
            last_error = e
            if attempt + 1 >= policy.attempts:
                break
            delay = policy.delay_for(attempt, rng)
            logger.warning(f"{what} failed (attempt {attempt + 1}/{policy.attempts}): {e!r}; retrying in {delay:.2f}s")
            await sleep(delay)
    raise RetryBudgetExhausted(f"{what} failed after {policy.attempts} attempts", policy.attempts, last_error)
