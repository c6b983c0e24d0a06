import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from pydantic import BaseModel, Field

from plantdx.domain.errors import ProviderCallError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    max_attempts: int = Field(3, ge=1)
    base_delay_s: float = Field(1.0, ge=0.0)
    jitter: float = Field(0.1, ge=0.0)

    def delay_after(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """Backoff to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.base_delay_s * (2 ** (attempt - 1))
        if self.jitter:
            delay *= 1.0 + rand() * self.jitter
        return delay


class RetryExecutor:
    """Runs a blocking provider call on a worker thread with retries.

    Each attempt is bounded by ``timeout_s``; a timed-out attempt counts as a
    retryable failure. Non-retryable ProviderCallErrors and any other
    exception surface on the attempt that raised them.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rand = rand

    async def call(self, provider: str, fn: Callable[[], T], timeout_s: float) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await asyncio.wait_for(asyncio.to_thread(fn), timeout=timeout_s)
            except asyncio.TimeoutError:
                error = ProviderCallError(provider, f"timed out after {timeout_s:g}s", retryable=True)
            except ProviderCallError as exc:
                error = exc

            error.attempts = attempt
            if not error.retryable:
                logger.warning("Provider %s failed with non-retryable error: %s", provider, error.message)
                raise error
            if attempt >= self.policy.max_attempts:
                logger.error("Provider %s failed after %d attempts: %s", provider, attempt, error.message)
                raise error

            delay = self.policy.delay_after(attempt, self._rand)
            logger.warning(
                "Provider %s attempt %d failed, retrying in %.2fs: %s",
                provider, attempt, delay, error.message,
            )
            await self._sleep(delay)
