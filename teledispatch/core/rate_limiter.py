"""Outbound call rate limiting with retry.

Every call routed through a RateLimiter is a job:
- Jobs start in submission order, at least `min_time_ms` apart.
- At most `max_concurrent` jobs are in flight at once.
- A failed job asks the limiter for a retry delay. A delay re-runs the same
  job after sleeping (outside its concurrency slot, so newer jobs may get in
  first); no delay means the original exception reaches the caller.

RateLimitedProxy wraps any client object so that each of its callable members
is submitted to a limiter transparently.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from telegram.error import BadRequest, RetryAfter, TelegramError

from teledispatch.constants import (
    DEFAULT_LIMITER_ID,
    DEFAULT_MAX_CONCURRENT,
    DEFAULT_MIN_TIME_MS,
    TELEGRAM_RETRY_DELAY_MS,
    TELEGRAM_RETRY_LIMIT,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Error text that marks a Telegram failure as not worth retrying
_PERMANENT_ERROR_MARKERS = ("bad request", "too many requests", "400", "429")


@dataclass(frozen=True)
class RateLimiterPolicy:
    """Per-limiter pacing and retry settings."""

    min_time_ms: int = DEFAULT_MIN_TIME_MS
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    retry_limit: int = TELEGRAM_RETRY_LIMIT
    retry_delay_ms: int = TELEGRAM_RETRY_DELAY_MS


class RateLimiter:
    """FIFO job scheduler with start spacing, a concurrency cap and retries."""

    def __init__(self, policy: Optional[RateLimiterPolicy] = None, limiter_id: str = DEFAULT_LIMITER_ID) -> None:
        self.policy = policy or RateLimiterPolicy()
        self.limiter_id = limiter_id
        self._semaphore = asyncio.Semaphore(max(1, self.policy.max_concurrent))
        self._spacing_lock = asyncio.Lock()
        self._next_start = 0.0
        self._job_ids = itertools.count(1)

    def should_retry(self, error: BaseException, retry_count: int) -> bool:
        """Return True when a failed job may run again.

        Args:
            error: Exception raised by the job
            retry_count: Number of retries already made for this job

        Returns:
            True while the retry budget is not exhausted
        """
        _ = error
        return retry_count < self.policy.retry_limit

    def retry_delay(self, error: BaseException, retry_count: int) -> Optional[float]:
        """Seconds to wait before retrying, or None to fail the job."""
        if self.should_retry(error, retry_count):
            return self.policy.retry_delay_ms / 1000.0
        return None

    async def schedule(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run func(*args, **kwargs) as a rate-limited job.

        Awaitable results are awaited inside the job's slot.

        Returns:
            Whatever the job returns

        Raises:
            Exception: the job's own exception once no retry is allowed
        """
        job_id = f"{self.limiter_id}-{next(self._job_ids)}"
        retry_count = 0
        while True:
            async with self._semaphore:
                await self._wait_for_start()
                try:
                    result = func(*args, **kwargs)
                    if inspect.isawaitable(result):
                        result = await result
                    return result
                except Exception as exc:
                    delay = self.retry_delay(exc, retry_count)
                    if delay is None:
                        raise

            logger.warning(
                "Job %s failed %d. Retrying after %dms.",
                job_id,
                retry_count + 1,
                int(delay * 1000),
            )
            retry_count += 1
            await asyncio.sleep(delay)

    def wrap(self, func: Callable[..., Any]) -> Callable[..., Awaitable[Any]]:
        """Return an async function that submits every call of func as a job."""

        @wraps(func)
        async def limited(*args: Any, **kwargs: Any) -> Any:
            return await self.schedule(func, *args, **kwargs)

        return limited

    async def _wait_for_start(self) -> None:
        async with self._spacing_lock:
            loop = asyncio.get_running_loop()
            wait = self._next_start - loop.time()
            if wait > 0:
                await asyncio.sleep(wait)
            self._next_start = loop.time() + self.policy.min_time_ms / 1000.0


def is_permanent_telegram_error(error: BaseException) -> bool:
    """Bad requests and rate-limit denials are never fixed by retrying."""
    if isinstance(error, (BadRequest, RetryAfter)):
        return True
    if not isinstance(error, TelegramError):
        return False
    text = str(error).lower()
    return any(marker in text for marker in _PERMANENT_ERROR_MARKERS)


class TelegramRateLimiter(RateLimiter):
    """Limiter for Bot API calls: permanent platform errors skip the retry budget."""

    def should_retry(self, error: BaseException, retry_count: int) -> bool:
        if is_permanent_telegram_error(error):
            logger.debug("Not retrying %s: %s", type(error).__name__, error)
            return False
        return super().should_retry(error, retry_count)


_limiters: dict[str, RateLimiter] = {}


def get_rate_limiter(
    limiter_id: str,
    policy: Optional[RateLimiterPolicy] = None,
    limiter_cls: type[RateLimiter] = RateLimiter,
) -> RateLimiter:
    """Return the process-wide limiter registered under limiter_id.

    The first call creates it; later calls share the same instance (and quota)
    regardless of how many client objects wrap it.
    """
    limiter = _limiters.get(limiter_id)
    if limiter is None:
        limiter = limiter_cls(policy, limiter_id=limiter_id)
        _limiters[limiter_id] = limiter
    elif policy is not None and policy != limiter.policy:
        logger.warning("Limiter %s already exists with a different policy, keeping the existing one", limiter_id)
    return limiter


def reset_rate_limiters() -> None:
    """Forget all shared limiters."""
    _limiters.clear()


class RateLimitedProxy(Generic[T]):
    """Wrapper exposing the target's members with every call rate limited.

    Non-callable attributes pass through unchanged. Callable members come back
    as coroutine functions that run through the limiter.
    """

    def __init__(
        self,
        target: T,
        limiter: RateLimiter,
        wrapper: Optional[Callable[[Callable[..., Any]], Callable[..., Any]]] = None,
    ) -> None:
        self._target = target
        self._limiter = limiter
        self._wrapper = wrapper

    @property
    def target(self) -> T:
        return self._target

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._target, name)
        if not callable(attr):
            return attr
        func = self._wrapper(attr) if self._wrapper else attr
        limited = self._limiter.wrap(func)
        return wraps(attr)(limited)

    def __repr__(self) -> str:
        return f"RateLimitedProxy({self._target!r}, limiter={self._limiter.limiter_id!r})"
