"""Rate limiting utilities for TypeFlow.

Fixed-window admission control shared by webhook ingress, the API surface
and job admission. Counters live in Redis under
``prefix:identifier:windowStart`` and are updated with a single MULTI
transaction, so concurrent checks never race between INCR and EXPIRE.
"""

import sys
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as redis
import structlog

from ..config import settings
from ..exceptions import TypeFlowException

logger = structlog.get_logger()

Clock = Callable[[], float]


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one admission check."""

    allowed: bool
    limit: int
    remaining: int
    reset_time: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "limit": self.limit,
            "remaining": self.remaining,
            "resetTime": self.reset_time,
        }


def unlimited_result() -> RateLimitResult:
    return RateLimitResult(allowed=True, limit=0, remaining=sys.maxsize, reset_time=0)


def window_start(now: float, window_seconds: int) -> int:
    seconds = int(now)
    return seconds - (seconds % window_seconds)


def retry_after(result: RateLimitResult, now: Optional[float] = None) -> int:
    """Seconds until the current window resets."""
    now = time.time() if now is None else now
    return max(0, result.reset_time - int(now))


def rate_limit_headers(result: RateLimitResult, now: Optional[float] = None) -> Dict[str, str]:
    """Standard ``X-RateLimit-*`` response headers for a check result."""
    if result.limit == 0:
        return {}
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_time),
    }
    if not result.allowed:
        headers["Retry-After"] = str(retry_after(result, now))
    return headers


class RateLimitExceeded(TypeFlowException):
    """Exception raised when rate limit is exceeded."""

    def __init__(self, identifier: str, result: RateLimitResult, now: Optional[float] = None):
        super().__init__(
            f"Rate limit exceeded for {identifier}: {result.limit} requests per window",
            details=result.to_dict(),
        )
        self.identifier = identifier
        self.result = result
        self.headers = rate_limit_headers(result, now)
        self.retry_after = retry_after(result, now)


class RateLimiter:
    """Rate limiter using Redis for distributed fixed-window counting.

    Args:
        redis_client: asyncio Redis client, owned by the caller
        limit: Maximum requests per window; 0 means unlimited
        window_seconds: Window length in seconds
        key_prefix: Prefix for counter keys
        clock: Returns the current time in seconds
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        limit: int,
        window_seconds: int,
        key_prefix: str = "ratelimit",
        clock: Clock = time.time,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.redis = redis_client
        self.limit = limit
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self.clock = clock

    def key(self, identifier: str, start: int) -> str:
        return f"{self.key_prefix}:{identifier}:{start}"

    async def check(self, identifier: str) -> RateLimitResult:
        """Count one request against the configured limit."""
        return await self.check_with_limit(identifier, self.limit)

    async def check_with_limit(self, identifier: str, limit: int) -> RateLimitResult:
        """Count one request against an explicit limit.

        Any Redis failure admits the request with ``remaining`` equal to the
        limit.
        """
        if limit == 0:
            return unlimited_result()

        start = window_start(self.clock(), self.window_seconds)
        reset_time = start + self.window_seconds
        key = self.key(identifier, start)
        fail_open = RateLimitResult(
            allowed=True, limit=limit, remaining=limit, reset_time=reset_time
        )

        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.incr(key)
            pipe.expire(key, self.window_seconds + 1)
            results = await pipe.execute(raise_on_error=False)
        except Exception as e:
            logger.warning("Rate limit check failed, allowing request", key=key, error=str(e))
            return fail_open

        if not results or isinstance(results[0], Exception) or results[0] is None:
            logger.warning("Rate limit transaction returned no count", key=key, results=results)
            return fail_open

        count = int(results[0])
        result = RateLimitResult(
            allowed=count <= limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_time=reset_time,
        )
        if not result.allowed:
            logger.warning(
                "Rate limit exceeded",
                key=key,
                limit=limit,
                current_count=count,
            )
        return result

    async def enforce(self, identifier: str, limit: Optional[int] = None) -> RateLimitResult:
        """Check and raise RateLimitExceeded when the request is denied."""
        result = await self.check_with_limit(identifier, self.limit if limit is None else limit)
        if not result.allowed:
            raise RateLimitExceeded(identifier, result, self.clock())
        return result

    async def reset(self, identifier: str) -> bool:
        """Drop the counter for the current window."""
        key = self.key(identifier, window_start(self.clock(), self.window_seconds))
        try:
            return bool(await self.redis.delete(key))
        except Exception as e:
            logger.error("Failed to reset rate limit", key=key, error=str(e))
            return False


class LocalRateLimiter:
    """In-memory fixed-window limiter for single-process deployments."""

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        key_prefix: str = "ratelimit",
        clock: Clock = time.time,
    ):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self.key_prefix = key_prefix
        self.clock = clock
        self._counts: Dict[Tuple[str, int], int] = defaultdict(int)

    def _prune(self, current_start: int) -> None:
        for key in [key for key in self._counts if key[1] < current_start]:
            del self._counts[key]

    async def check(self, identifier: str) -> RateLimitResult:
        return await self.check_with_limit(identifier, self.limit)

    async def check_with_limit(self, identifier: str, limit: int) -> RateLimitResult:
        if limit == 0:
            return unlimited_result()
        start = window_start(self.clock(), self.window_seconds)
        self._prune(start)
        key = (f"{self.key_prefix}:{identifier}", start)
        self._counts[key] += 1
        count = self._counts[key]
        return RateLimitResult(
            allowed=count <= limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_time=start + self.window_seconds,
        )

    async def reset(self, identifier: str) -> bool:
        start = window_start(self.clock(), self.window_seconds)
        return self._counts.pop((f"{self.key_prefix}:{identifier}", start), None) is not None


def webhook_rate_limiter(redis_client: redis.Redis, clock: Clock = time.time) -> RateLimiter:
    """Per-webhook limiter, keyed by ``organization:path``."""
    return RateLimiter(
        redis_client,
        limit=settings.webhook_rate_limit,
        window_seconds=settings.webhook_rate_window,
        key_prefix="rl:webhook",
        clock=clock,
    )


def api_rate_limiter(redis_client: redis.Redis, clock: Clock = time.time) -> RateLimiter:
    return RateLimiter(
        redis_client,
        limit=settings.api_rate_limit,
        window_seconds=settings.api_rate_window,
        key_prefix="rl:api",
        clock=clock,
    )


def execution_rate_limiter(redis_client: redis.Redis, clock: Clock = time.time) -> RateLimiter:
    """Per-organization job admission; a zero limit disables it."""
    return RateLimiter(
        redis_client,
        limit=settings.execution_rate_limit,
        window_seconds=settings.execution_rate_window,
        key_prefix="rl:execution",
        clock=clock,
    )
