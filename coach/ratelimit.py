"""Per-user fixed-window rate limiting for coach turns."""

from abc import ABC, abstractmethod
import hashlib
import math
import time
from typing import Callable, Dict, NamedTuple, Optional, Tuple

import redis.asyncio
from redis.exceptions import RedisError
import structlog

from .errors import RateLimiterError
from .metrics import record_rate_limited

log = structlog.get_logger(__name__)

TURN_SCOPE = "coach:turn"

class RateLimitDecision(NamedTuple):
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # epoch ms at which the current window closes
    retry_after_ms: int = 0

    @property
    def retry_after_seconds(self) -> int:
        return max(math.ceil(self.retry_after_ms / 1000), 1)

def _now_ms() -> int:
    return int(time.time() * 1000)

def _user_hash(user_id: str) -> str:
    # user ids stay out of the logs
    return hashlib.sha256(user_id.encode("utf-8")).hexdigest()[:8]

class RateLimiter(ABC):
    """
    Counts hits per (user, scope) in fixed windows aligned to multiples of the window length.

    Every hit is counted, denied ones included; a window's count only matters until it closes.
    """

    def __init__(self, limit: int, window_seconds: float, clock: Optional[Callable[[], int]] = None):
        self.limit = limit
        self.window_ms = max(int(window_seconds * 1000), 1)
        self._clock = clock or _now_ms

    async def hit(self, user_id: str, scope: str = TURN_SCOPE) -> RateLimitDecision:
        """
        Record one hit and decide whether it is allowed.

        Raises:
            RateLimiterError: The backing store could not be reached.
        """
        now = self._clock()
        window_start = now - now % self.window_ms
        reset_at = window_start + self.window_ms

        count = await self._increment(user_id, scope, window_start)
        if count > self.limit:
            retry_after_ms = reset_at - now
            log.warning(
                "Rate limit exceeded",
                scope=scope, user=_user_hash(user_id), limit=self.limit, count=count, retry_after_ms=retry_after_ms,
            )
            record_rate_limited(scope)
            return RateLimitDecision(False, self.limit, 0, reset_at, retry_after_ms)

        if count == 1:
            log.debug("Rate limit window opened", scope=scope, user=_user_hash(user_id), window_start=window_start)
        return RateLimitDecision(True, self.limit, self.limit - count, reset_at)

    @abstractmethod
    async def _increment(self, user_id: str, scope: str, window_start: int) -> int:
        """Counts one hit in the window and returns the window's total, this hit included."""
        pass

    async def close(self) -> None:
        pass

class InMemoryRateLimiter(RateLimiter):
    """Process-local counters; one live window per (user, scope)."""

    def __init__(self, limit: int, window_seconds: float, clock: Optional[Callable[[], int]] = None):
        super().__init__(limit, window_seconds, clock)
        self._windows: Dict[Tuple[str, str], Tuple[int, int]] = {}

    async def _increment(self, user_id: str, scope: str, window_start: int) -> int:
        key = (user_id, scope)
        current_start, count = self._windows.get(key, (window_start, 0))
        if current_start != window_start:
            count = 0
        count += 1
        self._windows[key] = (window_start, count)
        return count

class RedisRateLimiter(RateLimiter):
    """Counters shared by every server process.

    One key per window, `<prefix>:<scope>:<user_id>:<window_start>`, expiring two windows
    after it is first written.
    """

    def __init__(self, redis_url: str, limit: int, window_seconds: float,
                 key_prefix: str = "coach:ratelimit", clock: Optional[Callable[[], int]] = None):
        super().__init__(limit, window_seconds, clock)
        self.key_prefix = key_prefix
        try:
            self.redis_client = redis.asyncio.Redis.from_url(redis_url, decode_responses=True)
            log.info(f"RedisRateLimiter initialized for URL: {redis_url} with prefix: {key_prefix}")
        except Exception as e:
            log.error(f"Failed to initialize Redis client: {e}", exc_info=True)
            self.redis_client = None

    async def _increment(self, user_id: str, scope: str, window_start: int) -> int:
        if not self.redis_client:
            raise RateLimiterError("Redis client not available.")
        key = f"{self.key_prefix}:{scope}:{user_id}:{window_start}"
        try:
            async with self.redis_client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.pexpire(key, self.window_ms * 2)
                count, _ = await pipe.execute()
        except RedisError as e:
            log.error(f"Redis error while counting {scope} hit: {e}", exc_info=True)
            raise RateLimiterError(f"Rate limit check failed: {e}") from e
        return int(count)

    async def close(self) -> None:
        if self.redis_client:
            try:
                await self.redis_client.aclose()
                log.debug("Redis connection closed.")
            except Exception as e:
                log.error(f"Error closing Redis connection: {e}", exc_info=True)
