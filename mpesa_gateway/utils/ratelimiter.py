"""
Outbound request rate limiting.

Two fixed-window limiters with the same policy (``limit`` requests per
``window_ms`` per key):

    RateLimiter        counters held in process memory
    RedisRateLimiter   counters held in a shared store (Redis or anything
                       exposing incr / expire / get), so every process
                       sharing the store sees one quota

Usage:
    limiter = RateLimiter(limit=3, window_ms=1000)
    decision = await limiter.try_acquire('stk:254712345678')
    if not decision.allowed:
        ...  # back off for decision.retry_after_ms
"""

import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Protocol

from mpesa_gateway.errors import RateLimitExceeded
from mpesa_gateway.utils.logger import get_logger

logger = get_logger(__name__)


class RedisLike(Protocol):
    """Minimal counter-store contract; redis.asyncio.Redis satisfies it."""

    async def incr(self, key: str) -> int: ...

    async def expire(self, key: str, seconds: int) -> Any: ...

    async def get(self, key: str) -> Optional[Any]: ...


class StoreFailurePolicy(str, Enum):
    """What a distributed limiter does when its store is unreachable."""
    FAIL_OPEN = 'open'      # admit the request, log a warning
    FAIL_CLOSED = 'closed'  # reject the request for one window


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after_ms: Optional[int] = None
    remaining: int = 0


class BaseRateLimiter:
    def __init__(self, limit: int = 100, window_ms: int = 60000):
        if limit < 1:
            raise ValueError('limit must be at least 1')
        if window_ms <= 0:
            raise ValueError('window_ms must be positive')
        self.limit = limit
        self.window_ms = window_ms

    async def try_acquire(self, key: str) -> RateLimitDecision:
        raise NotImplementedError

    async def check_limit(self, key: str) -> RateLimitDecision:
        """Acquire a slot for ``key`` or raise RateLimitExceeded."""
        decision = await self.try_acquire(key)
        if not decision.allowed:
            logger.warning('Rate limit exceeded for %s (retry in %sms)', key, decision.retry_after_ms)
            raise RateLimitExceeded(
                f'Rate limit exceeded for {key}. Maximum {self.limit} requests '
                f'per {self.window_ms}ms',
                retry_after_ms=decision.retry_after_ms,
            )
        return decision


@dataclass
class _Window:
    start_ms: float
    count: int = 0


class RateLimiter(BaseRateLimiter):
    """In-memory fixed-window limiter."""

    MAX_KEYS = 10000

    def __init__(
            self,
            limit: int = 100,
            window_ms: int = 60000,
            clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(limit, window_ms)
        self._clock = clock
        self._windows: Dict[str, _Window] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000

    async def try_acquire(self, key: str) -> RateLimitDecision:
        return self.acquire(key)

    def acquire(self, key: str) -> RateLimitDecision:
        now = self._now_ms()
        if len(self._windows) > self.MAX_KEYS:
            self._prune(now)

        window = self._windows.get(key)
        if window is None or now - window.start_ms >= self.window_ms:
            window = self._windows[key] = _Window(start_ms=now)

        if window.count >= self.limit:
            retry_after = math.ceil(window.start_ms + self.window_ms - now)
            return RateLimitDecision(allowed=False, retry_after_ms=max(retry_after, 0))

        window.count += 1
        return RateLimitDecision(allowed=True, remaining=self.limit - window.count)

    def get_usage(self, key: str) -> Optional[Dict[str, Any]]:
        window = self._windows.get(key)
        now = self._now_ms()
        if window is None or now - window.start_ms >= self.window_ms:
            return None
        return {
            'count': window.count,
            'limit': self.limit,
            'remaining': max(self.limit - window.count, 0),
            'reset_in_ms': math.ceil(window.start_ms + self.window_ms - now),
        }

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._windows.clear()
        else:
            self._windows.pop(key, None)

    def _prune(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if now - w.start_ms >= self.window_ms]
        for k in expired:
            del self._windows[k]


class RedisRateLimiter(BaseRateLimiter):
    """
    Fixed-window limiter backed by a shared counter store.

    Each window gets its own key (``prefix:key:window_index``). The count is
    incremented atomically by the store on every attempt and the key's TTL is
    set to the window length on its first increment, so stale windows expire
    on their own.

    If the store raises, the request is admitted (FAIL_OPEN, the default) or
    rejected (FAIL_CLOSED) according to ``on_store_error``; either way the
    failure is logged.
    """

    def __init__(
            self,
            store: RedisLike,
            limit: int = 100,
            window_ms: int = 60000,
            key_prefix: str = 'mpesa:ratelimit',
            on_store_error: StoreFailurePolicy = StoreFailurePolicy.FAIL_OPEN,
            clock: Callable[[], float] = time.time,
    ):
        super().__init__(limit, window_ms)
        self.store = store
        self.key_prefix = key_prefix
        self.on_store_error = StoreFailurePolicy(on_store_error)
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return max(math.ceil(self.window_ms / 1000), 1)

    def _window(self, key: str):
        now = self._clock() * 1000
        index = int(now // self.window_ms)
        retry_after = math.ceil((index + 1) * self.window_ms - now)
        return f'{self.key_prefix}:{key}:{index}', retry_after

    async def try_acquire(self, key: str) -> RateLimitDecision:
        store_key, retry_after = self._window(key)
        try:
            count = int(await self.store.incr(store_key))
        except Exception as exc:
            logger.warning('Rate limit store failed for %s (%s); failing %s',
                           key, exc, self.on_store_error.value)
            if self.on_store_error is StoreFailurePolicy.FAIL_OPEN:
                return RateLimitDecision(allowed=True, remaining=0)
            return RateLimitDecision(allowed=False, retry_after_ms=self.window_ms)

        if count == 1:
            await self._set_ttl(store_key)

        if count > self.limit:
            return RateLimitDecision(allowed=False, retry_after_ms=retry_after)
        return RateLimitDecision(allowed=True, remaining=self.limit - count)

    async def _set_ttl(self, store_key: str) -> None:
        # incr already counted this attempt
        try:
            await self.store.expire(store_key, self.ttl_seconds)
        except Exception as exc:
            logger.warning('Rate limit store could not set TTL on %s: %s', store_key, exc)

    async def get_usage(self, key: str) -> Dict[str, Any]:
        store_key, retry_after = self._window(key)
        value = await self.store.get(store_key)
        count = int(value) if value is not None else 0
        return {
            'count': count,
            'limit': self.limit,
            'remaining': max(self.limit - count, 0),
            'reset_in_ms': retry_after,
        }
