"""
Duplicate callback suppression.

Safaricom redelivers callbacks it believes were not received. DuplicateGuard
remembers which checkout / transaction IDs have been seen for a bounded time
window; pass its ``is_duplicate`` to CallbackOptions to enable it:

    guard = DuplicateGuard(store=redis_client, ttl_seconds=86400)
    handler = CallbackHandler(CallbackOptions(is_duplicate=guard.is_duplicate))

Without a store the IDs are kept in process memory (bounded by max_size).
"""

import time
from collections import OrderedDict
from typing import Callable, Optional

from mpesa_gateway.utils.logger import get_logger
from mpesa_gateway.utils.ratelimiter import RedisLike

logger = get_logger(__name__)


class DuplicateGuard:
    DEFAULT_TTL = 86400  # 24 hours

    def __init__(
            self,
            store: Optional[RedisLike] = None,
            ttl_seconds: int = DEFAULT_TTL,
            max_size: int = 10000,
            key_prefix: str = 'mpesa:callback',
            clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self.key_prefix = key_prefix
        self._clock = clock
        self._seen: 'OrderedDict[str, float]' = OrderedDict()

    def get_key(self, callback_id: str) -> str:
        return f'{self.key_prefix}:{callback_id}'

    async def is_duplicate(self, callback_id: str) -> bool:
        """Record ``callback_id`` and report whether it was already seen."""
        if self.store is not None:
            key = self.get_key(callback_id)
            count = int(await self.store.incr(key))
            if count == 1:
                try:
                    await self.store.expire(key, self.ttl_seconds)
                except Exception as exc:
                    logger.warning('Duplicate guard could not set TTL on %s: %s', key, exc)
            return count > 1
        return self._check_local(callback_id)

    def _check_local(self, callback_id: str) -> bool:
        now = self._clock()
        self._evict(now)

        if callback_id in self._seen:
            return True

        self._seen[callback_id] = now + self.ttl_seconds
        if len(self._seen) > self.max_size:
            oldest, _ = self._seen.popitem(last=False)
            logger.debug('Duplicate guard full; forgetting %s', oldest)
        return False

    def _evict(self, now: float) -> None:
        while self._seen:
            callback_id, expires_at = next(iter(self._seen.items()))
            if expires_at > now:
                break
            del self._seen[callback_id]
