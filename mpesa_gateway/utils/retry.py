"""
Retry with exponential backoff for awaitable operations.

The client never retries on its own; wrap a call explicitly:

    response = await retry_with_backoff(
        lambda: client.stk_query(StkQueryRequest(checkout_id)),
        RetryOptions(max_attempts=3),
    )
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from mpesa_gateway.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


def is_retryable(error: BaseException) -> bool:
    """Default check: errors flagged retryable (timeouts, network, 429/5xx)."""
    return bool(getattr(error, 'retryable', False))


@dataclass(frozen=True)
class RetryOptions:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 30000
    jitter: bool = False
    retryable_check: Callable[[BaseException], bool] = is_retryable

    def delay_ms(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        delay = min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)
        if self.jitter:
            delay = random.uniform(0, delay)
        return delay


async def retry_with_backoff(
        operation: Callable[[], Awaitable[T]],
        options: Optional[RetryOptions] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` until it succeeds, the error is not retryable, or
    ``max_attempts`` is reached. The last error propagates unchanged.
    """
    options = options or RetryOptions()
    attempt = 0

    while True:
        try:
            return await operation()
        except Exception as exc:
            attempt += 1
            if attempt >= options.max_attempts or not options.retryable_check(exc):
                raise

            delay_ms = options.delay_ms(attempt - 1)
            logger.warning(
                'Attempt %d/%d failed (%s); retrying in %dms',
                attempt, options.max_attempts, exc, delay_ms,
            )
            await sleep(delay_ms / 1000)
