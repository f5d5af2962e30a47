"""
Utils Package
Retry, rate limiting, credential and logging helpers
"""

from mpesa_gateway.utils.logger import get_logger
from mpesa_gateway.utils.ratelimiter import (
    RateLimitDecision,
    RateLimiter,
    RedisLike,
    RedisRateLimiter,
    StoreFailurePolicy,
)
from mpesa_gateway.utils.retry import RetryOptions, is_retryable, retry_with_backoff
from mpesa_gateway.utils.security import encrypt_initiator_password, validate_security_credential

__all__ = [
    'get_logger',
    'RateLimiter',
    'RedisRateLimiter',
    'RedisLike',
    'RateLimitDecision',
    'StoreFailurePolicy',
    'RetryOptions',
    'retry_with_backoff',
    'is_retryable',
    'encrypt_initiator_password',
    'validate_security_credential',
]
