from mpesa_gateway.errors.exceptions import (
    ApiError,
    AuthError,
    ConfigurationError,
    MpesaError,
    MpesaTimeoutError,
    NetworkError,
    RateLimitExceeded,
    UntrustedSourceError,
    ValidationError,
)

__all__ = [
    'MpesaError',
    'ConfigurationError',
    'ValidationError',
    'AuthError',
    'ApiError',
    'MpesaTimeoutError',
    'NetworkError',
    'UntrustedSourceError',
    'RateLimitExceeded',
]
