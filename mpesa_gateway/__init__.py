"""
M-Pesa Gateway
Async client engine for the Safaricom Daraja API: token management,
request building, rate limiting, retries and callback handling.
"""

from mpesa_gateway.auth import TokenManager
from mpesa_gateway.callbacks import (
    SAFARICOM_IPS,
    CallbackHandler,
    CallbackOptions,
    create_callback_response,
    extract_source_ip,
    get_error_message,
)
from mpesa_gateway.client import MpesaClient, MpesaPlugin
from mpesa_gateway.codec import PayloadCodec, generate_password, generate_timestamp, normalize_phone
from mpesa_gateway.config import MpesaConfig
from mpesa_gateway.errors import (
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
from mpesa_gateway.extensions import RedisClient
from mpesa_gateway.models import (
    AccountBalanceRequest,
    B2BRequest,
    B2CRequest,
    C2BRegisterRequest,
    C2BSimulateRequest,
    CallbackKind,
    DynamicQRRequest,
    ParsedC2BCallback,
    ParsedCallback,
    ReversalRequest,
    StkPushRequest,
    StkQueryRequest,
    TransactionStatusRequest,
)
from mpesa_gateway.services import DuplicateGuard
from mpesa_gateway.utils import (
    RateLimiter,
    RedisRateLimiter,
    RetryOptions,
    StoreFailurePolicy,
    encrypt_initiator_password,
    retry_with_backoff,
    validate_security_credential,
)

__version__ = '1.0.0'

__all__ = [
    'MpesaClient',
    'MpesaPlugin',
    'MpesaConfig',
    'TokenManager',
    'PayloadCodec',
    'CallbackHandler',
    'CallbackOptions',
    'CallbackKind',
    'DuplicateGuard',
    'RedisClient',
    'RateLimiter',
    'RedisRateLimiter',
    'StoreFailurePolicy',
    'RetryOptions',
    'retry_with_backoff',
    'encrypt_initiator_password',
    'validate_security_credential',
    'generate_password',
    'generate_timestamp',
    'normalize_phone',
    'create_callback_response',
    'extract_source_ip',
    'get_error_message',
    'SAFARICOM_IPS',
    'StkPushRequest',
    'StkQueryRequest',
    'B2CRequest',
    'B2BRequest',
    'AccountBalanceRequest',
    'TransactionStatusRequest',
    'ReversalRequest',
    'C2BRegisterRequest',
    'C2BSimulateRequest',
    'DynamicQRRequest',
    'ParsedCallback',
    'ParsedC2BCallback',
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
