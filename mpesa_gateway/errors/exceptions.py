from typing import Any, Optional


class MpesaError(Exception):
    status_code = None
    error = "M-Pesa error"
    retryable = False

    def __init__(self, message, status_code=None):
        super().__init__(message)
        if status_code:
            self.status_code = status_code
        self.message = message


class ConfigurationError(MpesaError, ValueError):
    error = "Configuration error"


class ValidationError(MpesaError, ValueError):
    error = "Validation error"

    def __init__(self, message, field: Optional[str] = None, messages: Optional[dict] = None):
        super().__init__(message)
        self.field = field
        self.messages = messages or ({field: [message]} if field else {})


class AuthError(MpesaError):
    error = "Authentication error"


class ApiError(MpesaError):
    """Non-2xx (or error-bearing 2xx) response from a gateway endpoint."""
    error = "API error"

    def __init__(
            self,
            message,
            status_code=None,
            body: str = "",
            error_code: Optional[str] = None,
            error_message: Optional[str] = None,
    ):
        super().__init__(message, status_code)
        self.body = body
        self.error_code = error_code
        self.error_message = error_message

    @property
    def retryable(self) -> bool:
        return self.status_code == 429 or (self.status_code or 0) >= 500


class MpesaTimeoutError(MpesaError, TimeoutError):
    error = "Request timed out"
    retryable = True


class NetworkError(MpesaError):
    error = "Network error"
    retryable = True


class UntrustedSourceError(MpesaError):
    error = "Untrusted callback source"

    def __init__(self, message, ip_address: Any = None):
        super().__init__(message)
        self.ip_address = ip_address


class RateLimitExceeded(MpesaError):
    status_code = 429
    error = "Rate limit exceeded"

    def __init__(self, message, retry_after_ms: Optional[int] = None):
        super().__init__(message)
        self.retry_after_ms = retry_after_ms
