"""
M-Pesa Gateway Client
Async client for the Safaricom Daraja API.

Supported flows
---------------
STK Push (Lipa na M-Pesa Online)
    POST /mpesa/stkpush/v1/processrequest
    POST /mpesa/stkpushquery/v1/query         (status poll)

C2B (till / paybill, server-to-server confirmation)
    POST /mpesa/c2b/v1/registerurl
    POST /mpesa/c2b/v1/simulate               (sandbox only)

B2C / B2B (disbursements, business payments)
    POST /mpesa/b2c/v1/paymentrequest
    POST /mpesa/b2b/v1/paymentrequest

Account balance, transaction status, reversal
    POST /mpesa/accountbalance/v1/query
    POST /mpesa/transactionstatus/v1/query
    POST /mpesa/reversal/v1/request

Dynamic QR
    POST /mpesa/qrcode/v1/generate

Every call validates its input, takes a token from the TokenManager, builds
the body with the PayloadCodec and POSTs it. Nothing is retried here; wrap
calls with ``retry_with_backoff`` where a retry is wanted.

Usage:
    async with MpesaClient(MpesaConfig.from_env()) as client:
        response = await client.stk_push(StkPushRequest(
            amount=100, phone_number='0712345678',
            account_reference='ORD-1', transaction_desc='Order 1',
        ))
"""

import inspect
from typing import Any, Dict, List, Optional, Protocol

import httpx

from mpesa_gateway import codec, models
from mpesa_gateway.auth import TokenManager
from mpesa_gateway.callbacks import CallbackHandler, CallbackOptions
from mpesa_gateway.codec import Operation, PayloadCodec
from mpesa_gateway.config import MpesaConfig
from mpesa_gateway.errors import ApiError, MpesaTimeoutError, NetworkError
from mpesa_gateway.models import CallbackKind
from mpesa_gateway.utils.logger import get_logger
from mpesa_gateway.utils.ratelimiter import BaseRateLimiter

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0


class MpesaPlugin(Protocol):
    """Extension registered with MpesaClient.use(); init() receives the client."""

    name: str

    def init(self, client: 'MpesaClient') -> None: ...


class MpesaClient:
    """
    Daraja API client.

    Args:
        config: Merchant credentials and URLs
        callback_options: Hooks and policy for inbound callbacks
        rate_limiter: Optional RateLimiter / RedisRateLimiter checked before each call
        request_timeout: Per-request timeout in seconds (default: 30)
        http_client: Optional pre-configured httpx.AsyncClient (not closed by the client)
    """

    def __init__(
            self,
            config: MpesaConfig,
            callback_options: Optional[CallbackOptions] = None,
            rate_limiter: Optional[BaseRateLimiter] = None,
            request_timeout: float = DEFAULT_TIMEOUT,
            http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.rate_limiter = rate_limiter
        self.request_timeout = request_timeout

        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=request_timeout)

        self.tokens = TokenManager(config, self._http)
        self.codec = PayloadCodec(config)
        self.callbacks = CallbackHandler(callback_options)
        self.plugins: List[MpesaPlugin] = []

    def use(self, plugin: MpesaPlugin) -> 'MpesaClient':
        """Register a plugin and let it hook into this client. Returns self for chaining."""
        self.plugins.append(plugin)
        plugin.init(self)
        logger.debug('Registered plugin %s', getattr(plugin, 'name', type(plugin).__name__))
        return self

    def get_config(self) -> MpesaConfig:
        return self.config

    # Outbound operations

    async def stk_push(self, request: models.StkPushRequest) -> models.StkPushResponse:
        """Initiate a Lipa na M-Pesa Online (STK Push) payment."""
        return await self._execute(codec.STK_PUSH, request)

    async def stk_query(self, request: models.StkQueryRequest) -> models.StkQueryResponse:
        """Query the status of an STK Push by CheckoutRequestID."""
        return await self._execute(codec.STK_QUERY, request)

    async def b2c(self, request: models.B2CRequest) -> models.B2CResponse:
        """
        Send money from the business to a customer.

        The outcome is delivered asynchronously to the ResultURL.
        """
        return await self._execute(codec.B2C, request)

    async def b2b(self, request: models.B2BRequest) -> models.B2BResponse:
        return await self._execute(codec.B2B, request)

    async def account_balance(
            self, request: Optional[models.AccountBalanceRequest] = None
    ) -> models.AccountBalanceResponse:
        return await self._execute(codec.ACCOUNT_BALANCE, request or models.AccountBalanceRequest())

    async def transaction_status(
            self, request: models.TransactionStatusRequest
    ) -> models.TransactionStatusResponse:
        """Query any transaction by its M-Pesa TransactionID (result goes to ResultURL)."""
        return await self._execute(codec.TRANSACTION_STATUS, request)

    async def reversal(self, request: models.ReversalRequest) -> models.ReversalResponse:
        return await self._execute(codec.REVERSAL, request)

    async def register_c2b_url(self, request: models.C2BRegisterRequest) -> models.C2BRegisterResponse:
        """Register C2B confirmation and validation URLs for the shortcode."""
        return await self._execute(codec.C2B_REGISTER, request)

    async def simulate_c2b(self, request: models.C2BSimulateRequest) -> models.C2BSimulateResponse:
        """Simulate a customer payment (sandbox only)."""
        return await self._execute(codec.C2B_SIMULATE, request)

    async def generate_dynamic_qr(self, request: models.DynamicQRRequest) -> models.DynamicQRResponse:
        return await self._execute(codec.DYNAMIC_QR, request)

    async def _execute(self, operation: Operation, request: Any):
        values = self.codec.validate(operation, request)

        if self.rate_limiter is not None:
            await self.rate_limiter.check_limit(operation.rate_key(values))

        token = await self.tokens.get_token()
        payload = self.codec.build(operation, values, self.tokens.get_timestamp())

        status_code, data = await self._post(operation, payload, token)
        return self.codec.decode(operation, data, status_code)

    async def _post(self, operation: Operation, payload: Dict[str, Any], token: str):
        """Execute an authenticated POST to a Daraja endpoint."""
        url = f'{self.tokens.get_base_url()}{operation.path}'
        headers = {
            'Authorization': f'Bearer {token}',
            'Content-Type': 'application/json',
        }

        try:
            resp = await self._http.post(url, json=payload, headers=headers,
                                         timeout=self.request_timeout)
        except httpx.TimeoutException as exc:
            raise MpesaTimeoutError(f'Request timed out for {operation.path}') from exc
        except httpx.RequestError as exc:
            raise NetworkError(f'Network error on {operation.path}: {exc}') from exc

        return resp.status_code, self._handle_response(resp, operation, token)

    def _handle_response(self, resp: httpx.Response, operation: Operation, token: Optional[str] = None) -> Dict[str, Any]:
        """Parse Daraja response, raising on error codes."""
        try:
            data = resp.json()
        except ValueError:
            data = None

        logger.debug('MPesa [%s] HTTP %s', operation.name, resp.status_code)

        body = data if isinstance(data, dict) else {}
        error_code = body.get('errorCode')
        error_msg = body.get('errorMessage') or body.get('ResponseDescription') or resp.text[:300]

        if not resp.is_success:
            if resp.status_code == 401:
                # Next call performs a fresh token exchange
                self.tokens.invalidate(token)
            logger.warning('MPesa [%s] HTTP %s: %s', operation.name, resp.status_code, error_msg)
            raise ApiError(
                f'[{operation.name}] HTTP {resp.status_code}: {error_msg}',
                status_code=resp.status_code,
                body=resp.text,
                error_code=error_code,
                error_message=body.get('errorMessage'),
            )

        # Daraja sometimes returns 200 with an error in the body
        if error_code:
            raise ApiError(
                f'[{operation.name}] Daraja error {error_code}: {error_msg}',
                status_code=resp.status_code,
                body=resp.text,
                error_code=error_code,
                error_message=body.get('errorMessage'),
            )

        if data is None:
            raise ApiError(
                f'[{operation.name}] response is not valid JSON',
                status_code=resp.status_code,
                body=resp.text,
            )
        return data

    # Inbound callbacks (each returns the body to send back with HTTP 200)

    async def handle_stk_callback(self, raw: Dict[str, Any], ip_address: Optional[str] = None) -> Dict[str, Any]:
        return await self.callbacks.acknowledge(
            self.callbacks.handle_callback(raw, ip_address), 'Internal error')

    async def handle_c2b_validation(self, raw: Dict[str, Any], ip_address: Optional[str] = None) -> Dict[str, Any]:
        return await self.callbacks.acknowledge(
            self.callbacks.handle_c2b_validation(raw, ip_address), 'Validation failed')

    async def handle_c2b_confirmation(self, raw: Dict[str, Any], ip_address: Optional[str] = None) -> Dict[str, Any]:
        return await self.callbacks.acknowledge(
            self.callbacks.handle_c2b_confirmation(raw, ip_address))

    async def handle_b2c_callback(self, raw: Dict[str, Any], ip_address: Optional[str] = None) -> Dict[str, Any]:
        return await self.callbacks.acknowledge(
            self.callbacks.handle_result(CallbackKind.B2C, raw, ip_address))

    async def handle_b2b_callback(self, raw: Dict[str, Any], ip_address: Optional[str] = None) -> Dict[str, Any]:
        return await self.callbacks.acknowledge(
            self.callbacks.handle_result(CallbackKind.B2B, raw, ip_address))

    async def handle_account_balance_callback(
            self, raw: Dict[str, Any], ip_address: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self.callbacks.acknowledge(
            self.callbacks.handle_result(CallbackKind.ACCOUNT_BALANCE, raw, ip_address))

    async def handle_transaction_status_callback(
            self, raw: Dict[str, Any], ip_address: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self.callbacks.acknowledge(
            self.callbacks.handle_result(CallbackKind.TRANSACTION_STATUS, raw, ip_address))

    async def handle_reversal_callback(self, raw: Dict[str, Any], ip_address: Optional[str] = None) -> Dict[str, Any]:
        return await self.callbacks.acknowledge(
            self.callbacks.handle_result(CallbackKind.REVERSAL, raw, ip_address))

    async def handle_timeout(self, raw: Dict[str, Any], ip_address: Optional[str] = None) -> Dict[str, Any]:
        return await self.callbacks.acknowledge(
            self.callbacks.handle_timeout(raw, ip_address), success_message='Timeout received')

    def parse_stk_callback(self, raw: Dict[str, Any]) -> models.ParsedCallback:
        return self.callbacks.parse_callback(raw)

    def parse_c2b_callback(self, raw: Dict[str, Any]) -> models.ParsedC2BCallback:
        return self.callbacks.parse_c2b_callback(raw)

    async def get_rate_limit_usage(self, key: str) -> Optional[Dict[str, Any]]:
        """Current window usage for a rate-limit key, or None without a limiter."""
        if self.rate_limiter is None or not hasattr(self.rate_limiter, 'get_usage'):
            return None
        usage = self.rate_limiter.get_usage(key)
        if inspect.isawaitable(usage):
            usage = await usage
        return usage

    # Lifecycle

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http and not self._http.is_closed:
            await self._http.aclose()

    async def __aenter__(self) -> 'MpesaClient':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
