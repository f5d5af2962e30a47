"""
OAuth token management for the Daraja API.

    GET /oauth/v1/generate?grant_type=client_credentials  (Basic auth)

Tokens are cached per instance and reused until shortly before expiry.
Concurrent callers that find the cache empty or stale share a single
in-flight refresh instead of each performing their own handshake.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from mpesa_gateway.codec import generate_password, generate_timestamp
from mpesa_gateway.config import MpesaConfig
from mpesa_gateway.errors import AuthError, MpesaTimeoutError, NetworkError
from mpesa_gateway.utils.logger import get_logger

logger = get_logger(__name__)

AUTH_PATH = '/oauth/v1/generate'

# Safaricom tokens live for 3600s; keep them for 50 minutes
DEFAULT_EXPIRES_IN = 3600
SAFETY_MARGIN = 600


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TokenManager:
    """Obtains and caches the OAuth access token for one set of credentials."""

    def __init__(
            self,
            config: MpesaConfig,
            http_client: httpx.AsyncClient,
            clock: Callable[[], float] = time.monotonic,
            safety_margin: float = SAFETY_MARGIN,
    ):
        self.config = config
        self._http = http_client
        self._clock = clock
        self._safety_margin = safety_margin

        self._token: Optional[AccessToken] = None
        self._refresh: Optional[asyncio.Future] = None

    async def get_token(self) -> str:
        """Return a valid access token, refreshing it if needed."""
        token = self._token
        if token is not None and token.is_valid(self._clock()):
            return token.value

        # No await between the check above and here, so only one refresh starts
        if self._refresh is None:
            self._refresh = asyncio.ensure_future(self._fetch_token())

        # Shielded so a cancelled caller does not abort the shared refresh
        return await asyncio.shield(self._refresh)

    def invalidate(self, token: Optional[str] = None) -> None:
        """
        Drop the cached token; the next get_token() performs a fresh exchange.

        When ``token`` is given the cache is only cleared if it still holds
        that token, so a rejected stale token does not evict a newer one.
        """
        if token is not None and (self._token is None or self._token.value != token):
            return
        self._token = None

    def get_base_url(self) -> str:
        return self.config.base_url

    def get_timestamp(self) -> str:
        return generate_timestamp()

    def get_password(self, timestamp: Optional[str] = None) -> str:
        """
        Base64(BusinessShortCode + Passkey + Timestamp).

        Pass the timestamp that goes into the same payload; a fresh one is
        generated when omitted.
        """
        timestamp = timestamp or self.get_timestamp()
        return generate_password(self.config.shortcode, self.config.passkey, timestamp)

    async def _fetch_token(self) -> str:
        try:
            token = await self._exchange()
            self._token = token
            return token.value
        finally:
            self._refresh = None

    async def _exchange(self) -> AccessToken:
        url = f'{self.get_base_url()}{AUTH_PATH}'
        try:
            resp = await self._http.get(
                url,
                params={'grant_type': 'client_credentials'},
                auth=(self.config.consumer_key, self.config.consumer_secret),
            )
        except httpx.TimeoutException as exc:
            raise MpesaTimeoutError(f'Token request timed out: {exc}') from exc
        except httpx.RequestError as exc:
            raise NetworkError(f'Token request failed: {exc}') from exc

        if resp.status_code < 200 or resp.status_code >= 300:
            raise AuthError(
                f'Failed to get access token: HTTP {resp.status_code} {resp.text[:300]}',
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise AuthError('Token response is not valid JSON', status_code=resp.status_code) from exc

        access_token = data.get('access_token') if isinstance(data, dict) else None
        if not access_token:
            raise AuthError('No access token in response', status_code=resp.status_code)

        try:
            expires_in = int(data.get('expires_in') or DEFAULT_EXPIRES_IN)
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN
        lifetime = max(expires_in - self._safety_margin, 0)

        logger.debug('Access token refreshed (expires in %ds, cached for %ds)', expires_in, lifetime)
        return AccessToken(value=access_token, expires_at=self._clock() + lifetime)
