import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import Optional

from dotenv import load_dotenv

from mpesa_gateway.errors import ConfigurationError

# Daraja base URLs
BASE_URLS = MappingProxyType({
    'sandbox': 'https://sandbox.safaricom.co.ke',
    'production': 'https://api.safaricom.co.ke',
})


@dataclass(frozen=True)
class MpesaConfig:
    """Gateway credentials, environment and callback URLs"""
    consumer_key: str
    consumer_secret: str
    passkey: str = ''
    shortcode: str = ''
    environment: str = 'sandbox'

    callback_url: Optional[str] = None
    result_url: Optional[str] = None
    timeout_url: Optional[str] = None

    # Needed only for B2C / B2B / balance / status / reversal
    initiator_name: Optional[str] = None
    security_credential: Optional[str] = None

    transaction_type: str = 'CustomerPayBillOnline'
    identifier_type: str = '4'

    def __post_init__(self):
        if not self.consumer_key or not self.consumer_secret:
            raise ConfigurationError("'consumer_key' and 'consumer_secret' are required")

        environment = (self.environment or '').lower()
        if environment not in BASE_URLS:
            raise ConfigurationError(
                f"environment must be 'sandbox' or 'production', got '{self.environment}'"
            )
        object.__setattr__(self, 'environment', environment)
        object.__setattr__(self, 'shortcode', str(self.shortcode))

    @property
    def base_url(self) -> str:
        return BASE_URLS[self.environment]

    @property
    def is_sandbox(self) -> bool:
        return self.environment == 'sandbox'

    @classmethod
    def from_env(cls, prefix: str = 'MPESA_') -> 'MpesaConfig':
        """Build a config from (dotenv-loaded) environment variables."""
        load_dotenv()

        def env(name, default=None):
            return os.getenv(f'{prefix}{name}', default)

        return cls(
            # Required
            consumer_key=env('CONSUMER_KEY', ''),
            consumer_secret=env('CONSUMER_SECRET', ''),
            shortcode=env('SHORTCODE', ''),
            passkey=env('PASSKEY', ''),
            # Environment
            environment=env('ENV', 'sandbox'),
            # Callback / result URLs
            callback_url=env('CALLBACK_URL'),
            result_url=env('RESULT_URL'),
            timeout_url=env('QUEUE_TIMEOUT_URL'),
            # Initiator credentials
            initiator_name=env('INITIATOR_NAME'),
            security_credential=env('SECURITY_CREDENTIAL'),
            # Payment behaviour
            transaction_type=env('TRANSACTION_TYPE', 'CustomerPayBillOnline'),
            identifier_type=env('IDENTIFIER_TYPE', '4'),
        )
