"""
Pytest Configuration and Fixtures
"""

import fakeredis
import httpx
import pytest

from mpesa_gateway import MpesaClient, MpesaConfig
from mpesa_gateway.auth import AUTH_PATH


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class DarajaStub:
    """
    In-process stand-in for the Daraja API, served through httpx.MockTransport.

    Token requests always succeed with a numbered token (test-token-1,
    test-token-2, ...). Other paths answer with the responses queued by
    ``route``; the last queued response repeats.
    """

    def __init__(self):
        self.requests = []
        self.routes = {}
        self.token_calls = 0
        self.expires_in = '3599'

    def route(self, path, *responses):
        """Queue (status_code, json_body) tuples or callables for ``path``."""
        self.routes[path] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.path == AUTH_PATH:
            self.token_calls += 1
            return httpx.Response(200, json={
                'access_token': f'test-token-{self.token_calls}',
                'expires_in': self.expires_in,
            })

        queue = self.routes.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={'errorCode': '404.001.03', 'errorMessage': 'Invalid Access Token'})

        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(responder):
            return responder(request)
        status_code, body = responder
        return httpx.Response(status_code, json=body)

    def calls_to(self, path):
        return [r for r in self.requests if r.url.path == path]

    @property
    def api_requests(self):
        return [r for r in self.requests if r.url.path != AUTH_PATH]


@pytest.fixture
def config():
    return MpesaConfig(
        consumer_key='test_consumer_key',
        consumer_secret='test_consumer_secret',
        shortcode='174379',
        passkey='test_passkey',
        environment='sandbox',
        callback_url='https://example.com/mpesa/callback',
        result_url='https://example.com/mpesa/result',
        timeout_url='https://example.com/mpesa/timeout',
        initiator_name='testapi',
        security_credential='encrypted_cred_b64==',
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def daraja():
    return DarajaStub()


@pytest.fixture
def http_client(daraja):
    return httpx.AsyncClient(transport=httpx.MockTransport(daraja.handler))


@pytest.fixture
def mpesa_client(config, http_client):
    return MpesaClient(config, http_client=http_client)


@pytest.fixture
def redis_client():
    """Fake async Redis with its own server per test"""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def stk_callback_payload():
    return {
        'Body': {
            'stkCallback': {
                'MerchantRequestID': '29115-34620561-1',
                'CheckoutRequestID': 'ws_CO_191220191020363925',
                'ResultCode': 0,
                'ResultDesc': 'The service request is processed successfully.',
                'CallbackMetadata': {
                    'Item': [
                        {'Name': 'Amount', 'Value': 1000},
                        {'Name': 'MpesaReceiptNumber', 'Value': 'ABC123'},
                        {'Name': 'TransactionDate', 'Value': 20250110120000},
                        {'Name': 'PhoneNumber', 'Value': 254712345678},
                    ]
                }
            }
        }
    }


@pytest.fixture
def c2b_payload():
    return {
        'TransactionType': 'Pay Bill',
        'TransID': 'RKTQDM7W6S',
        'TransTime': '20191122063845',
        'TransAmount': '10',
        'BusinessShortCode': 600638,
        'BillRefNumber': 'invoice008',
        'InvoiceNumber': '',
        'OrgAccountBalance': '',
        'ThirdPartyTransID': '',
        'MSISDN': 254708374149,
        'FirstName': 'John',
        'MiddleName': '',
        'LastName': 'Doe',
    }


def _result_payload(result_code=0, parameters=None, **extra):
    """Build a Result-shaped callback body (B2C, B2B, balance, status, reversal)."""
    result = {
        'ResultType': 0,
        'ResultCode': result_code,
        'ResultDesc': 'The service request is processed successfully.' if result_code == 0
        else 'The initiator information is invalid.',
        'OriginatorConversationID': '10571-7910404-1',
        'ConversationID': 'AG_20191219_00004e48cf7e3533f581',
        'TransactionID': 'NLJ41HAY6Q',
        **extra,
    }
    if parameters is not None:
        result['ResultParameters'] = {
            'ResultParameter': [{'Key': k, 'Value': v} for k, v in parameters.items()]
        }
    return {'Result': result}


@pytest.fixture
def make_result():
    return _result_payload


@pytest.fixture
def safaricom_ip():
    return '196.201.214.200'
