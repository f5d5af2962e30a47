"""
Integration Tests for Outbound Payment Flows
MpesaClient -> TokenManager -> PayloadCodec -> (mock) Daraja API
"""

import base64
import json

import httpx
import pytest

from mpesa_gateway import MpesaClient, RateLimiter, RetryOptions, retry_with_backoff
from mpesa_gateway.errors import ApiError, MpesaTimeoutError, NetworkError, RateLimitExceeded, ValidationError
from mpesa_gateway.models import (
    AccountBalanceRequest,
    B2BRequest,
    B2CRequest,
    B2CResponse,
    C2BRegisterRequest,
    C2BSimulateRequest,
    DynamicQRRequest,
    ReversalRequest,
    StkPushRequest,
    StkQueryRequest,
    TransactionStatusRequest,
)

STK_PATH = '/mpesa/stkpush/v1/processrequest'

STK_ACCEPTED = {
    'MerchantRequestID': '29115-34620561-1',
    'CheckoutRequestID': 'ws_CO_191220191020363925',
    'ResponseCode': '0',
    'ResponseDescription': 'Success. Request accepted for processing',
    'CustomerMessage': 'Success. Request accepted for processing',
}

CONVERSATION_ACCEPTED = {
    'ConversationID': 'AG_20191219_00005797af5d7d75f652',
    'OriginatorConversationID': '16740-34861180-1',
    'ResponseCode': '0',
    'ResponseDescription': 'Accept the service request successfully.',
}


def _stk_request(**overrides):
    values = dict(amount=100, phone_number='0712345678',
                  account_reference='ORD-123', transaction_desc='Payment for order 123')
    values.update(overrides)
    return StkPushRequest(**values)


def _body(request):
    return json.loads(request.content)


class TestStkPushFlow:

    @pytest.mark.asyncio
    async def test_stk_push(self, mpesa_client, daraja):
        daraja.route(STK_PATH, (200, STK_ACCEPTED))

        response = await mpesa_client.stk_push(_stk_request())

        assert response.checkout_request_id == 'ws_CO_191220191020363925'
        assert response.response_code == '0'

        request = daraja.calls_to(STK_PATH)[0]
        assert request.headers['Authorization'] == 'Bearer test-token-1'
        assert request.headers['Content-Type'] == 'application/json'

        body = _body(request)
        assert body['PhoneNumber'] == '254712345678'
        assert body['PartyA'] == '254712345678'
        assert body['Amount'] == 100
        password = base64.b64decode(body['Password']).decode()
        assert password == f"174379test_passkey{body['Timestamp']}"

    @pytest.mark.asyncio
    async def test_token_is_reused_across_calls(self, mpesa_client, daraja):
        daraja.route(STK_PATH, (200, STK_ACCEPTED))

        await mpesa_client.stk_push(_stk_request())
        await mpesa_client.stk_push(_stk_request())

        assert daraja.token_calls == 1
        assert len(daraja.calls_to(STK_PATH)) == 2

    @pytest.mark.asyncio
    async def test_unauthorized_invalidates_token(self, mpesa_client, daraja):
        daraja.route(
            STK_PATH,
            (401, {'errorCode': '404.001.03', 'errorMessage': 'Invalid Access Token'}),
            (200, STK_ACCEPTED),
        )

        with pytest.raises(ApiError) as exc_info:
            await mpesa_client.stk_push(_stk_request())
        assert exc_info.value.status_code == 401
        assert exc_info.value.error_code == '404.001.03'
        assert 'Invalid Access Token' in exc_info.value.body

        await mpesa_client.stk_push(_stk_request())

        assert daraja.token_calls == 2
        assert daraja.calls_to(STK_PATH)[-1].headers['Authorization'] == 'Bearer test-token-2'

    @pytest.mark.asyncio
    async def test_error_code_in_success_response(self, mpesa_client, daraja):
        daraja.route(STK_PATH, (200, {'requestId': 'x', 'errorCode': '400.002.02',
                                      'errorMessage': 'Bad Request - Invalid Amount'}))

        with pytest.raises(ApiError, match='Invalid Amount') as exc_info:
            await mpesa_client.stk_push(_stk_request())
        assert exc_info.value.error_code == '400.002.02'

    @pytest.mark.asyncio
    async def test_server_error_is_retryable(self, mpesa_client, daraja):
        daraja.route(STK_PATH, lambda request: httpx.Response(503, text='Service Unavailable'))

        with pytest.raises(ApiError) as exc_info:
            await mpesa_client.stk_push(_stk_request())
        assert exc_info.value.status_code == 503
        assert exc_info.value.body == 'Service Unavailable'
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_non_json_success_response(self, mpesa_client, daraja):
        daraja.route(STK_PATH, lambda request: httpx.Response(200, text='OK'))

        with pytest.raises(ApiError, match='not valid JSON'):
            await mpesa_client.stk_push(_stk_request())

    @pytest.mark.asyncio
    async def test_timeout(self, mpesa_client, daraja):
        def timeout(request):
            raise httpx.ReadTimeout('timed out', request=request)

        daraja.route(STK_PATH, timeout)

        with pytest.raises(MpesaTimeoutError):
            await mpesa_client.stk_push(_stk_request())

    @pytest.mark.asyncio
    async def test_network_error(self, mpesa_client, daraja):
        def refused(request):
            raise httpx.ConnectError('connection refused', request=request)

        daraja.route(STK_PATH, refused)

        with pytest.raises(NetworkError):
            await mpesa_client.stk_push(_stk_request())

    @pytest.mark.asyncio
    async def test_validation_happens_before_network(self, mpesa_client, daraja):
        with pytest.raises(ValidationError):
            await mpesa_client.stk_push(_stk_request(phone_number='12345'))

        assert daraja.requests == []

    @pytest.mark.asyncio
    async def test_retry_composes_with_client(self, mpesa_client, daraja):
        daraja.route(
            STK_PATH,
            lambda request: httpx.Response(500, json={'errorCode': '500.001.1001'}),
            lambda request: httpx.Response(500, json={'errorCode': '500.001.1001'}),
            (200, STK_ACCEPTED),
        )

        async def no_sleep(seconds):
            return None

        response = await retry_with_backoff(
            lambda: mpesa_client.stk_push(_stk_request()),
            RetryOptions(max_attempts=3),
            sleep=no_sleep,
        )

        assert response.checkout_request_id == 'ws_CO_191220191020363925'
        assert len(daraja.calls_to(STK_PATH)) == 3

    @pytest.mark.asyncio
    async def test_stk_query(self, mpesa_client, daraja):
        daraja.route('/mpesa/stkpushquery/v1/query', (200, {
            'ResponseCode': '0',
            'ResponseDescription': 'The service request has been accepted successsfully',
            'MerchantRequestID': '22205-34066-1',
            'CheckoutRequestID': 'ws_CO_13012021093521236557',
            'ResultCode': '1032',
            'ResultDesc': 'Request cancelled by user',
        }))

        response = await mpesa_client.stk_query(StkQueryRequest('ws_CO_13012021093521236557'))

        assert response.result_code == '1032'
        body = _body(daraja.calls_to('/mpesa/stkpushquery/v1/query')[0])
        assert body['CheckoutRequestID'] == 'ws_CO_13012021093521236557'
        assert body['BusinessShortCode'] == '174379'


class TestRateLimitedClient:

    @pytest.mark.asyncio
    async def test_rate_limit_per_phone(self, config, http_client, daraja, clock):
        daraja.route(STK_PATH, (200, STK_ACCEPTED))
        client = MpesaClient(config, http_client=http_client,
                             rate_limiter=RateLimiter(limit=1, window_ms=60000, clock=clock))

        await client.stk_push(_stk_request())
        with pytest.raises(RateLimitExceeded):
            await client.stk_push(_stk_request(phone_number='+254712345678'))

        await client.stk_push(_stk_request(phone_number='0798765432'))
        assert len(daraja.calls_to(STK_PATH)) == 2

        usage = await client.get_rate_limit_usage('stk:254712345678')
        assert usage['count'] == 1

    @pytest.mark.asyncio
    async def test_usage_without_limiter(self, mpesa_client):
        assert await mpesa_client.get_rate_limit_usage('stk:254712345678') is None


class TestBusinessFlows:

    @pytest.mark.asyncio
    async def test_b2c(self, mpesa_client, daraja):
        daraja.route('/mpesa/b2c/v1/paymentrequest', (200, CONVERSATION_ACCEPTED))

        response = await mpesa_client.b2c(B2CRequest(amount=500, phone_number='0712345678', remarks='Refund'))

        assert isinstance(response, B2CResponse)
        assert response.conversation_id == 'AG_20191219_00005797af5d7d75f652'
        body = _body(daraja.calls_to('/mpesa/b2c/v1/paymentrequest')[0])
        assert body['PartyB'] == '254712345678'
        assert body['CommandID'] == 'BusinessPayment'

    @pytest.mark.asyncio
    async def test_b2b(self, mpesa_client, daraja):
        daraja.route('/mpesa/b2b/v1/paymentrequest', (200, CONVERSATION_ACCEPTED))

        response = await mpesa_client.b2b(B2BRequest(
            amount=1000, party_b='600000', remarks='Stock', account_reference='PO-1'))

        assert response.originator_conversation_id == '16740-34861180-1'

    @pytest.mark.asyncio
    async def test_account_balance(self, mpesa_client, daraja):
        daraja.route('/mpesa/accountbalance/v1/query', (200, CONVERSATION_ACCEPTED))

        response = await mpesa_client.account_balance()

        assert response.response_code == '0'
        body = _body(daraja.calls_to('/mpesa/accountbalance/v1/query')[0])
        assert body['CommandID'] == 'AccountBalance'

        await mpesa_client.account_balance(AccountBalanceRequest(party_a='600001'))
        assert _body(daraja.calls_to('/mpesa/accountbalance/v1/query')[1])['PartyA'] == '600001'

    @pytest.mark.asyncio
    async def test_transaction_status(self, mpesa_client, daraja):
        daraja.route('/mpesa/transactionstatus/v1/query', (200, CONVERSATION_ACCEPTED))

        await mpesa_client.transaction_status(TransactionStatusRequest(transaction_id='NLJ41HAY6Q'))

        body = _body(daraja.calls_to('/mpesa/transactionstatus/v1/query')[0])
        assert body['TransactionID'] == 'NLJ41HAY6Q'

    @pytest.mark.asyncio
    async def test_reversal(self, mpesa_client, daraja):
        daraja.route('/mpesa/reversal/v1/request', (200, CONVERSATION_ACCEPTED))

        response = await mpesa_client.reversal(ReversalRequest(transaction_id='NLJ41HAY6Q', amount=100))
        assert response.response_description == 'Accept the service request successfully.'

    @pytest.mark.asyncio
    async def test_register_c2b_url(self, mpesa_client, daraja):
        daraja.route('/mpesa/c2b/v1/registerurl', (200, {
            'OriginatorCoversationID': '7619-37765134-1',
            'ResponseCode': '0',
            'ResponseDescription': 'success',
        }))

        response = await mpesa_client.register_c2b_url(C2BRegisterRequest(
            confirmation_url='https://example.com/c2b/confirm',
            validation_url='https://example.com/c2b/validate'))

        assert response.originator_conversation_id == '7619-37765134-1'

    @pytest.mark.asyncio
    async def test_simulate_c2b(self, mpesa_client, daraja):
        daraja.route('/mpesa/c2b/v1/simulate', (200, {
            'ConversationID': 'AG_20191219_00004e48cf7e3533f581',
            'OriginatorCoversationID': '10030-695465-1',
            'ResponseDescription': 'Accept the service request successfully.',
        }))

        response = await mpesa_client.simulate_c2b(C2BSimulateRequest(
            amount=10, phone_number='0708374149', bill_ref_number='invoice008'))

        assert response.originator_conversation_id == '10030-695465-1'
        assert _body(daraja.calls_to('/mpesa/c2b/v1/simulate')[0])['Msisdn'] == '254708374149'

    @pytest.mark.asyncio
    async def test_generate_dynamic_qr(self, mpesa_client, daraja):
        daraja.route('/mpesa/qrcode/v1/generate', (200, {
            'ResponseCode': 'AG_20191219_000043fdf61864fe9ff5',
            'RequestID': '16738-27456357-1',
            'ResponseDescription': 'QR Code Successfully Generated.',
            'QRCode': 'iVBORw0KGgoAAAANSUhEUgAAASwAAAEsCAYAAAB5fY51',
        }))

        response = await mpesa_client.generate_dynamic_qr(DynamicQRRequest(
            merchant_name='TEST SUPERMARKET', ref_no='Invoice Test', amount=1,
            transaction_type='BG', credit_party_identifier='373132', size='500'))

        assert response.qr_code.startswith('iVBOR')
        assert _body(daraja.calls_to('/mpesa/qrcode/v1/generate')[0])['Size'] == '500'

    @pytest.mark.asyncio
    async def test_invalid_qr_size_makes_no_request(self, mpesa_client, daraja):
        with pytest.raises(ValidationError, match="Size must be either '300' or '500'"):
            await mpesa_client.generate_dynamic_qr(DynamicQRRequest(
                merchant_name='Shop', ref_no='INV-1', amount=100,
                transaction_type='BG', credit_party_identifier='174379', size='400'))

        assert daraja.requests == []


class TestClientLifecycle:

    @pytest.mark.asyncio
    async def test_context_manager_closes_owned_client(self, config):
        async with MpesaClient(config) as client:
            http = client._http
            assert not http.is_closed
        assert http.is_closed

    @pytest.mark.asyncio
    async def test_injected_client_is_left_open(self, config, http_client):
        async with MpesaClient(config, http_client=http_client):
            pass
        assert not http_client.is_closed
        await http_client.aclose()


class AuditPlugin:
    name = 'audit'

    def __init__(self):
        self.client = None

    def init(self, client):
        self.client = client


class TestPlugins:

    def test_use_registers_and_initialises_plugin(self, mpesa_client, config):
        plugin = AuditPlugin()

        assert mpesa_client.use(plugin) is mpesa_client
        assert plugin.client is mpesa_client
        assert mpesa_client.plugins == [plugin]
        assert plugin.client.get_config() is config

    def test_use_chains(self, mpesa_client):
        first, second = AuditPlugin(), AuditPlugin()

        mpesa_client.use(first).use(second)

        assert mpesa_client.plugins == [first, second]
        assert first.client is second.client is mpesa_client
