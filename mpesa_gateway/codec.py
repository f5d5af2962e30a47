"""
Daraja payload codec.

Validates caller requests, builds the gateway-shaped JSON bodies (shortcode,
password, timestamp, normalised phone numbers) and decodes responses into
the value objects in ``mpesa_gateway.models``. Nothing here performs I/O.

Password = Base64(BusinessShortCode + Passkey + Timestamp)
Timestamp = YYYYMMDDHHmmss on the gateway clock (Nairobi, UTC+3)
"""

import base64
import dataclasses
import json
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any, Callable, Dict, Optional, Type

from marshmallow import Schema
from marshmallow import ValidationError as SchemaValidationError

from mpesa_gateway.config import MpesaConfig
from mpesa_gateway.errors import ApiError, ValidationError
from mpesa_gateway.schemas import request_schema as rq
from mpesa_gateway.schemas import response_schema as rs

GATEWAY_TZ = timezone(timedelta(hours=3), 'EAT')
TIMESTAMP_FORMAT = '%Y%m%d%H%M%S'

_PHONE_PATTERN = re.compile(r'^254[17]\d{8}$')


def generate_timestamp(now: Optional[datetime] = None) -> str:
    """Current time in the gateway's YYYYMMDDHHmmss convention."""
    now = now or datetime.now(GATEWAY_TZ)
    if now.tzinfo is not None:
        now = now.astimezone(GATEWAY_TZ)
    return now.strftime(TIMESTAMP_FORMAT)


def generate_password(shortcode: str, passkey: str, timestamp: str) -> str:
    raw = f'{shortcode}{passkey}{timestamp}'
    return base64.b64encode(raw.encode('utf-8')).decode('utf-8')


def normalize_phone(phone: Any) -> str:
    """
    Normalise a phone number to Safaricom's expected format (2547XXXXXXXX).

    Accepts: +254712345678, 0712345678, 254712345678, 712345678
    """
    if phone is None:
        return ''
    phone = re.sub(r'[\s\-()]', '', str(phone))
    if phone.startswith('+'):
        phone = phone[1:]
    if not phone:
        return ''
    if phone.startswith('0'):
        phone = '254' + phone[1:]
    elif not phone.startswith('254'):
        phone = '254' + phone
    return phone


def validate_phone(phone: Any) -> str:
    """Normalise and check a Kenyan mobile number, raising ValidationError."""
    normalized = normalize_phone(phone)
    if not _PHONE_PATTERN.match(normalized):
        raise ValidationError(
            f'Invalid phone number format: {phone}. Must be a valid Kenyan number.',
            field='phone_number',
        )
    return normalized


def format_transaction_date(value: Any) -> Optional[str]:
    """20250110120000 -> 2025-01-10T12:00:00"""
    if value is None:
        return None
    text = str(value)
    try:
        return datetime.strptime(text, TIMESTAMP_FORMAT).strftime('%Y-%m-%dT%H:%M:%S')
    except ValueError:
        return text


@dataclass(frozen=True)
class Operation:
    name: str
    path: str
    request_schema: Type[Schema]
    response_schema: Type[Schema]
    rate_key: Callable[[Dict[str, Any]], str]
    needs_initiator: bool = False


STK_PUSH = Operation(
    'stk_push', '/mpesa/stkpush/v1/processrequest',
    rq.StkPushRequestSchema, rs.StkPushResponseSchema,
    lambda v: f"stk:{v['phone_number']}",
)
STK_QUERY = Operation(
    'stk_query', '/mpesa/stkpushquery/v1/query',
    rq.StkQueryRequestSchema, rs.StkQueryResponseSchema,
    lambda v: f"query:{v['checkout_request_id']}",
)
B2C = Operation(
    'b2c', '/mpesa/b2c/v1/paymentrequest',
    rq.B2CRequestSchema, rs.B2CResponseSchema,
    lambda v: f"b2c:{v['phone_number']}", needs_initiator=True,
)
B2B = Operation(
    'b2b', '/mpesa/b2b/v1/paymentrequest',
    rq.B2BRequestSchema, rs.B2BResponseSchema,
    lambda v: f"b2b:{v['party_b']}", needs_initiator=True,
)
ACCOUNT_BALANCE = Operation(
    'account_balance', '/mpesa/accountbalance/v1/query',
    rq.AccountBalanceRequestSchema, rs.AccountBalanceResponseSchema,
    lambda v: 'balance', needs_initiator=True,
)
TRANSACTION_STATUS = Operation(
    'transaction_status', '/mpesa/transactionstatus/v1/query',
    rq.TransactionStatusRequestSchema, rs.TransactionStatusResponseSchema,
    lambda v: f"status:{v['transaction_id']}", needs_initiator=True,
)
REVERSAL = Operation(
    'reversal', '/mpesa/reversal/v1/request',
    rq.ReversalRequestSchema, rs.ReversalResponseSchema,
    lambda v: f"reversal:{v['transaction_id']}", needs_initiator=True,
)
C2B_REGISTER = Operation(
    'register_c2b_url', '/mpesa/c2b/v1/registerurl',
    rq.C2BRegisterRequestSchema, rs.C2BRegisterResponseSchema,
    lambda v: 'c2b:register',
)
C2B_SIMULATE = Operation(
    'simulate_c2b', '/mpesa/c2b/v1/simulate',
    rq.C2BSimulateRequestSchema, rs.C2BSimulateResponseSchema,
    lambda v: f"c2b:simulate:{v['phone_number']}",
)
DYNAMIC_QR = Operation(
    'generate_dynamic_qr', '/mpesa/qrcode/v1/generate',
    rq.DynamicQRRequestSchema, rs.DynamicQRResponseSchema,
    lambda v: f"qr:{v['ref_no']}",
)

OPERATIONS = MappingProxyType({
    op.name: op for op in (
        STK_PUSH, STK_QUERY, B2C, B2B, ACCOUNT_BALANCE, TRANSACTION_STATUS,
        REVERSAL, C2B_REGISTER, C2B_SIMULATE, DYNAMIC_QR,
    )
})


def _amount(value: float) -> int:
    return int(math.floor(value))


class PayloadCodec:
    """Builds request bodies and decodes responses for one merchant config."""

    def __init__(self, config: MpesaConfig):
        self.config = config
        self._builders: Dict[str, Callable[[Dict[str, Any], str], Dict[str, Any]]] = {
            STK_PUSH.name: self._build_stk_push,
            STK_QUERY.name: self._build_stk_query,
            B2C.name: self._build_b2c,
            B2B.name: self._build_b2b,
            ACCOUNT_BALANCE.name: self._build_account_balance,
            TRANSACTION_STATUS.name: self._build_transaction_status,
            REVERSAL.name: self._build_reversal,
            C2B_REGISTER.name: self._build_c2b_register,
            C2B_SIMULATE.name: self._build_c2b_simulate,
            DYNAMIC_QR.name: self._build_dynamic_qr,
        }

    # Validation

    def validate(self, operation: Operation, request: Any) -> Dict[str, Any]:
        """
        Check a request object against the operation's rules.

        Returns the validated values (phone numbers normalised, defaults
        applied). Raises ValidationError before any network I/O.
        """
        if request is None:
            request = {}
        if dataclasses.is_dataclass(request) and not isinstance(request, type):
            data = dataclasses.asdict(request)
        else:
            try:
                data = dict(request)
            except (TypeError, ValueError) as exc:
                raise ValidationError(
                    f'Unsupported request type: {type(request).__name__}') from exc

        try:
            values = operation.request_schema().load(data)
        except SchemaValidationError as exc:
            field, messages = next(iter(exc.normalized_messages().items()))
            message = messages[0] if isinstance(messages, list) else str(messages)
            raise ValidationError(message, field=field, messages=exc.normalized_messages()) from exc

        if 'phone_number' in values:
            values['phone_number'] = validate_phone(values['phone_number'])

        if operation is STK_PUSH:
            if not self.config.passkey:
                raise ValidationError("'passkey' is required for STK Push", field='passkey')
            if not (values.get('callback_url') or self.config.callback_url):
                raise ValidationError("'callback_url' is required for STK Push", field='callback_url')
        elif operation is STK_QUERY:
            if not self.config.passkey:
                raise ValidationError("'passkey' is required for STK Query", field='passkey')
        elif operation is C2B_SIMULATE and not self.config.is_sandbox:
            raise ValidationError(
                'C2B simulation is only available in the sandbox environment. '
                'In production, C2B transactions come from real customer payments.'
            )

        if operation.needs_initiator:
            self._assert_initiator_config(operation.name, values)

        return values

    def _assert_initiator_config(self, context: str, values: Dict[str, Any]) -> None:
        """Raise if initiator credentials are not configured."""
        missing = []
        if not self.config.initiator_name:
            missing.append('initiator_name')
        if not self.config.security_credential:
            missing.append('security_credential')
        if not (values.get('result_url') or self.config.result_url):
            missing.append('result_url')
        if not (values.get('timeout_url') or self.config.timeout_url):
            missing.append('timeout_url')
        if missing:
            raise ValidationError(f"[{context}]: missing config - {', '.join(missing)}")

    # Building

    def build(self, operation: Operation, values: Dict[str, Any], timestamp: str) -> Dict[str, Any]:
        return self._builders[operation.name](values, timestamp)

    def password(self, timestamp: str) -> str:
        return generate_password(self.config.shortcode, self.config.passkey, timestamp)

    def _urls(self, values):
        return {
            'QueueTimeOutURL': values.get('timeout_url') or self.config.timeout_url,
            'ResultURL': values.get('result_url') or self.config.result_url,
        }

    def _build_stk_push(self, values, timestamp):
        phone = values['phone_number']
        return {
            'BusinessShortCode': self.config.shortcode,
            'Password': self.password(timestamp),
            'Timestamp': timestamp,
            'TransactionType': self.config.transaction_type,
            'Amount': _amount(values['amount']),
            'PartyA': phone,
            'PartyB': self.config.shortcode,
            'PhoneNumber': phone,
            'CallBackURL': values.get('callback_url') or self.config.callback_url,
            'AccountReference': values['account_reference'],
            'TransactionDesc': values['transaction_desc'],
        }

    def _build_stk_query(self, values, timestamp):
        return {
            'BusinessShortCode': self.config.shortcode,
            'Password': self.password(timestamp),
            'Timestamp': timestamp,
            'CheckoutRequestID': values['checkout_request_id'],
        }

    def _build_b2c(self, values, timestamp):
        return {
            'InitiatorName': self.config.initiator_name,
            'SecurityCredential': self.config.security_credential,
            'CommandID': values['command_id'],
            'Amount': _amount(values['amount']),
            'PartyA': self.config.shortcode,
            'PartyB': values['phone_number'],
            'Remarks': values['remarks'],
            **self._urls(values),
            'Occasion': values.get('occasion') or '',
        }

    def _build_b2b(self, values, timestamp):
        return {
            'Initiator': self.config.initiator_name,
            'SecurityCredential': self.config.security_credential,
            'CommandID': values['command_id'],
            'Amount': _amount(values['amount']),
            'PartyA': self.config.shortcode,
            'PartyB': values['party_b'],
            'SenderIdentifierType': values['sender_identifier_type'],
            'RecieverIdentifierType': values['receiver_identifier_type'],
            'Remarks': values['remarks'],
            'AccountReference': values['account_reference'],
            **self._urls(values),
        }

    def _build_account_balance(self, values, timestamp):
        return {
            'Initiator': self.config.initiator_name,
            'SecurityCredential': self.config.security_credential,
            'CommandID': 'AccountBalance',
            'PartyA': values.get('party_a') or self.config.shortcode,
            'IdentifierType': values.get('identifier_type') or self.config.identifier_type,
            'Remarks': values['remarks'],
            **self._urls(values),
        }

    def _build_transaction_status(self, values, timestamp):
        return {
            'Initiator': self.config.initiator_name,
            'SecurityCredential': self.config.security_credential,
            'CommandID': 'TransactionStatusQuery',
            'TransactionID': values['transaction_id'],
            'PartyA': values.get('party_a') or self.config.shortcode,
            'IdentifierType': values.get('identifier_type') or self.config.identifier_type,
            'Remarks': values['remarks'],
            'Occasion': values.get('occasion') or '',
            **self._urls(values),
        }

    def _build_reversal(self, values, timestamp):
        return {
            'Initiator': self.config.initiator_name,
            'SecurityCredential': self.config.security_credential,
            'CommandID': 'TransactionReversal',
            'TransactionID': values['transaction_id'],
            'Amount': _amount(values['amount']),
            'ReceiverParty': values.get('receiver_party') or self.config.shortcode,
            'RecieverIdentifierType': values['receiver_identifier_type'],
            'Remarks': values['remarks'],
            'Occasion': values.get('occasion') or '',
            **self._urls(values),
        }

    def _build_c2b_register(self, values, timestamp):
        return {
            'ShortCode': values.get('short_code') or self.config.shortcode,
            'ResponseType': values['response_type'],
            'ConfirmationURL': values['confirmation_url'],
            'ValidationURL': values['validation_url'],
        }

    def _build_c2b_simulate(self, values, timestamp):
        return {
            'ShortCode': values.get('short_code') or self.config.shortcode,
            'CommandID': values['command_id'],
            'Amount': _amount(values['amount']),
            'Msisdn': values['phone_number'],
            'BillRefNumber': values['bill_ref_number'],
        }

    def _build_dynamic_qr(self, values, timestamp):
        return {
            'MerchantName': values['merchant_name'],
            'RefNo': values['ref_no'],
            'Amount': _amount(values['amount']),
            'TrxCode': values['transaction_type'],
            'CPI': values['credit_party_identifier'],
            'Size': values.get('size') or '300',
        }

    # Decoding

    def decode(self, operation: Operation, data: Dict[str, Any], status_code: int = 200):
        schema = operation.response_schema()
        try:
            values = schema.load(data)
        except SchemaValidationError as exc:
            raise ApiError(
                f'[{operation.name}] unexpected response shape: {exc.normalized_messages()}',
                status_code=status_code,
                body=json.dumps(data),
            ) from exc
        return schema.model(**values, raw=data)
