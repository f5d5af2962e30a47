"""
M-Pesa callback handling.

Safaricom reports the outcome of asynchronous operations by POSTing JSON to
the URLs supplied with each request. CallbackHandler is transport-agnostic:
the web layer passes the decoded JSON body and, optionally, the source IP
(see ``extract_source_ip``). Each inbound callback goes through

    received -> ip-checked -> parsed -> dedup-checked -> dispatched

Callback shapes
---------------
STK Push            {"Body": {"stkCallback": {...}}}
C2B validation /    flat body keyed by TransID
confirmation
B2C, B2B, account   {"Result": {...}}
balance, status,
reversal

Every webhook must answer HTTP 200 with {"ResultCode": 0|1, "ResultDesc": ...}
or Safaricom will keep redelivering; ``acknowledge`` builds that body and
never raises.
"""

import inspect
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, Union

from marshmallow import ValidationError as SchemaValidationError

from mpesa_gateway import models
from mpesa_gateway.codec import format_transaction_date
from mpesa_gateway.errors import UntrustedSourceError, ValidationError
from mpesa_gateway.models import CallbackKind
from mpesa_gateway.schemas import C2BCallbackSchema, MPesaCallbackSchema, ResultCallbackSchema
from mpesa_gateway.utils.logger import get_logger

logger = get_logger(__name__)

# Safaricom's published callback IP addresses
SAFARICOM_IPS = (
    '196.201.214.200',
    '196.201.214.206',
    '196.201.213.114',
    '196.201.214.207',
    '196.201.214.208',
    '196.201.213.44',
    '196.201.212.127',
    '196.201.212.138',
    '196.201.212.129',
    '196.201.212.136',
    '196.201.212.74',
    '196.201.212.69',
)

# M-Pesa result-code -> readable message
ERROR_MESSAGES = MappingProxyType({
    0: 'Success',
    1: 'Insufficient funds in M-Pesa account',
    17: 'User cancelled the transaction',
    26: 'System internal error',
    1001: 'Unable to lock subscriber, a transaction is already in process',
    1019: 'Transaction expired. No response from user',
    1032: 'Request cancelled by user',
    1037: 'Timeout in sending PIN request',
    2001: 'Wrong PIN entered',
    9999: 'Request cancelled by user',
})


def get_error_message(result_code: int) -> str:
    return ERROR_MESSAGES.get(result_code, f'Transaction failed with code: {result_code}')


def create_callback_response(success: bool = True, message: Optional[str] = None) -> Dict[str, Any]:
    """Body Safaricom expects from every webhook endpoint."""
    return {
        'ResultCode': 0 if success else 1,
        'ResultDesc': message or ('Accepted' if success else 'Rejected'),
    }


def extract_source_ip(headers: Optional[Mapping[str, Any]], remote_addr: Optional[str] = None) -> Optional[str]:
    """
    Pick the callback source IP from request headers.

    First non-empty of X-Forwarded-For, X-Real-IP and the socket address.
    A forwarded-for header listing several hops is ambiguous and skipped.
    """
    lowered = {str(k).lower(): v for k, v in (headers or {}).items()}

    for name in ('x-forwarded-for', 'x-real-ip'):
        value = lowered.get(name)
        if isinstance(value, (list, tuple)):
            value = value[0] if len(value) == 1 else None
        if not value:
            continue
        value = str(value).strip()
        if ',' in value:
            logger.debug('Ignoring multi-value %s header: %s', name, value)
            continue
        if value:
            return value

    return remote_addr or None


MaybeAwaitable = Union[Any, Awaitable[Any]]
Hook = Callable[[Any], MaybeAwaitable]

HOOK_NAMES = (
    'on_callback',
    'on_success',
    'on_failure',
    'on_c2b_validation',
    'on_c2b_confirmation',
    'on_b2c_result',
    'on_b2b_result',
    'on_account_balance',
    'on_transaction_status',
    'on_reversal',
    'on_timeout',
)

RESULT_HOOKS = MappingProxyType({
    CallbackKind.B2C: 'on_b2c_result',
    CallbackKind.B2B: 'on_b2b_result',
    CallbackKind.ACCOUNT_BALANCE: 'on_account_balance',
    CallbackKind.TRANSACTION_STATUS: 'on_transaction_status',
    CallbackKind.REVERSAL: 'on_reversal',
})


async def _noop(data):
    return None


@dataclass
class CallbackOptions:
    """
    Application hooks and callback policy.

    Hooks may be plain functions or coroutines. ``accept_c2b_by_default``
    decides C2B validation when no ``on_c2b_validation`` hook is set: True
    accepts every payment (fail-open), False rejects every payment.
    ``validate_ip`` checks a supplied source IP against ``allowed_ips``.
    Callbacks handed over without an IP are processed unless
    ``require_source_ip`` is set.
    """
    on_callback: Optional[Hook] = None
    on_success: Optional[Hook] = None
    on_failure: Optional[Hook] = None
    on_c2b_validation: Optional[Hook] = None
    on_c2b_confirmation: Optional[Hook] = None
    on_b2c_result: Optional[Hook] = None
    on_b2b_result: Optional[Hook] = None
    on_account_balance: Optional[Hook] = None
    on_transaction_status: Optional[Hook] = None
    on_reversal: Optional[Hook] = None
    on_timeout: Optional[Hook] = None

    validate_ip: bool = True
    require_source_ip: bool = False
    allowed_ips: Sequence[str] = SAFARICOM_IPS
    is_duplicate: Optional[Callable[[str], MaybeAwaitable]] = None
    accept_c2b_by_default: bool = True
    logger: Optional[logging.Logger] = None


async def _resolve(value):
    if inspect.isawaitable(value):
        return await value
    return value


def _number(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _text(value) -> Optional[str]:
    return None if value is None else str(value)


class CallbackHandler:
    """Validates, parses and dispatches inbound M-Pesa callbacks."""

    create_callback_response = staticmethod(create_callback_response)

    def __init__(self, options: Optional[CallbackOptions] = None):
        self.options = options or CallbackOptions()
        self.log = self.options.logger or logger
        self.allowed_ips = frozenset(self.options.allowed_ips or SAFARICOM_IPS)

        self._hooks: Dict[str, Hook] = {
            name: getattr(self.options, name) or _noop for name in HOOK_NAMES
        }
        self._parsers: Dict[CallbackKind, Callable[[Dict[str, Any]], Any]] = {
            CallbackKind.STK: self.parse_callback,
            CallbackKind.C2B: self.parse_c2b_callback,
            CallbackKind.B2C: self.parse_b2c_callback,
            CallbackKind.B2B: self.parse_b2b_callback,
            CallbackKind.ACCOUNT_BALANCE: self.parse_account_balance_callback,
            CallbackKind.TRANSACTION_STATUS: self.parse_transaction_status_callback,
            CallbackKind.REVERSAL: self.parse_reversal_callback,
        }

    def has_hook(self, name: str) -> bool:
        return getattr(self.options, name) is not None

    async def _dispatch(self, name: str, data: Any) -> Any:
        return await _resolve(self._hooks[name](data))

    # IP allow-listing

    def validate_callback_ip(self, ip_address: Optional[str]) -> bool:
        """Check that the callback came from a trusted IP."""
        if not self.options.validate_ip:
            return True
        if not ip_address:
            return not self.options.require_source_ip
        return ip_address in self.allowed_ips

    def _check_source(self, ip_address: Optional[str]) -> None:
        if not self.validate_callback_ip(ip_address):
            self.log.warning('Invalid callback IP: %s', ip_address)
            raise UntrustedSourceError(f'Invalid callback IP: {ip_address}', ip_address=ip_address)

    # Parsing

    def parse(self, kind: CallbackKind, raw: Dict[str, Any]):
        return self._parsers[CallbackKind(kind)](raw)

    @staticmethod
    def _load(schema, raw, kind: CallbackKind) -> Dict[str, Any]:
        try:
            return schema.load(raw)
        except SchemaValidationError as exc:
            raise ValidationError(
                f'Malformed {kind.value} callback: {exc.normalized_messages()}',
                messages=exc.normalized_messages(),
            ) from exc

    def parse_callback(self, raw: Dict[str, Any]) -> models.ParsedCallback:
        """Parse an STK Push callback."""
        stk = self._load(MPesaCallbackSchema(), raw, CallbackKind.STK)['Body']['stkCallback']
        result_code = stk['ResultCode']

        fields: Dict[str, Any] = {}
        metadata = stk.get('CallbackMetadata')
        if result_code == 0 and metadata:
            for item in metadata['Item']:
                name, value = item['Name'], item.get('Value')
                if name == 'Amount':
                    fields['amount'] = _number(value)
                elif name == 'MpesaReceiptNumber':
                    fields['mpesa_receipt_number'] = _text(value)
                elif name == 'TransactionDate':
                    fields['transaction_date'] = format_transaction_date(value)
                elif name == 'PhoneNumber':
                    fields['phone_number'] = _text(value)

        return models.ParsedCallback(
            merchant_request_id=stk['MerchantRequestID'],
            checkout_request_id=stk['CheckoutRequestID'],
            result_code=result_code,
            result_description=stk['ResultDesc'],
            is_success=result_code == 0,
            error_message=None if result_code == 0 else get_error_message(result_code),
            **fields,
        )

    def parse_c2b_callback(self, raw: Dict[str, Any]) -> models.ParsedC2BCallback:
        data = self._load(C2BCallbackSchema(), raw, CallbackKind.C2B)
        return models.ParsedC2BCallback(
            transaction_type=data['TransactionType'],
            transaction_id=data['TransID'],
            transaction_time=data['TransTime'],
            amount=data['TransAmount'],
            business_short_code=data['BusinessShortCode'],
            bill_ref_number=data['BillRefNumber'],
            msisdn=data['MSISDN'],
            invoice_number=data.get('InvoiceNumber'),
            org_account_balance=data.get('OrgAccountBalance'),
            third_party_trans_id=data.get('ThirdPartyTransID'),
            first_name=data.get('FirstName'),
            middle_name=data.get('MiddleName'),
            last_name=data.get('LastName'),
        )

    def _parse_result(self, raw: Dict[str, Any], kind: CallbackKind):
        result = self._load(ResultCallbackSchema(), raw, kind)['Result']
        result_code = result['ResultCode']

        params: Dict[str, Any] = {}
        if result_code == 0 and result.get('ResultParameters'):
            for param in result['ResultParameters']['ResultParameter']:
                params[param['Key']] = param.get('Value')

        common = {
            'is_success': result_code == 0,
            'result_code': result_code,
            'result_description': result['ResultDesc'],
            'conversation_id': result.get('ConversationID'),
            'originator_conversation_id': result.get('OriginatorConversationID'),
            'error_message': None if result_code == 0 else get_error_message(result_code),
        }
        return result, params, common

    def parse_b2c_callback(self, raw: Dict[str, Any]) -> models.B2CResult:
        _, params, common = self._parse_result(raw, CallbackKind.B2C)
        return models.B2CResult(
            **common,
            transaction_id=_text(params.get('TransactionReceipt')),
            amount=_number(params.get('TransactionAmount')),
            recipient=_text(params.get('ReceiverPartyPublicName')),
            charges=_number(params.get('B2CChargesPaidAccountAvailableFunds')),
        )

    def parse_b2b_callback(self, raw: Dict[str, Any]) -> models.B2BResult:
        _, params, common = self._parse_result(raw, CallbackKind.B2B)
        return models.B2BResult(
            **common,
            transaction_id=_text(params.get('TransactionReceipt')),
            amount=_number(params.get('TransactionAmount')),
        )

    def parse_account_balance_callback(self, raw: Dict[str, Any]) -> models.AccountBalanceResult:
        _, params, common = self._parse_result(raw, CallbackKind.ACCOUNT_BALANCE)
        return models.AccountBalanceResult(
            **common,
            working_balance=_number(params.get('WorkingAccountAvailableFunds')),
            available_balance=_number(params.get('AvailableBalance')),
            booked_balance=_number(params.get('BookedBalance')),
        )

    def parse_transaction_status_callback(self, raw: Dict[str, Any]) -> models.TransactionStatusResult:
        _, params, common = self._parse_result(raw, CallbackKind.TRANSACTION_STATUS)
        return models.TransactionStatusResult(
            **common,
            receipt_no=_text(params.get('ReceiptNo')),
            amount=_number(params.get('TransactionAmount')),
            completed_time=_text(params.get('TransCompletedTime')),
        )

    def parse_reversal_callback(self, raw: Dict[str, Any]) -> models.ReversalResult:
        result, _, common = self._parse_result(raw, CallbackKind.REVERSAL)
        return models.ReversalResult(**common, transaction_id=result.get('TransactionID'))

    # Handling

    async def handle_callback(self, raw: Dict[str, Any], ip_address: Optional[str] = None) -> None:
        """Handle an STK Push callback and invoke the matching hooks."""
        self._check_source(ip_address)

        parsed = self.parse_callback(raw)
        self.log.info('Processing STK callback %s (result code %s)',
                      parsed.checkout_request_id, parsed.result_code)

        if self.options.is_duplicate is not None:
            if await _resolve(self.options.is_duplicate(parsed.checkout_request_id)):
                self.log.warning('Duplicate callback detected: %s', parsed.checkout_request_id)
                return

        await self._dispatch('on_callback', parsed)
        await self._dispatch('on_success' if parsed.is_success else 'on_failure', parsed)

    async def handle_c2b_validation(self, raw: Dict[str, Any], ip_address: Optional[str] = None) -> bool:
        """Return True to accept the C2B payment, False to reject it."""
        self._check_source(ip_address)

        parsed = self.parse_c2b_callback(raw)
        self.log.info('Processing C2B validation %s', parsed.transaction_id)

        if not self.has_hook('on_c2b_validation'):
            return self.options.accept_c2b_by_default
        return bool(await self._dispatch('on_c2b_validation', parsed))

    async def handle_c2b_confirmation(self, raw: Dict[str, Any], ip_address: Optional[str] = None) -> None:
        self._check_source(ip_address)

        parsed = self.parse_c2b_callback(raw)
        self.log.info('Processing C2B confirmation %s', parsed.transaction_id)
        await self._dispatch('on_c2b_confirmation', parsed)

    async def handle_result(
            self,
            kind: CallbackKind,
            raw: Dict[str, Any],
            ip_address: Optional[str] = None,
    ) -> models.ResultCallback:
        """Handle a B2C / B2B / balance / status / reversal result callback."""
        kind = CallbackKind(kind)
        if kind not in RESULT_HOOKS:
            raise ValueError(f'{kind.value} callbacks are not Result-shaped')

        self._check_source(ip_address)

        parsed = self.parse(kind, raw)
        self.log.info('Processing %s result %s (result code %s)',
                      kind.value, parsed.conversation_id, parsed.result_code)
        await self._dispatch(RESULT_HOOKS[kind], parsed)
        return parsed

    async def handle_timeout(self, raw: Dict[str, Any], ip_address: Optional[str] = None) -> None:
        """Queue-timeout notification for a B2C / B2B / balance / status / reversal request."""
        self._check_source(ip_address)
        self.log.warning('Queue timeout received: %s', raw)
        await self._dispatch('on_timeout', raw)

    # Acknowledgement

    async def acknowledge(
            self,
            handling: Awaitable[Any],
            failure_message: str = 'Processing failed',
            success_message: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Await a ``handle_*`` coroutine and turn its outcome into the webhook
        response body. Errors are logged and reported as ResultCode 1.
        """
        try:
            outcome = await handling
        except UntrustedSourceError:
            return create_callback_response(False, 'Untrusted source')
        except ValidationError as exc:
            self.log.error('Rejected malformed callback: %s', exc)
            return create_callback_response(False, 'Invalid payload')
        except Exception:
            self.log.exception('Callback handling error')
            return create_callback_response(False, failure_message)

        if isinstance(outcome, bool):
            return create_callback_response(outcome, 'Accepted' if outcome else 'Rejected')
        if isinstance(outcome, models.ResultCallback):
            return create_callback_response(outcome.is_success, success_message)
        return create_callback_response(True, success_message)
