"""
Value objects exchanged with the Daraja API.

Requests are built by the caller and validated by the codec; responses and
parsed callbacks are produced by the library. All of them are immutable.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


# Requests

@dataclass(frozen=True)
class StkPushRequest:
    amount: float
    phone_number: str
    account_reference: str
    transaction_desc: str
    callback_url: Optional[str] = None


@dataclass(frozen=True)
class StkQueryRequest:
    checkout_request_id: str


@dataclass(frozen=True)
class B2CRequest:
    amount: float
    phone_number: str
    remarks: str
    command_id: str = 'BusinessPayment'
    occasion: str = ''
    result_url: Optional[str] = None
    timeout_url: Optional[str] = None


@dataclass(frozen=True)
class B2BRequest:
    amount: float
    party_b: str
    remarks: str
    account_reference: str
    command_id: str = 'BusinessPayBill'
    sender_identifier_type: str = '4'
    receiver_identifier_type: str = '4'
    result_url: Optional[str] = None
    timeout_url: Optional[str] = None


@dataclass(frozen=True)
class AccountBalanceRequest:
    party_a: Optional[str] = None
    identifier_type: Optional[str] = None
    remarks: str = 'Account balance query'
    result_url: Optional[str] = None
    timeout_url: Optional[str] = None


@dataclass(frozen=True)
class TransactionStatusRequest:
    transaction_id: str
    party_a: Optional[str] = None
    identifier_type: Optional[str] = None
    remarks: str = 'Transaction status query'
    occasion: str = ''
    result_url: Optional[str] = None
    timeout_url: Optional[str] = None


@dataclass(frozen=True)
class ReversalRequest:
    transaction_id: str
    amount: float
    receiver_party: Optional[str] = None
    receiver_identifier_type: str = '11'
    remarks: str = 'Transaction reversal'
    occasion: str = ''
    result_url: Optional[str] = None
    timeout_url: Optional[str] = None


@dataclass(frozen=True)
class C2BRegisterRequest:
    confirmation_url: str
    validation_url: str
    response_type: str = 'Completed'
    short_code: Optional[str] = None


@dataclass(frozen=True)
class C2BSimulateRequest:
    amount: float
    phone_number: str
    bill_ref_number: str
    command_id: str = 'CustomerPayBillOnline'
    short_code: Optional[str] = None


@dataclass(frozen=True)
class DynamicQRRequest:
    merchant_name: str
    ref_no: str
    amount: float
    transaction_type: str
    credit_party_identifier: str
    size: Optional[str] = None


# Responses

@dataclass(frozen=True)
class StkPushResponse:
    merchant_request_id: str
    checkout_request_id: str
    response_code: str
    response_description: str
    customer_message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class StkQueryResponse:
    response_code: str
    response_description: str
    merchant_request_id: str
    checkout_request_id: str
    result_code: Optional[str] = None
    result_desc: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class ConversationResponse:
    """Acknowledgement of an asynchronous request; the outcome arrives at ResultURL."""
    conversation_id: str
    originator_conversation_id: str
    response_code: str
    response_description: str
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


class B2CResponse(ConversationResponse):
    pass


class B2BResponse(ConversationResponse):
    pass


class AccountBalanceResponse(ConversationResponse):
    pass


class TransactionStatusResponse(ConversationResponse):
    pass


class ReversalResponse(ConversationResponse):
    pass


@dataclass(frozen=True)
class C2BRegisterResponse:
    originator_conversation_id: Optional[str]
    response_code: str
    response_description: str
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class C2BSimulateResponse:
    conversation_id: Optional[str]
    originator_conversation_id: Optional[str]
    response_description: str
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class DynamicQRResponse:
    response_code: str
    response_description: str
    request_id: Optional[str] = None
    qr_code: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


# Callbacks

class CallbackKind(str, Enum):
    STK = 'stk'
    C2B = 'c2b'
    B2C = 'b2c'
    B2B = 'b2b'
    ACCOUNT_BALANCE = 'account_balance'
    TRANSACTION_STATUS = 'transaction_status'
    REVERSAL = 'reversal'


@dataclass(frozen=True)
class ParsedCallback:
    """Normalized STK Push result; is_success holds iff result_code == 0."""
    merchant_request_id: str
    checkout_request_id: str
    result_code: int
    result_description: str
    is_success: bool
    amount: Optional[float] = None
    mpesa_receipt_number: Optional[str] = None
    transaction_date: Optional[str] = None
    phone_number: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def receipt_number(self) -> Optional[str]:
        return self.mpesa_receipt_number


@dataclass(frozen=True)
class ParsedC2BCallback:
    transaction_type: str
    transaction_id: str
    transaction_time: str
    amount: float
    business_short_code: str
    bill_ref_number: str
    msisdn: str
    invoice_number: Optional[str] = None
    org_account_balance: Optional[str] = None
    third_party_trans_id: Optional[str] = None
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None


@dataclass(frozen=True)
class ResultCallback:
    """Common part of the Result-shaped callbacks (B2C, B2B, balance, status, reversal)."""
    is_success: bool
    result_code: int
    result_description: str
    conversation_id: Optional[str] = None
    originator_conversation_id: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class B2CResult(ResultCallback):
    transaction_id: Optional[str] = None
    amount: Optional[float] = None
    recipient: Optional[str] = None
    charges: Optional[float] = None


@dataclass(frozen=True)
class B2BResult(ResultCallback):
    transaction_id: Optional[str] = None
    amount: Optional[float] = None


@dataclass(frozen=True)
class AccountBalanceResult(ResultCallback):
    working_balance: Optional[float] = None
    available_balance: Optional[float] = None
    booked_balance: Optional[float] = None


@dataclass(frozen=True)
class TransactionStatusResult(ResultCallback):
    receipt_no: Optional[str] = None
    amount: Optional[float] = None
    completed_time: Optional[str] = None


@dataclass(frozen=True)
class ReversalResult(ResultCallback):
    transaction_id: Optional[str] = None
