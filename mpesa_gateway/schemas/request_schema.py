"""
Outbound Request Validation Schemas
"""

from marshmallow import EXCLUDE, Schema, fields, validate

QR_SIZES = ('300', '500')
C2B_RESPONSE_TYPES = ('Completed', 'Cancelled')

_required_text = validate.Length(min=1)


class _RequestSchema(Schema):
    class Meta:
        unknown = EXCLUDE


class StkPushRequestSchema(_RequestSchema):
    amount = fields.Float(required=True, validate=validate.Range(
        min=1, error='Amount must be at least 1 KES'))
    phone_number = fields.Str(required=True, validate=_required_text)
    account_reference = fields.Str(required=True, validate=validate.Length(
        min=1, max=13, error='Account reference is required and must be 13 characters or less'))
    transaction_desc = fields.Str(required=True, validate=validate.Length(
        min=1, error='Transaction description is required'))
    callback_url = fields.Str(allow_none=True, load_default=None)


class StkQueryRequestSchema(_RequestSchema):
    checkout_request_id = fields.Str(required=True, validate=validate.Length(
        min=1, error='CheckoutRequestID is required'))


class B2CRequestSchema(_RequestSchema):
    amount = fields.Float(required=True, validate=validate.Range(
        min=10, error='B2C amount must be at least 10'))
    phone_number = fields.Str(required=True, validate=_required_text)
    remarks = fields.Str(required=True, validate=validate.Length(
        min=1, max=100, error='B2C remarks must be between 1 and 100 characters'))
    command_id = fields.Str(required=True, validate=validate.OneOf(
        ('SalaryPayment', 'BusinessPayment', 'PromotionPayment')))
    occasion = fields.Str(load_default='')
    result_url = fields.Str(allow_none=True, load_default=None)
    timeout_url = fields.Str(allow_none=True, load_default=None)


class B2BRequestSchema(_RequestSchema):
    amount = fields.Float(required=True, validate=validate.Range(
        min=1, error='B2B amount must be greater than 0'))
    party_b = fields.Str(required=True, validate=_required_text)
    remarks = fields.Str(required=True, validate=validate.Length(
        min=1, max=100, error='B2B remarks must be between 1 and 100 characters'))
    account_reference = fields.Str(required=True, validate=validate.Length(
        min=1, max=13, error='Account reference is required and must be 13 characters or less'))
    command_id = fields.Str(required=True, validate=_required_text)
    sender_identifier_type = fields.Str(load_default='4')
    receiver_identifier_type = fields.Str(load_default='4')
    result_url = fields.Str(allow_none=True, load_default=None)
    timeout_url = fields.Str(allow_none=True, load_default=None)


class AccountBalanceRequestSchema(_RequestSchema):
    party_a = fields.Str(allow_none=True, load_default=None)
    identifier_type = fields.Str(allow_none=True, load_default=None)
    remarks = fields.Str(load_default='Account balance query')
    result_url = fields.Str(allow_none=True, load_default=None)
    timeout_url = fields.Str(allow_none=True, load_default=None)


class TransactionStatusRequestSchema(_RequestSchema):
    transaction_id = fields.Str(required=True, validate=validate.Length(
        min=1, error='Transaction ID is required'))
    party_a = fields.Str(allow_none=True, load_default=None)
    identifier_type = fields.Str(allow_none=True, load_default=None)
    remarks = fields.Str(load_default='Transaction status query')
    occasion = fields.Str(load_default='')
    result_url = fields.Str(allow_none=True, load_default=None)
    timeout_url = fields.Str(allow_none=True, load_default=None)


class ReversalRequestSchema(_RequestSchema):
    transaction_id = fields.Str(required=True, validate=validate.Length(
        min=1, error='Transaction ID is required'))
    amount = fields.Float(required=True, validate=validate.Range(
        min=1, error='Amount must be greater than 0'))
    receiver_party = fields.Str(allow_none=True, load_default=None)
    receiver_identifier_type = fields.Str(load_default='11')
    remarks = fields.Str(load_default='Transaction reversal')
    occasion = fields.Str(load_default='')
    result_url = fields.Str(allow_none=True, load_default=None)
    timeout_url = fields.Str(allow_none=True, load_default=None)


class C2BRegisterRequestSchema(_RequestSchema):
    confirmation_url = fields.Str(required=True, validate=validate.Length(
        min=1, error='Both confirmation_url and validation_url are required'))
    validation_url = fields.Str(required=True, validate=validate.Length(
        min=1, error='Both confirmation_url and validation_url are required'))
    response_type = fields.Str(required=True, validate=validate.OneOf(C2B_RESPONSE_TYPES))
    short_code = fields.Str(allow_none=True, load_default=None)


class C2BSimulateRequestSchema(_RequestSchema):
    amount = fields.Float(required=True, validate=validate.Range(
        min=1, error='Amount must be at least 1 KES'))
    phone_number = fields.Str(required=True, validate=_required_text)
    bill_ref_number = fields.Str(required=True, validate=validate.Length(
        min=1, error='Bill reference number is required'))
    command_id = fields.Str(load_default='CustomerPayBillOnline', validate=validate.OneOf(
        ('CustomerPayBillOnline', 'CustomerBuyGoodsOnline')))
    short_code = fields.Str(allow_none=True, load_default=None)


class DynamicQRRequestSchema(_RequestSchema):
    merchant_name = fields.Str(required=True, validate=validate.Length(
        min=1, max=26, error='Merchant name is required and must be 26 characters or less'))
    ref_no = fields.Str(required=True, validate=validate.Length(
        min=1, max=12, error='Reference number is required and must be 12 characters or less'))
    amount = fields.Float(required=True, validate=validate.Range(
        min=1, max=999999, error='Amount must be between 1 and 999999 KES'))
    transaction_type = fields.Str(required=True, validate=validate.OneOf(
        ('BG', 'WA', 'PB', 'SM', 'SB')))
    credit_party_identifier = fields.Str(required=True, validate=_required_text)
    size = fields.Str(allow_none=True, load_default=None, validate=validate.OneOf(
        QR_SIZES, error="Size must be either '300' or '500'"))
