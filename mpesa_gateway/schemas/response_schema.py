"""
Daraja Response Decoding Schemas
"""

from marshmallow import EXCLUDE, Schema, fields, pre_load

from mpesa_gateway import models


class Code(fields.Field):
    """Daraja codes arrive as either strings or numbers; keep them as strings."""

    def _deserialize(self, value, attr, data, **kwargs):
        if value is None:
            return None
        return str(value)


class _ResponseSchema(Schema):
    model = None

    class Meta:
        unknown = EXCLUDE


class StkPushResponseSchema(_ResponseSchema):
    model = models.StkPushResponse

    merchant_request_id = fields.Str(data_key='MerchantRequestID', required=True)
    checkout_request_id = fields.Str(data_key='CheckoutRequestID', required=True)
    response_code = Code(data_key='ResponseCode', required=True)
    response_description = fields.Str(data_key='ResponseDescription', load_default='')
    customer_message = fields.Str(data_key='CustomerMessage', load_default=None)


class StkQueryResponseSchema(_ResponseSchema):
    model = models.StkQueryResponse

    response_code = Code(data_key='ResponseCode', required=True)
    response_description = fields.Str(data_key='ResponseDescription', load_default='')
    merchant_request_id = fields.Str(data_key='MerchantRequestID', load_default='')
    checkout_request_id = fields.Str(data_key='CheckoutRequestID', load_default='')
    result_code = Code(data_key='ResultCode', load_default=None)
    result_desc = fields.Str(data_key='ResultDesc', load_default=None)


class ConversationResponseSchema(_ResponseSchema):
    model = models.ConversationResponse

    conversation_id = fields.Str(data_key='ConversationID', load_default='')
    originator_conversation_id = fields.Str(data_key='OriginatorConversationID', load_default='')
    response_code = Code(data_key='ResponseCode', required=True)
    response_description = fields.Str(data_key='ResponseDescription', load_default='')


class B2CResponseSchema(ConversationResponseSchema):
    model = models.B2CResponse


class B2BResponseSchema(ConversationResponseSchema):
    model = models.B2BResponse


class AccountBalanceResponseSchema(ConversationResponseSchema):
    model = models.AccountBalanceResponse


class TransactionStatusResponseSchema(ConversationResponseSchema):
    model = models.TransactionStatusResponse


class ReversalResponseSchema(ConversationResponseSchema):
    model = models.ReversalResponse


class C2BRegisterResponseSchema(_ResponseSchema):
    model = models.C2BRegisterResponse

    originator_conversation_id = fields.Str(data_key='OriginatorConversationID', load_default=None)
    response_code = Code(data_key='ResponseCode', required=True)
    response_description = fields.Str(data_key='ResponseDescription', load_default='')

    @pre_load
    def fix_gateway_typo(self, data, **kwargs):
        # The register endpoint spells it "OriginatorCoversationID"
        if isinstance(data, dict) and 'OriginatorCoversationID' in data \
                and 'OriginatorConversationID' not in data:
            data = dict(data, OriginatorConversationID=data['OriginatorCoversationID'])
        return data


class C2BSimulateResponseSchema(_ResponseSchema):
    model = models.C2BSimulateResponse

    conversation_id = fields.Str(data_key='ConversationID', load_default=None)
    originator_conversation_id = fields.Str(data_key='OriginatorCoversationID', load_default=None)
    response_description = fields.Str(data_key='ResponseDescription', load_default='')

    @pre_load
    def accept_both_spellings(self, data, **kwargs):
        if isinstance(data, dict) and 'OriginatorConversationID' in data \
                and 'OriginatorCoversationID' not in data:
            data = dict(data, OriginatorCoversationID=data['OriginatorConversationID'])
        return data


class DynamicQRResponseSchema(_ResponseSchema):
    model = models.DynamicQRResponse

    response_code = Code(data_key='ResponseCode', required=True)
    response_description = fields.Str(data_key='ResponseDescription', load_default='')
    request_id = fields.Str(data_key='RequestID', load_default=None)
    qr_code = fields.Str(data_key='QRCode', load_default=None)
