"""
M-Pesa Callback Validation Schemas
One schema per raw callback shape delivered by Safaricom.
"""

from marshmallow import EXCLUDE, Schema, fields, pre_load


class _CallbackSchema(Schema):
    class Meta:
        unknown = EXCLUDE


class MetadataItemSchema(_CallbackSchema):
    Name = fields.Str(required=True)
    Value = fields.Raw(load_default=None)


class CallbackMetadataSchema(_CallbackSchema):
    Item = fields.List(fields.Nested(MetadataItemSchema), load_default=list)


class StkCallbackBodySchema(_CallbackSchema):
    MerchantRequestID = fields.Str(required=True)
    CheckoutRequestID = fields.Str(required=True)
    ResultCode = fields.Int(required=True)
    ResultDesc = fields.Str(load_default='')
    CallbackMetadata = fields.Nested(CallbackMetadataSchema, load_default=None)


class StkBodySchema(_CallbackSchema):
    stkCallback = fields.Nested(StkCallbackBodySchema, required=True)


class MPesaCallbackSchema(_CallbackSchema):
    """STK Push callback: {"Body": {"stkCallback": {...}}}"""
    Body = fields.Nested(StkBodySchema, required=True)


class ResultParameterSchema(_CallbackSchema):
    Key = fields.Str(required=True)
    Value = fields.Raw(load_default=None)


class ResultParametersSchema(_CallbackSchema):
    ResultParameter = fields.List(fields.Nested(ResultParameterSchema), load_default=list)

    @pre_load
    def wrap_single_parameter(self, data, **kwargs):
        # A lone parameter is sent as an object rather than a one-element list
        if isinstance(data, dict) and isinstance(data.get('ResultParameter'), dict):
            data = dict(data, ResultParameter=[data['ResultParameter']])
        return data


class ResultBodySchema(_CallbackSchema):
    ResultType = fields.Int(load_default=None)
    ResultCode = fields.Int(required=True)
    ResultDesc = fields.Str(load_default='')
    OriginatorConversationID = fields.Str(load_default=None)
    ConversationID = fields.Str(load_default=None)
    TransactionID = fields.Str(load_default=None)
    ResultParameters = fields.Nested(ResultParametersSchema, load_default=None)


class ResultCallbackSchema(_CallbackSchema):
    """B2C / B2B / account balance / transaction status / reversal: {"Result": {...}}"""
    Result = fields.Nested(ResultBodySchema, required=True)


class _Text(fields.Field):
    """Numbers such as MSISDN or shortcode may arrive unquoted."""

    def _deserialize(self, value, attr, data, **kwargs):
        if value is None:
            return None
        return str(value)


class C2BCallbackSchema(_CallbackSchema):
    """C2B validation / confirmation: flat body keyed by TransID."""
    TransactionType = fields.Str(load_default='')
    TransID = fields.Str(required=True)
    TransTime = _Text(load_default='')
    TransAmount = fields.Float(required=True)
    BusinessShortCode = _Text(load_default='')
    BillRefNumber = fields.Str(load_default='')
    InvoiceNumber = fields.Str(load_default=None)
    OrgAccountBalance = _Text(load_default=None)
    ThirdPartyTransID = fields.Str(load_default=None)
    MSISDN = _Text(load_default='')
    FirstName = fields.Str(load_default=None)
    MiddleName = fields.Str(load_default=None)
    LastName = fields.Str(load_default=None)
