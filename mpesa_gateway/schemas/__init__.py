from mpesa_gateway.schemas.callback_schema import (
    C2BCallbackSchema,
    MPesaCallbackSchema,
    ResultCallbackSchema,
)
from mpesa_gateway.schemas.request_schema import C2B_RESPONSE_TYPES, QR_SIZES

__all__ = [
    'MPesaCallbackSchema',
    'ResultCallbackSchema',
    'C2BCallbackSchema',
    'QR_SIZES',
    'C2B_RESPONSE_TYPES',
]
