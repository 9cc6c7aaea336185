from .payload import (
    EncodingError,
    MerchantIdentity,
    NO_REFERENCE_LABEL,
    build_payload,
    crc16,
    encode_field,
    format_amount,
    parse_payload,
)
from .qr import render_qr_code
