from decimal import Decimal, InvalidOperation
from dataclasses import dataclass
from typing import Any


# https://www.bcb.gov.br/content/estabilidadefinanceira/pix/Regulamento_Pix/II_ManualdePadroesparaIniciacaodoPix.pdf
PAYLOAD_FORMAT_INDICATOR = '00'
POINT_OF_INITIATION_METHOD = '01'
MERCHANT_ACCOUNT_INFORMATION = '26'
MERCHANT_CATEGORY_CODE = '52'
TRANSACTION_CURRENCY = '53'
TRANSACTION_AMOUNT = '54'
COUNTRY_CODE = '58'
MERCHANT_NAME = '59'
MERCHANT_CITY = '60'
ADDITIONAL_DATA_FIELD = '62'
CRC16 = '63'

GUI = '00'
PIX_KEY = '01'
REFERENCE_LABEL = '05'

PIX_GUI = 'br.gov.bcb.pix'
CURRENCY_BRL = '986'

NESTED_TEMPLATES = (MERCHANT_ACCOUNT_INFORMATION, ADDITIONAL_DATA_FIELD)

MAX_VALUE_LENGTH = 99
MAX_KEY_LENGTH = 77
MAX_NAME_LENGTH = 25
MAX_CITY_LENGTH = 15
MAX_REFERENCE_LABEL_LENGTH = 25

NO_REFERENCE_LABEL = '***'


class EncodingError(ValueError):
    kind = 'EncodingError'


def crc16(data: str | bytes) -> str:
    """CRC-16/CCITT-FALSE: poly 0x1021, init 0xFFFF, без отражения и финального XOR"""
    if isinstance(data, str):
        data = data.encode()

    crc = 0xFFFF
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF

    return f'{crc:04X}'


def encode_field(tag: str, value: str) -> str:
    length = len(value.encode())
    if length > MAX_VALUE_LENGTH:
        raise EncodingError(f'field {tag} is {length} bytes long, at most {MAX_VALUE_LENGTH} allowed')

    return f'{tag}{length:02d}{value}'


def format_amount(amount: Decimal | int | float | str) -> str:
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise EncodingError(f'amount "{amount}" is not a number')

    if not value.is_finite() or value <= 0:
        raise EncodingError(f'amount "{amount}" must be a positive number')

    try:
        quantized = value.quantize(Decimal('0.01'))
    except InvalidOperation:
        raise EncodingError(f'amount "{amount}" is too large')

    if quantized != value:
        raise EncodingError(f'amount "{amount}" is not representable with 2 decimal digits')

    return f'{quantized:.2f}'


def _check_length(field: str, value: str, limit: int):
    length = len(value.encode())
    if length > limit:
        raise EncodingError(f'{field} is {length} bytes long, at most {limit} allowed')


def build_payload(
    amount: Decimal | int | float | str,
    merchant_key: str,
    merchant_name: str,
    merchant_city: str,
    reference_label: str = NO_REFERENCE_LABEL
) -> str:
    if not merchant_key.isascii():
        raise EncodingError('merchant key must be ASCII')
    if not merchant_key:
        raise EncodingError('merchant key must not be empty')

    _check_length('merchant key', merchant_key, MAX_KEY_LENGTH)
    _check_length('merchant name', merchant_name, MAX_NAME_LENGTH)
    _check_length('merchant city', merchant_city, MAX_CITY_LENGTH)

    reference_label = reference_label or NO_REFERENCE_LABEL
    _check_length('reference label', reference_label, MAX_REFERENCE_LABEL_LENGTH)

    payload = ''.join((
        encode_field(PAYLOAD_FORMAT_INDICATOR, '01'),
        encode_field(POINT_OF_INITIATION_METHOD, '12'),
        encode_field(MERCHANT_ACCOUNT_INFORMATION, ''.join((
            encode_field(GUI, PIX_GUI),
            encode_field(PIX_KEY, merchant_key)
        ))),
        encode_field(MERCHANT_CATEGORY_CODE, '0000'),
        encode_field(TRANSACTION_CURRENCY, CURRENCY_BRL),
        encode_field(TRANSACTION_AMOUNT, format_amount(amount)),
        encode_field(COUNTRY_CODE, 'BR'),
        encode_field(MERCHANT_NAME, merchant_name),
        encode_field(MERCHANT_CITY, merchant_city),
        encode_field(ADDITIONAL_DATA_FIELD, encode_field(REFERENCE_LABEL, reference_label)),
        f'{CRC16}04'
    ))

    # CRC считается по всей строке, включая "6304"
    return payload + crc16(payload)


def _split_fields(data: bytes) -> dict[str, str]:
    fields: dict[str, str] = {}
    position = 0

    while position < len(data):
        header = data[position:position + 4]
        if len(header) < 4 or not header.isdigit():
            raise EncodingError(f'malformed field header at byte {position}')

        tag = header[:2].decode()
        length = int(header[2:])
        value = data[position + 4:position + 4 + length]
        if len(value) != length:
            raise EncodingError(f'field {tag} is truncated')

        try:
            fields[tag] = value.decode()
        except UnicodeDecodeError:
            raise EncodingError(f'field {tag} is not valid UTF-8')
        position += 4 + length

    return fields


def parse_payload(payload: str) -> dict[str, Any]:
    """
    Разбирает payload обратно в словарь `tag -> value`.
    Вложенные шаблоны (26, 62) возвращаются как словари.
    Проверяет контрольную сумму
    """
    if len(payload) < 8 or payload[-8:-4] != f'{CRC16}04':
        raise EncodingError('payload does not end with a CRC field')

    expected = crc16(payload[:-4])
    if payload[-4:].upper() != expected:
        raise EncodingError(f'CRC mismatch: got {payload[-4:]}, expected {expected}')

    fields: dict[str, Any] = _split_fields(payload.encode())
    for tag in NESTED_TEMPLATES:
        if tag in fields:
            fields[tag] = _split_fields(fields[tag].encode())

    return fields


@dataclass(frozen=True)
class MerchantIdentity:
    key: str
    name: str
    city: str

    def build_payload(self, amount: Decimal | int | float | str, reference_label: str = NO_REFERENCE_LABEL) -> str:
        return build_payload(amount, self.key, self.name, self.city, reference_label)

    def validate(self):
        # Ошибка конфигурации должна всплывать при старте, а не на каждом запросе
        self.build_payload(Decimal('0.01'))
