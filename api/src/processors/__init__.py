from .base import PaymentProcessor, PayerInfo, SubmittedCharge, ProcessorError
from .mock import MockProcessor
from .mercadopago import MercadoPagoProcessor, map_status
