import httpx
import logging
from decimal import Decimal
from datetime import datetime, timedelta, timezone
from typing import Any

from ledger import Status
from settings import MercadoPagoSettings
from .base import PayerInfo, SubmittedCharge, ProcessorError


logger = logging.getLogger('pix-api-mercadopago')


# https://www.mercadopago.com.br/developers/en/reference/payments/_payments_id/get
STATUS_MAP: dict[str, Status] = {
    'pending': 'pending',
    'in_process': 'pending',
    'in_mediation': 'pending',
    'authorized': 'pending',
    'approved': 'approved',
    'rejected': 'rejected',
    'cancelled': 'rejected',
    'refunded': 'rejected',
    'charged_back': 'rejected',
}


def map_status(status: Any) -> Status:
    mapped = STATUS_MAP.get(status) if isinstance(status, str) else None
    if mapped is None:
        raise ProcessorError(f'unknown mercado pago status "{status}"')
    return mapped


class MercadoPagoProcessor:
    name = 'mercadopago'

    def __init__(self, client: httpx.AsyncClient, settings: MercadoPagoSettings, ttl: timedelta):
        self.client = client
        self.settings = settings
        self.ttl = ttl

    @classmethod
    def from_settings(cls, settings: MercadoPagoSettings, ttl: timedelta) -> 'MercadoPagoProcessor':
        assert settings.access_token is not None
        client = httpx.AsyncClient(
            base_url=settings.base_url,
            headers={'Authorization': f'Bearer {settings.access_token}'},
            timeout=settings.connection_timeout_sec
        )
        return cls(client, settings, ttl)

    async def submit(
        self,
        payment_id: str,
        amount: Decimal,
        description: str,
        payer: PayerInfo | None = None
    ) -> SubmittedCharge:
        payer = payer or PayerInfo()
        body: dict[str, Any] = {
            'transaction_amount': float(amount),
            'description': description,
            'payment_method_id': 'pix',
            'external_reference': payment_id,
            'payer': {
                'email': payer.email or self.settings.default_payer_email,
                'first_name': payer.first_name,
                'last_name': payer.last_name
            },
            'date_of_expiration': (datetime.now(timezone.utc) + self.ttl).isoformat(timespec='milliseconds')
        }
        if self.settings.notification_url:
            body['notification_url'] = self.settings.notification_url

        # https://www.mercadopago.com.br/developers/en/reference/payments/_payments/post
        response_json = await self._request(
            'POST', '/v1/payments',
            headers={'X-Idempotency-Key': payment_id},
            json=body
        )

        try:
            external_id = str(response_json['id'])
            payload = response_json['point_of_interaction']['transaction_data']['qr_code']
            status = map_status(response_json['status'])
        except (KeyError, TypeError) as e:
            raise ProcessorError(f'malformed mercado pago payment: missing {e}')

        if not isinstance(payload, str) or not payload:
            raise ProcessorError(f'mercado pago payment {external_id} has no pix qr code')

        logger.info(f'mercado pago payment {external_id} created for payment {payment_id}')
        return SubmittedCharge(external_id=external_id, payload=payload, status=status)

    async def fetch_status(self, external_id: str) -> Status:
        response_json = await self._request('GET', f'/v1/payments/{external_id}')

        try:
            return map_status(response_json['status'])
        except (KeyError, TypeError) as e:
            raise ProcessorError(f'malformed mercado pago payment {external_id}: missing {e}')

    async def aclose(self):
        await self.client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise ProcessorError(f'mercado pago request {method} {url} failed: {e!r}')

        if not response.is_success:
            raise ProcessorError(f'got status {response.status_code} from mercado pago {method} {url}')

        try:
            response_json = response.json()
        except ValueError:
            raise ProcessorError(f'mercado pago {method} {url} returned non-json body')

        if not isinstance(response_json, dict):
            raise ProcessorError(f'mercado pago {method} {url} returned unexpected body')

        return response_json
