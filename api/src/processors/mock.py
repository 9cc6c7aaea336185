import logging
from decimal import Decimal
from datetime import datetime, timedelta
from typing import Callable

from pix import MerchantIdentity
from ledger import Status
from .base import PayerInfo, SubmittedCharge, ProcessorError


logger = logging.getLogger('pix-api-mock-processor')


class MockProcessor:
    """
    Локальная замена внешнего процессора: payload строится прямо здесь.

    `approve_after` - вспомогательная настройка только для тестов и демо,
    по умолчанию выключена, и статус всегда остается `pending`
    """
    name = 'mock'

    def __init__(
        self,
        merchant: MerchantIdentity,
        approve_after: timedelta | None = None,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.merchant = merchant
        self.approve_after = approve_after
        self.clock = clock
        self._submitted_at: dict[str, datetime] = {}

    async def submit(
        self,
        payment_id: str,
        amount: Decimal,
        description: str,
        payer: PayerInfo | None = None
    ) -> SubmittedCharge:
        external_id = f'mock-{payment_id}'
        payload = self.merchant.build_payload(amount, reference_label=payment_id)
        self._submitted_at[external_id] = self.clock()

        logger.info(f'mock charge {external_id} for {amount} created')
        return SubmittedCharge(external_id=external_id, payload=payload, status='pending')

    async def fetch_status(self, external_id: str) -> Status:
        submitted_at = self._submitted_at.get(external_id)
        if submitted_at is None:
            raise ProcessorError(f'unknown mock charge {external_id}')

        if self.approve_after is not None and self.clock() - submitted_at >= self.approve_after:
            return 'approved'
        return 'pending'

    def forget(self, external_id: str):
        self._submitted_at.pop(external_id, None)

    async def aclose(self):
        self._submitted_at.clear()
