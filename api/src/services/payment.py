import logging
from datetime import timedelta
from typing import Any
from dataclasses import dataclass

from pix import MerchantIdentity
from ledger import PaymentLedger, PaymentRecord, Status, NotFound, InvalidTransition, SweepResult
from processors import PaymentProcessor, MockProcessor, MercadoPagoProcessor, PayerInfo, ProcessorError
from settings import Settings, MerchantSettings, MercadoPagoSettings


logger = logging.getLogger('pix-api-payment-service')


@dataclass(frozen=True)
class PaymentService:
    ledger: PaymentLedger
    processor: PaymentProcessor
    fallback: MockProcessor

    async def create_charge(
        self,
        amount: Any,
        description: str | None = None,
        payer: PayerInfo | None = None
    ) -> PaymentRecord:
        value = self.ledger.check_amount(amount)
        description = description or f'Pagamento PIX de R$ {value:.2f}'
        self.ledger.check_description(description)

        payment_id = self.ledger.issue_id()
        try:
            using_fallback = False
            try:
                charge = await self.processor.submit(payment_id, value, description, payer)
            except ProcessorError as e:
                # Плательщик все равно должен получить рабочий payload,
                # запись помечается флагом `using_fallback`
                logger.warning(f'processor "{self.processor.name}" failed for payment {payment_id}, using fallback: {e}')
                charge = await self.fallback.submit(payment_id, value, description, payer)
                using_fallback = True

            record = self.ledger.create_charge(
                value,
                description,
                payment_id=payment_id,
                payload=charge.payload,
                external_ref=charge.external_id,
                using_fallback=using_fallback
            )
        except BaseException:
            self.ledger.release_id(payment_id)
            raise

        if charge.status != 'pending':
            record = self.ledger.record_status(record.id, charge.status)

        return record

    def get_status(self, payment_id: str) -> PaymentRecord:
        return self.ledger.get_status(payment_id)

    def list_payments(self) -> list[PaymentRecord]:
        return self.ledger.list_records()

    def approve(self, payment_id: str) -> PaymentRecord:
        return self.ledger.mark_approved(payment_id)

    def reject(self, payment_id: str) -> PaymentRecord:
        return self.ledger.mark_rejected(payment_id)

    async def handle_notification(self, external_id: str, status: Status | None = None):
        try:
            record = self.ledger.find_by_external_ref(external_id)
        except NotFound:
            logger.warning(f'notification for unknown external payment {external_id}, ignoring')
            return

        if status is None:
            try:
                status = await self.processor.fetch_status(external_id)
            except ProcessorError as e:
                logger.warning(f'couldn\'t fetch status of external payment {external_id}: {e}')
                return

        self._record(record, status)

    async def reconcile_pending(self) -> int:
        updated = 0

        for record in self.ledger.list_records():
            if record.status != 'pending' or record.external_ref is None or record.using_fallback:
                continue

            try:
                status = await self.processor.fetch_status(record.external_ref)
            except ProcessorError as e:
                logger.warning(f'couldn\'t reconcile payment {record.id}: {e}')
                continue

            if status != 'pending' and self._record(record, status):
                updated += 1

        return updated

    def sweep(self) -> SweepResult:
        result = self.ledger.sweep_expired()
        for external_ref in result.removed_external_refs:
            self.fallback.forget(external_ref)
        if result.expired or result.removed:
            logger.info(f'sweep: {result.expired} payments expired, {result.removed} removed')
        return result

    async def aclose(self):
        await self.processor.aclose()
        if self.fallback is not self.processor:
            await self.fallback.aclose()

    def _record(self, record: PaymentRecord, status: Status) -> bool:
        try:
            self.ledger.record_status(record.id, status)
        except (NotFound, InvalidTransition) as e:
            logger.warning(f'status "{status}" for payment {record.id} not recorded: {e}')
            return False
        return True


def build_payment_service(
    settings: Settings,
    merchant_settings: MerchantSettings,
    mercadopago_settings: MercadoPagoSettings
) -> PaymentService:
    merchant = MerchantIdentity(key=merchant_settings.key, name=merchant_settings.name, city=merchant_settings.city)
    merchant.validate()

    ttl = timedelta(seconds=settings.payment_ttl_sec)
    ledger = PaymentLedger(
        merchant=merchant,
        min_amount=settings.min_amount,
        max_amount=settings.max_amount,
        ttl=ttl,
        retention=timedelta(seconds=settings.retention_sec)
    )

    approve_after = (
        timedelta(seconds=settings.simulate_approval_after_sec)
        if settings.simulate_approval_after_sec is not None
        else None
    )
    fallback = MockProcessor(merchant, approve_after=approve_after)

    processor: PaymentProcessor
    if mercadopago_settings.access_token:
        processor = MercadoPagoProcessor.from_settings(mercadopago_settings, ttl)
    else:
        processor = fallback

    logger.info(f'using "{processor.name}" payment processor')
    return PaymentService(ledger=ledger, processor=processor, fallback=fallback)


payment_service: PaymentService | None = None


def get_payment_service() -> PaymentService:
    assert payment_service is not None
    return payment_service
