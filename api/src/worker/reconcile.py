import asyncio
import logging

from services.payment import PaymentService
from settings import settings


logger = logging.getLogger('pix-api-worker-reconciliation-loop')


# Дублирует веб-хук: уведомление от процессора может не дойти
async def reconciliation_loop(payment_service: PaymentService):
    while True:
        await asyncio.sleep(settings.reconciliation_loop_sleep_duration)

        try:
            updated = await payment_service.reconcile_pending()
        except Exception:
            logger.exception('reconciliation failed')
            continue

        if updated:
            logger.info(f'reconciled {updated} payments')
