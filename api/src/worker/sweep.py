import asyncio
import logging

from services.payment import PaymentService
from settings import settings


logger = logging.getLogger('pix-api-worker-expiry-sweep-loop')


async def expiry_sweep_loop(payment_service: PaymentService):
    while True:
        await asyncio.sleep(settings.sweep_loop_sleep_duration)

        try:
            payment_service.sweep()
        except Exception:
            logger.exception('sweep failed')
