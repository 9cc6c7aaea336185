import logging
import anyio

from .sweep import expiry_sweep_loop
from .reconcile import reconciliation_loop
from services.payment import PaymentService


logger = logging.getLogger('pix-api-worker')


async def run(payment_service: PaymentService):
    async with anyio.create_task_group() as tg:
        tg.start_soon(expiry_sweep_loop, payment_service)
        tg.start_soon(reconciliation_loop, payment_service)

        logger.info('worker is started')
