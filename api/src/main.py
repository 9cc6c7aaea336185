import asyncio
import logging
from datetime import datetime
from contextlib import asynccontextmanager
from typing import Any
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse

import services.payment
import worker
from api.v1.payment import router as payment_router
from ledger import PaymentError, InvalidAmount, NotFound, InvalidTransition
from pix import EncodingError
from settings import settings, merchant_settings, mercadopago_settings


logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s %(name)s %(levelname)s: %(message)s'
)

logger = logging.getLogger('pix-api')


@asynccontextmanager
async def lifespan(app: FastAPI):
    payment_service = services.payment.build_payment_service(settings, merchant_settings, mercadopago_settings)
    services.payment.payment_service = payment_service

    task = asyncio.create_task(worker.run(payment_service))

    yield

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        ...

    await payment_service.aclose()
    services.payment.payment_service = None


app = FastAPI(
    title='PIX',
    lifespan=lifespan,
    docs_url='/api/openapi',
    openapi_url='/api/openapi.json',
    default_response_class=ORJSONResponse
)

app.include_router(payment_router, prefix='/api/v1/payments')


ERROR_STATUS_CODES: dict[type[Exception], int] = {
    InvalidAmount: status.HTTP_400_BAD_REQUEST,
    EncodingError: status.HTTP_400_BAD_REQUEST,
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidTransition: status.HTTP_409_CONFLICT,
}


def error_response(status_code: int, kind: str, message: str) -> ORJSONResponse:
    return ORJSONResponse(status_code=status_code, content={'error': kind, 'message': message})


@app.exception_handler(PaymentError)
@app.exception_handler(EncodingError)
async def payment_error_handler(request: Request, exc: Exception):
    status_code = ERROR_STATUS_CODES.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return error_response(status_code, getattr(exc, 'kind', type(exc).__name__), str(exc))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    kind = 'InvalidAmount' if any(error['loc'][-1:] == ('amount',) for error in errors) else 'InvalidRequest'
    message = '; '.join(f"{'.'.join(map(str, error['loc']))}: {error['msg']}" for error in errors)
    return error_response(status.HTTP_400_BAD_REQUEST, kind, message)


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    logger.exception(f'unhandled error on {request.method} {request.url.path}')
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        'InternalError',
        repr(exc) if settings.debug else 'internal server error'
    )


@app.get('/health')
async def health() -> dict[str, Any]:
    return {
        'status': 'ok',
        'processor': services.payment.get_payment_service().processor.name,
        'timestamp': datetime.now()
    }
