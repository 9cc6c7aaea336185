import logging
from typing import Annotated, Any
from decimal import Decimal
from datetime import datetime
from fastapi import APIRouter, BackgroundTasks, Body, Depends, Path, Request
from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, WithJsonSchema
from pydantic.alias_generators import to_camel

from ledger import PaymentRecord, Status
from processors import PayerInfo, ProcessorError, map_status
from pix import render_qr_code
from services.payment import PaymentService, get_payment_service


logger = logging.getLogger('pix-api-payments')

router = APIRouter()


Amount = Annotated[Decimal, PlainSerializer(lambda value: f'{value:.2f}', return_type=str)]


class Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChargeBody(Schema):
    # Проверяется в PaymentLedger, чтобы любое некорректное значение давало `InvalidAmount`
    amount: Annotated[
        Any,
        WithJsonSchema({'anyOf': [{'type': 'number'}, {'type': 'string'}], 'examples': [5.0, '19.90']})
    ] = Field(default=None, description='Сумма в реалах, не больше двух знаков после запятой')
    description: str | None = Field(default=None)
    payer: PayerInfo | None = None


class ChargeInfo(Schema):
    id: str
    payload: str
    qr_code_base64: str
    amount: Amount
    description: str
    status: Status
    created_at: datetime
    expires_at: datetime
    external_ref: str | None
    using_fallback: bool


class PaymentStatus(Schema):
    id: str
    status: Status
    amount: Amount
    created_at: datetime
    expires_at: datetime
    approved_at: datetime | None = None


class PaymentSummary(Schema):
    id: str
    status: Status
    amount: Amount
    created_at: datetime


class ApprovalInfo(Schema):
    id: str
    status: Status
    approved_at: datetime | None


class RejectionInfo(Schema):
    id: str
    status: Status


class WebhookAck(Schema):
    received: bool = True


@router.post(
    path='',
    description=
    'Создает PIX-платеж и возвращает payload для "copia e cola" и QR-код<br>'
    'Если внешний процессор недоступен, payload генерируется локально, запись помечается `usingFallback`'
)
async def create_payment(
    body: Annotated[ChargeBody, Body()],
    payments_service: Annotated[PaymentService, Depends(get_payment_service)]
) -> ChargeInfo:
    record = await payments_service.create_charge(
        amount=body.amount,
        description=body.description,
        payer=body.payer
    )
    return ChargeInfo(
        id=record.id,
        payload=record.payload,
        qr_code_base64=render_qr_code(record.payload),
        amount=record.amount,
        description=record.description,
        status=record.status,
        created_at=record.created_at,
        expires_at=record.expires_at,
        external_ref=record.external_ref,
        using_fallback=record.using_fallback
    )


@router.get(path='', description='Список платежей, хранящихся в памяти процесса')
async def list_payments(
    payments_service: Annotated[PaymentService, Depends(get_payment_service)]
) -> list[PaymentSummary]:
    return [
        PaymentSummary(id=record.id, status=record.status, amount=record.amount, created_at=record.created_at)
        for record in payments_service.list_payments()
    ]


@router.post(
    path='/webhook',
    description=
    'Уведомление от процессора платежей, всегда отвечает `{received: true}`<br>'
    'Принимает формат Mercado Pago (`{type: "payment", data: {id}}`), '
    'либо `{id, status}` с уже известным статусом'
)
async def payment_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    payments_service: Annotated[PaymentService, Depends(get_payment_service)]
) -> WebhookAck:
    try:
        body = await request.json()
    except ValueError:
        body = None

    if not isinstance(body, dict):
        logger.warning('webhook body isn\'t a json object, ignoring')
        return WebhookAck()

    external_id, status = _parse_notification(body)
    if external_id is not None:
        background_tasks.add_task(payments_service.handle_notification, external_id, status)

    return WebhookAck()


@router.get(path='/{payment_id}', response_model_exclude_none=True)
async def get_payment(
    payment_id: Annotated[str, Path()],
    payments_service: Annotated[PaymentService, Depends(get_payment_service)]
) -> PaymentStatus:
    return _status(payments_service.get_status(payment_id))


@router.post(path='/{payment_id}/approve', description='Ручное подтверждение оплаты, идемпотентно')
async def approve_payment(
    payment_id: Annotated[str, Path()],
    payments_service: Annotated[PaymentService, Depends(get_payment_service)]
) -> ApprovalInfo:
    record = payments_service.approve(payment_id)
    return ApprovalInfo(id=record.id, status=record.status, approved_at=record.approved_at)


@router.post(path='/{payment_id}/reject', description='Ручная отмена платежа, идемпотентно')
async def reject_payment(
    payment_id: Annotated[str, Path()],
    payments_service: Annotated[PaymentService, Depends(get_payment_service)]
) -> RejectionInfo:
    record = payments_service.reject(payment_id)
    return RejectionInfo(id=record.id, status=record.status)


def _status(record: PaymentRecord) -> PaymentStatus:
    return PaymentStatus(
        id=record.id,
        status=record.status,
        amount=record.amount,
        created_at=record.created_at,
        expires_at=record.expires_at,
        approved_at=record.approved_at
    )


def _parse_notification(body: dict[str, Any]) -> tuple[str | None, Status | None]:
    data = body.get('data')
    if isinstance(data, dict) and body.get('type', body.get('topic')) == 'payment':
        external_id = data.get('id')
    else:
        external_id = body.get('external_id', body.get('id'))

    if external_id is None or isinstance(external_id, (dict, list)):
        return None, None

    status = body.get('status')
    if status is None:
        return str(external_id), None

    try:
        return str(external_id), map_status(status)
    except ProcessorError:
        # Статус не распознан, спросим у процессора
        return str(external_id), None
