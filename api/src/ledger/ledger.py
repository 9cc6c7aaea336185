import logging
import secrets
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from pix import EncodingError, MerchantIdentity
from .errors import InvalidAmount, InvalidTransition, NotFound
from .record import PaymentRecord, Status


logger = logging.getLogger('pix-api-ledger')


MAX_DESCRIPTION_LENGTH = 230


@dataclass(frozen=True)
class SweepResult:
    expired: int
    removed: int
    removed_external_refs: tuple[str, ...] = ()


@dataclass
class PaymentLedger:
    """
    Хранилище платежей в памяти процесса.

    Все операции выполняются под одной блокировкой, так что проверка статуса
    и его изменение атомарны и для обработчиков запросов, и для периодической очистки.
    Наружу отдаются копии записей
    """
    merchant: MerchantIdentity
    min_amount: Decimal = Decimal('0.01')
    max_amount: Decimal = Decimal('999999.99')
    ttl: timedelta = timedelta(minutes=30)
    retention: timedelta = timedelta(hours=24)
    clock: Callable[[], datetime] = datetime.now

    _records: dict[str, PaymentRecord] = field(default_factory=dict, init=False, repr=False)
    _external_refs: dict[str, str] = field(default_factory=dict, init=False, repr=False)
    _reserved: set[str] = field(default_factory=set, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)

    def check_amount(self, amount: Any) -> Decimal:
        if amount is None or isinstance(amount, bool):
            raise InvalidAmount('amount is required')

        try:
            value = Decimal(str(amount))
        except InvalidOperation:
            raise InvalidAmount(f'amount "{amount}" is not a number')

        if not value.is_finite():
            raise InvalidAmount(f'amount "{amount}" is not a number')
        # Границы проверяются до quantize: для огромных значений он бросает InvalidOperation
        if value < self.min_amount or value > self.max_amount:
            raise InvalidAmount(f'amount {value} is out of range [{self.min_amount}, {self.max_amount}]')
        if value != value.quantize(Decimal('0.01')):
            raise InvalidAmount(f'amount {value} has more than 2 decimal digits')

        return value.quantize(Decimal('0.01'))

    def check_description(self, description: str):
        length = len(description.encode())
        if length > MAX_DESCRIPTION_LENGTH:
            raise EncodingError(f'description is {length} bytes long, at most {MAX_DESCRIPTION_LENGTH} allowed')

    def issue_id(self) -> str:
        # Миллисекунды в hex (11 символов) + 48 случайных бит, итого 23 символа [0-9a-f],
        # годится как reference label (txid) в payload
        with self._lock:
            while True:
                payment_id = f'{int(self.clock().timestamp() * 1000):x}{secrets.token_hex(6)}'
                if payment_id not in self._records and payment_id not in self._reserved:
                    self._reserved.add(payment_id)
                    return payment_id

                logger.warning(f'generated payment id {payment_id} collides, retrying')

    def release_id(self, payment_id: str):
        with self._lock:
            self._reserved.discard(payment_id)

    def create_charge(
        self,
        amount: Any,
        description: str,
        *,
        payment_id: str | None = None,
        payload: str | None = None,
        external_ref: str | None = None,
        using_fallback: bool = False
    ) -> PaymentRecord:
        value = self.check_amount(amount)
        self.check_description(description)

        with self._lock:
            if payment_id is None:
                payment_id = self.issue_id()
            elif payment_id not in self._reserved:
                raise ValueError(f'payment id {payment_id} was not issued by this ledger')

            try:
                if payload is None:
                    payload = self.merchant.build_payload(value, reference_label=payment_id)
            finally:
                self._reserved.discard(payment_id)

            now = self.clock()
            record = PaymentRecord(
                id=payment_id,
                amount=value,
                description=description,
                payload=payload,
                status='pending',
                created_at=now,
                expires_at=now + self.ttl,
                updated_at=now,
                external_ref=external_ref,
                using_fallback=using_fallback
            )
            self._records[payment_id] = record
            if external_ref is not None:
                self._external_refs[external_ref] = payment_id

            logger.info(f'payment {payment_id} for {value} created')
            return replace(record)

    def get_status(self, payment_id: str) -> PaymentRecord:
        with self._lock:
            return replace(self._get(payment_id))

    def find_by_external_ref(self, external_ref: str) -> PaymentRecord:
        with self._lock:
            payment_id = self._external_refs.get(external_ref)
            if payment_id is None:
                raise NotFound(external_ref)
            return replace(self._get(payment_id))

    def list_records(self) -> list[PaymentRecord]:
        with self._lock:
            return [replace(record) for record in self._records.values()]

    def mark_approved(self, payment_id: str) -> PaymentRecord:
        return self._transition(payment_id, 'approved')

    def mark_rejected(self, payment_id: str) -> PaymentRecord:
        return self._transition(payment_id, 'rejected')

    def record_status(self, payment_id: str, status: Status) -> PaymentRecord:
        if status == 'pending':
            return self.get_status(payment_id)
        if status not in ('approved', 'rejected'):
            raise ValueError(f'status "{status}" can\'t be recorded')

        return self._transition(payment_id, status)

    def sweep_expired(self, now: datetime | None = None) -> SweepResult:
        expired = 0
        removed: list[str | None] = []

        with self._lock:
            now = now or self.clock()

            for payment_id, record in list(self._records.items()):
                if now - record.created_at > self.retention:
                    del self._records[payment_id]
                    if record.external_ref is not None:
                        self._external_refs.pop(record.external_ref, None)
                    removed.append(record.external_ref)
                    continue

                if record.status == 'pending' and now > record.expires_at:
                    record.status = 'expired'
                    record.updated_at = now
                    expired += 1

        return SweepResult(
            expired=expired,
            removed=len(removed),
            removed_external_refs=tuple(ref for ref in removed if ref is not None)
        )

    def _get(self, payment_id: str) -> PaymentRecord:
        record = self._records.get(payment_id)
        if record is None:
            raise NotFound(payment_id)
        return record

    def _transition(self, payment_id: str, status: Status) -> PaymentRecord:
        with self._lock:
            record = self._get(payment_id)

            if record.status == status:
                return replace(record)
            if record.status != 'pending':
                raise InvalidTransition(payment_id, record.status, status)

            now = self.clock()
            record.status = status
            record.updated_at = now
            if status == 'approved':
                record.approved_at = max(now, record.created_at)

            logger.info(f'payment {payment_id} is {status}')
            return replace(record)
