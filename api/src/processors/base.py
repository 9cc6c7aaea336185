from decimal import Decimal
from typing import Protocol
from dataclasses import dataclass
from pydantic import BaseModel

from ledger import Status


class ProcessorError(Exception):
    ...


class PayerInfo(BaseModel):
    email: str | None = None
    name: str | None = None

    @property
    def first_name(self) -> str:
        if not self.name or not self.name.split():
            return 'Pagador'
        return self.name.split()[0]

    @property
    def last_name(self) -> str:
        parts = self.name.split() if self.name else []
        return ' '.join(parts[1:]) if len(parts) > 1 else 'PIX'


@dataclass(frozen=True)
class SubmittedCharge:
    external_id: str
    payload: str
    status: Status


class PaymentProcessor(Protocol):
    name: str

    async def submit(
        self,
        payment_id: str,
        amount: Decimal,
        description: str,
        payer: PayerInfo | None = None
    ) -> SubmittedCharge:
        ...

    async def fetch_status(self, external_id: str) -> Status:
        ...

    async def aclose(self):
        ...
