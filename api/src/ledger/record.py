from typing import Literal
from datetime import datetime
from decimal import Decimal
from dataclasses import dataclass


Status = Literal['pending', 'approved', 'rejected', 'expired']

TERMINAL_STATUSES: tuple[Status, ...] = ('approved', 'rejected', 'expired')


@dataclass
class PaymentRecord:
    id: str
    amount: Decimal
    description: str
    payload: str
    status: Status
    created_at: datetime
    expires_at: datetime
    updated_at: datetime
    approved_at: datetime | None = None
    external_ref: str | None = None
    using_fallback: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
