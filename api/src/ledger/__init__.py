from .errors import PaymentError, InvalidAmount, NotFound, InvalidTransition
from .record import PaymentRecord, Status, TERMINAL_STATUSES
from .ledger import PaymentLedger, SweepResult
