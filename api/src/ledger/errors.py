class PaymentError(Exception):
    kind = 'PaymentError'


class InvalidAmount(PaymentError):
    kind = 'InvalidAmount'


class NotFound(PaymentError):
    kind = 'NotFound'

    def __init__(self, payment_id: str):
        super().__init__(f'payment {payment_id} does not exist')
        self.payment_id = payment_id


class InvalidTransition(PaymentError):
    kind = 'InvalidTransition'

    def __init__(self, payment_id: str, current: str, requested: str):
        super().__init__(f'payment {payment_id} is {current}, can\'t move it to {requested}')
        self.payment_id = payment_id
        self.current = current
        self.requested = requested
