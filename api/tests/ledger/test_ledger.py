import re
import pytest
from decimal import Decimal
from datetime import timedelta
from concurrent.futures import ThreadPoolExecutor

from pix import EncodingError, parse_payload
from ledger import PaymentLedger, SweepResult, InvalidAmount, InvalidTransition, NotFound


def test_create_charge(ledger: PaymentLedger, clock):
    record = ledger.create_charge(Decimal('5.00'), 'test')

    assert record.status == 'pending'
    assert record.amount == Decimal('5.00')
    assert record.description == 'test'
    assert record.created_at == clock.now
    assert record.expires_at == clock.now + timedelta(minutes=30)
    assert record.approved_at is None
    assert record.external_ref is None
    assert not record.using_fallback
    assert re.fullmatch(r'[0-9A-F]{4}', record.payload[-4:])

    fields = parse_payload(record.payload)
    assert fields['54'] == '5.00'
    assert fields['62'] == {'05': record.id}
    assert fields['26']['01'] == 'pix@example.com'


def test_id_is_valid_reference_label(ledger: PaymentLedger):
    payment_id = ledger.create_charge('1.00', 'x').id
    assert re.fullmatch(r'[0-9a-f]{1,25}', payment_id)


@pytest.mark.parametrize('amount', ['0.01', '999999.99', 0.01, 999999.99, 1, '10.5'])
def test_amount_bounds_accepted(ledger: PaymentLedger, amount):
    record = ledger.create_charge(amount, 'x')
    assert record.amount == Decimal(str(amount)).quantize(Decimal('0.01'))


@pytest.mark.parametrize('amount', [
    '0.00', 0, '1000000.00', 1000000, '-5', '0.001', '1.234', 'abc', '', None, True, 'NaN', 'inf',
    '1e26', 1e30, '1' * 30
])
def test_amount_bounds_rejected(ledger: PaymentLedger, amount):
    with pytest.raises(InvalidAmount):
        ledger.create_charge(amount, 'x')

    assert ledger.list_records() == []


def test_description_too_long(ledger: PaymentLedger):
    ledger.create_charge('1.00', 'd' * 230)

    with pytest.raises(EncodingError):
        ledger.create_charge('1.00', 'd' * 231)

    with pytest.raises(EncodingError):
        ledger.create_charge('1.00', 'ã' * 116)


def test_get_status(ledger: PaymentLedger):
    record = ledger.create_charge('2.00', 'x')
    assert ledger.get_status(record.id) == record

    with pytest.raises(NotFound):
        ledger.get_status('unknown')


def test_returned_records_are_snapshots(ledger: PaymentLedger):
    record = ledger.create_charge('2.00', 'x')
    record.status = 'approved'

    assert ledger.get_status(record.id).status == 'pending'


def test_approve_is_idempotent(ledger: PaymentLedger, clock):
    record = ledger.create_charge('5.00', 'x')

    clock.advance(timedelta(seconds=10))
    approved = ledger.mark_approved(record.id)
    assert approved.status == 'approved'
    assert approved.approved_at == clock.now
    assert approved.approved_at >= approved.created_at

    clock.advance(timedelta(seconds=10))
    again = ledger.mark_approved(record.id)
    assert again.status == 'approved'
    assert again.approved_at == approved.approved_at


def test_approve_after_reject_fails(ledger: PaymentLedger):
    record = ledger.create_charge('5.00', 'x')
    ledger.mark_rejected(record.id)

    with pytest.raises(InvalidTransition):
        ledger.mark_approved(record.id)

    stored = ledger.get_status(record.id)
    assert stored.status == 'rejected'
    assert stored.approved_at is None


def test_reject_is_idempotent(ledger: PaymentLedger):
    record = ledger.create_charge('5.00', 'x')

    assert ledger.mark_rejected(record.id).status == 'rejected'
    assert ledger.mark_rejected(record.id).status == 'rejected'


def test_reject_after_approve_fails(ledger: PaymentLedger):
    record = ledger.create_charge('5.00', 'x')
    ledger.mark_approved(record.id)

    with pytest.raises(InvalidTransition):
        ledger.mark_rejected(record.id)

    assert ledger.get_status(record.id).status == 'approved'


def test_transitions_of_unknown_payment(ledger: PaymentLedger):
    with pytest.raises(NotFound):
        ledger.mark_approved('unknown')
    with pytest.raises(NotFound):
        ledger.mark_rejected('unknown')


def test_record_status(ledger: PaymentLedger):
    record = ledger.create_charge('5.00', 'x')

    assert ledger.record_status(record.id, 'pending').status == 'pending'
    assert ledger.record_status(record.id, 'approved').status == 'approved'

    with pytest.raises(ValueError):
        ledger.record_status(record.id, 'expired')


def test_sweep_expires_pending_only(ledger: PaymentLedger, clock):
    pending = ledger.create_charge('5.00', 'x')
    approved = ledger.create_charge('5.00', 'x')
    ledger.mark_approved(approved.id)

    assert ledger.sweep_expired() == SweepResult(expired=0, removed=0)
    assert ledger.get_status(pending.id).status == 'pending'

    clock.advance(timedelta(minutes=30))
    assert ledger.sweep_expired().expired == 0

    clock.advance(timedelta(seconds=1))
    result = ledger.sweep_expired()
    assert result.expired == 1
    assert result.removed == 0

    assert ledger.get_status(pending.id).status == 'expired'
    assert ledger.get_status(approved.id).status == 'approved'
    assert ledger.get_status(approved.id).approved_at is not None

    with pytest.raises(InvalidTransition):
        ledger.mark_approved(pending.id)


def test_sweep_with_explicit_time(ledger: PaymentLedger, clock):
    record = ledger.create_charge('5.00', 'x')

    result = ledger.sweep_expired(clock.now + timedelta(hours=1))
    assert result.expired == 1
    assert ledger.get_status(record.id).status == 'expired'


def test_sweep_removes_old_records(ledger: PaymentLedger, clock):
    approved = ledger.create_charge('5.00', 'x', payment_id=ledger.issue_id(), external_ref='ext-1')
    ledger.mark_approved(approved.id)
    rejected = ledger.create_charge('5.00', 'x')
    ledger.mark_rejected(rejected.id)

    clock.advance(timedelta(hours=12))
    fresh = ledger.create_charge('5.00', 'x')

    clock.advance(timedelta(hours=12, seconds=1))
    result = ledger.sweep_expired()
    assert result.removed == 2
    assert result.removed_external_refs == ('ext-1',)

    for payment_id in (approved.id, rejected.id):
        with pytest.raises(NotFound):
            ledger.get_status(payment_id)
    with pytest.raises(NotFound):
        ledger.find_by_external_ref('ext-1')

    assert ledger.get_status(fresh.id).status == 'expired'


def test_external_ref_lookup(ledger: PaymentLedger):
    payment_id = ledger.issue_id()
    record = ledger.create_charge(
        '5.00', 'x',
        payment_id=payment_id,
        payload='external-payload',
        external_ref='123456',
        using_fallback=False
    )

    assert record.id == payment_id
    assert record.payload == 'external-payload'
    assert ledger.find_by_external_ref('123456') == record

    with pytest.raises(NotFound):
        ledger.find_by_external_ref('654321')


def test_unissued_id_is_refused(ledger: PaymentLedger):
    with pytest.raises(ValueError):
        ledger.create_charge('5.00', 'x', payment_id='made-up')


def test_issued_id_is_not_reissued(ledger: PaymentLedger):
    ids = {ledger.issue_id() for _ in range(1000)}
    assert len(ids) == 1000

    payment_id = ids.pop()
    ledger.release_id(payment_id)
    with pytest.raises(ValueError):
        ledger.create_charge('5.00', 'x', payment_id=payment_id)


def test_concurrent_create_charge(ledger: PaymentLedger):
    with ThreadPoolExecutor(max_workers=16) as executor:
        records = list(executor.map(lambda _: ledger.create_charge('1.00', 'x'), range(1000)))

    assert len({record.id for record in records}) == 1000
    assert len(ledger.list_records()) == 1000


def test_concurrent_transitions_resolve_once(ledger: PaymentLedger):
    record = ledger.create_charge('1.00', 'x')

    def transition(i: int):
        try:
            return (ledger.mark_approved if i % 2 else ledger.mark_rejected)(record.id).status
        except InvalidTransition:
            return 'conflict'

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(transition, range(100)))

    final = ledger.get_status(record.id).status
    assert final in ('approved', 'rejected')
    assert final in results
    assert set(results) <= {final, 'conflict'}
