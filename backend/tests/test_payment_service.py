from datetime import date
from decimal import Decimal

import pytest

from feeledger.core.errors import NotFoundError, ValidationError
from feeledger.schemas.payments import Allocation, PaymentCorrection, PaymentCreate, PaymentMethod
from feeledger.services import fee_status_service as fee_status
from feeledger.services import payment_service as payments

D = Decimal


@pytest.fixture
def bus_student(school):
    school.add_item(school.class_1, "ft-tuition", "1000.00")
    school.add_bus_fee("300.00")
    school.add_student("kemi", has_school_bus=True, village_id=school.village)
    return school


def _pay(school, amount, **extra):
    data = PaymentCreate(
        student_id=extra.pop("student_id", "kemi"),
        amount=D(str(amount)),
        payment_date=extra.pop("payment_date", date(2025, 8, 1)),
        **extra,
    )
    return payments.record_payment(school.store, data, created_by="acct-1")


def test_receipt_number_format():
    assert payments.format_receipt_number(2025, 42) == "RCP/2025/000042"


def test_record_splits_and_stores_allocation(bus_student):
    store = bus_student.store
    payment = _pay(bus_student, 1200)

    assert payment.receipt_number == "RCP/2025/000001"
    assert payment.academic_year_id == bus_student.year
    assert payment.allocation == Allocation(bus_amount=D("200"), school_amount=D("1000"))

    row = store.select_one("payment_allocation", payment_id=payment.id)
    assert D(row["bus_fee_amount"]) + D(row["school_fee_amount"]) == D("1200")

    status = fee_status.compute_student_fee_status(store, "kemi")
    assert status.outstanding_school == D("0")
    assert status.outstanding_bus == D("100.00")


def test_receipt_numbers_increase(bus_student):
    first = _pay(bus_student, 100)
    second = _pay(bus_student, 100)
    assert (first.receipt_number, second.receipt_number) == ("RCP/2025/000001", "RCP/2025/000002")


def test_later_payments_see_earlier_ones(bus_student):
    _pay(bus_student, 1000)
    second = _pay(bus_student, 100)
    assert second.allocation == Allocation(bus_amount=D("100"), school_amount=D("0"))


def test_manual_split_must_match_amount(bus_student):
    with pytest.raises(ValidationError):
        _pay(bus_student, 500, allocation=Allocation(bus_amount=D("300"), school_amount=D("100")))
    assert bus_student.store.count("fee_payments") == 0
    assert bus_student.store.count("payment_allocation") == 0


def test_manual_split_is_honoured(bus_student):
    payment = _pay(bus_student, 500, allocation=Allocation(bus_amount=D("300"), school_amount=D("200")))
    status = fee_status.compute_student_fee_status(bus_student.store, "kemi")
    assert payment.allocation.bus_amount == D("300")
    assert status.outstanding_bus == D("0")
    assert status.outstanding_school == D("800.00")


def test_unknown_student(bus_student):
    with pytest.raises(NotFoundError):
        _pay(bus_student, 100, student_id="nobody")


def test_correction_keeps_the_receipt_number(bus_student):
    store = bus_student.store
    original = _pay(bus_student, 500)

    corrected = payments.correct_payment(
        store, original.id, PaymentCorrection(amount=D("1100")), changed_by="acct-2"
    )

    assert corrected.receipt_number == original.receipt_number
    assert corrected.id != original.id
    assert corrected.allocation == Allocation(bus_amount=D("100"), school_amount=D("1000"))
    assert store.count("fee_payments") == 1
    assert store.count("payment_allocation") == 1
    assert store.select_one("fee_payments", id=original.id) is None


def test_delete_removes_payment_and_allocation(bus_student):
    store = bus_student.store
    payment = _pay(bus_student, 500)

    payments.delete_payment(store, payment.id, deleted_by="admin-1")

    assert store.count("fee_payments") == 0
    assert store.count("payment_allocation") == 0
    with pytest.raises(NotFoundError):
        payments.delete_payment(store, payment.id)


def test_list_and_summarize(bus_student):
    store = bus_student.store
    _pay(bus_student, 1100, payment_date=date(2025, 8, 1))
    _pay(bus_student, 150, payment_method=PaymentMethod.online, payment_date=date(2025, 9, 1))
    bus_student.add_payment("kemi", "50.00", payment_date="2025-10-01")     # no allocation row

    listed = payments.list_payments(store, student_id="kemi")
    assert [str(p.payment_date) for p in listed] == ["2025-10-01", "2025-09-01", "2025-08-01"]

    summary = payments.summarize_payments(store, year_id=bus_student.year)
    assert summary.payment_count == 3
    assert summary.total_amount == D("1300.00")
    assert summary.cash_amount == D("1150.00")
    assert summary.online_amount == D("150")
    assert summary.bus_fees_amount == D("250")
    assert summary.school_fees_amount == D("1050.00")

    september = payments.summarize_payments(
        store, start_date=date(2025, 9, 1), end_date=date(2025, 9, 30)
    )
    assert september.payment_count == 1
    assert september.online_amount == D("150")

    online = payments.list_payments(store, method=PaymentMethod.online)
    assert len(online) == 1


def test_sub_cent_split_writes_nothing_and_keeps_the_receipt_sequence(bus_student):
    store = bus_student.store
    data = PaymentCreate.model_construct(
        student_id="kemi",
        amount=D("100.01"),
        allocation=Allocation.model_construct(bus_amount=D("50.005"), school_amount=D("50.005")),
        payment_date=date(2025, 8, 1),
    )
    with pytest.raises(ValidationError):
        payments.record_payment(store, data)

    assert store.count("fee_payments") == 0
    assert store.count("payment_allocation") == 0
    assert _pay(bus_student, 100).receipt_number == "RCP/2025/000001"


def test_stored_split_always_adds_up_in_cents(bus_student):
    store = bus_student.store
    _pay(bus_student, "100.01", allocation=Allocation(bus_amount=D("50.01"), school_amount=D("50.00")))

    row = store.select_one("payment_allocation")
    payment = store.select_one("fee_payments")
    stored = [D(row["bus_fee_amount"]), D(row["school_fee_amount"]), D(payment["amount_paid"])]
    assert all(v == v.quantize(D("0.01")) for v in stored)
    assert stored[0] + stored[1] == stored[2]
