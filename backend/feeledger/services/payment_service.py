# feeledger/services/payment_service.py
#
# Recording, correcting and deleting fee payments.
#
# A payment and its allocation are written in one batch. The
# allocation is computed once, at collection time, against the
# balances at that moment; later changes to the fee structure never
# re-split it. A correction deletes the old payment and inserts the
# corrected one (same receipt number) in one batch; rows are never
# edited in place.

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4

from feeledger.core.config import settings
from feeledger.core.errors import ValidationError
from feeledger.core.store import FeeStore, WriteBatch
from feeledger.schemas.common import to_money
from feeledger.schemas.payments import (
    Allocation, PaymentCorrection, PaymentCreate, PaymentMethod,
    PaymentResponse, PaymentSummary,
)
from feeledger.services.allocation_service import allocate
from feeledger.services.fee_status_service import (
    read_student_ledger, resolve_year_id, status_from_snapshot,
)
import logging

logger = logging.getLogger(__name__)


def format_receipt_number(year: int, sequence: int) -> str:
    """RCP/2025/000042"""
    return f"{settings.RECEIPT_PREFIX}/{year}/{sequence:06d}"


def _payment_rows(
    payment_id: str,
    student_id: str,
    year_id: str,
    amount: Decimal,
    method: PaymentMethod,
    allocation: Allocation,
    payment_date: date,
    receipt_number: str,
    transaction_id: Optional[str],
    notes: Optional[str],
    created_by: Optional[str],
) -> tuple[Dict[str, Any], Dict[str, Any]]:
    payment = {
        "id":               payment_id,
        "student_id":       student_id,
        "academic_year_id": year_id,
        "amount_paid":      str(amount),
        "payment_date":     payment_date.isoformat(),
        "payment_method":   method.value,
        "transaction_id":   transaction_id,
        "receipt_number":   receipt_number,
        "notes":            notes,
        "created_by":       created_by,
    }
    allocation_row = {
        "id":                str(uuid4()),
        "payment_id":        payment_id,
        "student_id":        student_id,
        "academic_year_id":  year_id,
        "bus_fee_amount":    str(allocation.bus_amount),
        "school_fee_amount": str(allocation.school_amount),
        "allocation_date":   payment_date.isoformat(),
    }
    return payment, allocation_row


def _to_response(payment: Dict[str, Any], allocation: Optional[Dict[str, Any]]) -> PaymentResponse:
    split = None
    if allocation:
        split = Allocation(
            bus_amount=to_money(allocation.get("bus_fee_amount")),
            school_amount=to_money(allocation.get("school_fee_amount")),
        )
    return PaymentResponse(**payment, allocation=split)


def record_payment(
    store: FeeStore,
    data: PaymentCreate,
    created_by: Optional[str] = None,
) -> PaymentResponse:
    """
    Record a payment for a student in an academic year (current year by default).
    """
    amount = to_money(data.amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than 0")

    student = store.require_one("students", data.student_id, "Student")
    year_id = resolve_year_id(store, data.academic_year_id)

    status = status_from_snapshot(student, year_id, read_student_ledger(store, student, year_id))
    allocation = allocate(amount, status.outstanding_bus, status.outstanding_school, data.allocation)

    payment_date = data.payment_date or date.today()
    # Numbers are taken only after validation passes. The sequence is not
    # part of the batch, so a failed apply leaves a gap, never a reuse.
    receipt_number = format_receipt_number(payment_date.year, store.next_sequence("receipt_number"))
    payment_id = str(uuid4())
    payment, allocation_row = _payment_rows(
        payment_id, student["id"], year_id, amount, data.payment_method, allocation,
        payment_date, receipt_number, data.transaction_id, data.notes, created_by,
    )

    store.apply(
        WriteBatch("payment.record")
        .insert("fee_payments", payment)
        .insert("payment_allocation", allocation_row)
    )

    logger.info(
        f"Payment {receipt_number} recorded: {amount} for student {student['id']} "
        f"(school {allocation.school_amount}, bus {allocation.bus_amount})"
    )
    return _to_response(payment, allocation_row)


def correct_payment(
    store: FeeStore,
    payment_id: str,
    data: PaymentCorrection,
    changed_by: Optional[str] = None,
) -> PaymentResponse:
    """
    Replace a payment with a corrected copy.

    The allocation is recomputed against the student's balances as they
    stand without the old payment, unless an explicit split is given.
    """
    old = store.require_one("fee_payments", payment_id, "Payment")
    student = store.require_one("students", old["student_id"], "Student")
    year_id = old["academic_year_id"]

    snap = read_student_ledger(store, student, year_id)
    status = status_from_snapshot(student, year_id, snap, exclude_payment_id=payment_id)
    amount = to_money(data.amount)
    allocation = allocate(amount, status.outstanding_bus, status.outstanding_school, data.allocation)

    payment_date = data.payment_date or date.fromisoformat(str(old["payment_date"])[:10])
    new_id = str(uuid4())
    payment, allocation_row = _payment_rows(
        new_id, student["id"], year_id, amount,
        data.payment_method or PaymentMethod(old["payment_method"]),
        allocation, payment_date, old["receipt_number"],
        old.get("transaction_id"),
        data.notes if data.notes is not None else old.get("notes"),
        old.get("created_by"),
    )

    store.apply(
        WriteBatch("payment.correct")
        .delete("payment_allocation", payment_id=payment_id)
        .delete("fee_payments", id=payment_id)
        .insert("fee_payments", payment)
        .insert("payment_allocation", allocation_row)
    )

    logger.info(
        f"Payment {old['receipt_number']} corrected by {changed_by}: "
        f"{old['amount_paid']} → {amount}"
    )
    return _to_response(payment, allocation_row)


def delete_payment(store: FeeStore, payment_id: str, deleted_by: Optional[str] = None) -> None:
    payment = store.require_one("fee_payments", payment_id, "Payment")
    store.apply(
        WriteBatch("payment.delete")
        .delete("payment_allocation", payment_id=payment_id)
        .delete("fee_payments", id=payment_id)
    )
    logger.info(f"Payment {payment['receipt_number']} ({payment['amount_paid']}) deleted by {deleted_by}")


def _matching_payments(
    store: FeeStore,
    student_id: Optional[str],
    year_id: Optional[str],
    method: Optional[PaymentMethod],
    start_date: Optional[date],
    end_date: Optional[date],
) -> tuple[List[Dict[str, Any]], Dict[str, Dict[str, Any]]]:
    filters: Dict[str, Any] = {}
    if student_id:
        filters["student_id"] = student_id
    if year_id:
        filters["academic_year_id"] = year_id
    if method:
        filters["payment_method"] = method.value

    snap = store.snapshot({"fee_payments": filters, "payment_allocation": {
        k: v for k, v in filters.items() if k != "payment_method"
    }})
    payments = []
    for p in snap.rows("fee_payments"):
        paid_on = str(p["payment_date"])[:10]
        if start_date and paid_on < start_date.isoformat():
            continue
        if end_date and paid_on > end_date.isoformat():
            continue
        payments.append(p)
    payments.sort(key=lambda p: (str(p["payment_date"]), p["receipt_number"]), reverse=True)
    allocations = {a["payment_id"]: a for a in snap.rows("payment_allocation")}
    return payments, allocations


def list_payments(
    store: FeeStore,
    student_id: Optional[str] = None,
    year_id: Optional[str] = None,
    method: Optional[PaymentMethod] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[PaymentResponse]:
    """Payments newest first, each with its allocation."""
    payments, allocations = _matching_payments(store, student_id, year_id, method, start_date, end_date)
    return [_to_response(p, allocations.get(p["id"])) for p in payments]


def summarize_payments(
    store: FeeStore,
    student_id: Optional[str] = None,
    year_id: Optional[str] = None,
    method: Optional[PaymentMethod] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> PaymentSummary:
    """
    Collection totals by method and by category. A payment with no
    allocation row counts as school fees, the same rule fee status uses.
    """
    payments, allocations = _matching_payments(store, student_id, year_id, method, start_date, end_date)
    summary = PaymentSummary(payment_count=len(payments))
    for p in payments:
        amount = to_money(p["amount_paid"])
        summary.total_amount += amount
        if p["payment_method"] == PaymentMethod.cash.value:
            summary.cash_amount += amount
        elif p["payment_method"] == PaymentMethod.online.value:
            summary.online_amount += amount

        allocation = allocations.get(p["id"])
        if allocation is None:
            summary.school_fees_amount += amount
        else:
            summary.bus_fees_amount += to_money(allocation["bus_fee_amount"])
            summary.school_fees_amount += to_money(allocation["school_fee_amount"])
    return summary
