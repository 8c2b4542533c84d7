# feeledger/services/fee_status_service.py
#
# Fee status per student and per class.
#
# The store is read once per call through snapshot(), then the work
# is done by calculate_fee_status(), a pure function of the rows it
# is given. It never writes, so repeated calls on unchanged data
# agree, and class reports can run (or be cancelled) freely.
#
# Payments count only toward the academic year they were recorded
# in. A payment with no allocation row counts entirely as school fees.

from datetime import date
from decimal import Decimal
from functools import reduce
from typing import Any, Dict, Iterable, List, Optional

from feeledger.core.errors import NotFoundError
from feeledger.core.store import FeeStore, Snapshot
from feeledger.schemas.common import quantize_money, to_money
from feeledger.schemas.payments import (
    ClassFeeSummary, DefaultersResponse, FeePaymentStatus, FeeStatus,
)
from feeledger.services.academic_year_service import current_year_id
from feeledger.services.allocation_service import check_conservation
from feeledger.services.fee_structure_service import latest_active_bus_fee
import logging

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# ═══════════════════════════════════════════════════════════
# PURE CALCULATION
# ═══════════════════════════════════════════════════════════

def applicable_school_fees(student: Dict[str, Any], items: Iterable[Dict[str, Any]]) -> Decimal:
    """New-student-only items count for new students only."""
    is_new = student.get("registration_type") == "new"
    return sum(
        (to_money(i.get("amount")) for i in items
         if is_new or not i.get("applicable_to_new_students_only")),
        ZERO,
    )


def active_bus_fee(student: Dict[str, Any], bus_fees: Iterable[Dict[str, Any]]) -> Decimal:
    if not (student.get("has_school_bus") and student.get("village_id")):
        return ZERO
    latest = latest_active_bus_fee(bus_fees, student["village_id"])
    return to_money(latest.get("fee_amount")) if latest else ZERO


def classify(total_paid: Decimal, total_fees: Decimal) -> FeePaymentStatus:
    if total_fees > ZERO and total_paid >= total_fees:
        return FeePaymentStatus.paid
    if ZERO < total_paid < total_fees:
        return FeePaymentStatus.partial
    return FeePaymentStatus.pending


def calculate_fee_status(
    student: Dict[str, Any],
    year_id: str,
    fee_items: Iterable[Dict[str, Any]],
    bus_fees: Iterable[Dict[str, Any]],
    payments: Iterable[Dict[str, Any]],
    allocations: Dict[str, Dict[str, Any]],
) -> FeeStatus:
    """
    `fee_items` are the year's items for the student's class,
    `payments` the student's payments in that year, and
    `allocations` maps payment_id → payment_allocation row.
    """
    total_school = applicable_school_fees(student, fee_items)
    total_bus = active_bus_fee(student, bus_fees)
    total_fees = total_school + total_bus

    paid_school = paid_bus = ZERO
    last_payment: Optional[date] = None
    for payment in payments:
        allocation = allocations.get(payment["id"])
        check_conservation(payment, allocation)
        if allocation is None:
            paid_school += to_money(payment.get("amount_paid"))
        else:
            paid_school += to_money(allocation.get("school_fee_amount"))
            paid_bus += to_money(allocation.get("bus_fee_amount"))

        paid_on = _as_date(payment.get("payment_date"))
        if paid_on and (last_payment is None or paid_on > last_payment):
            last_payment = paid_on

    total_paid = paid_school + paid_bus
    outstanding_school = max(ZERO, total_school - paid_school)
    outstanding_bus = max(ZERO, total_bus - paid_bus)

    return FeeStatus(
        student_id=student["id"],
        academic_year_id=year_id,
        total_school_fees=total_school,
        total_bus_fees=total_bus,
        total_fees=total_fees,
        paid_school_fees=paid_school,
        paid_bus_fees=paid_bus,
        total_paid=total_paid,
        outstanding_school=outstanding_school,
        outstanding_bus=outstanding_bus,
        outstanding_total=outstanding_school + outstanding_bus,
        status=classify(total_paid, total_fees),
        last_payment_date=last_payment,
    )


def _as_date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# ── Class fold ───────────────────────────────────────────────
def summary_of(status: FeeStatus, class_id: str) -> ClassFeeSummary:
    return ClassFeeSummary(
        class_id=class_id,
        academic_year_id=status.academic_year_id,
        total_students=1,
        total_fees=status.total_fees,
        total_paid=status.total_paid,
        total_outstanding=status.outstanding_total,
        paid_count=int(status.status == FeePaymentStatus.paid),
        partial_count=int(status.status == FeePaymentStatus.partial),
        pending_count=int(status.status == FeePaymentStatus.pending),
    )


def merge_summaries(a: ClassFeeSummary, b: ClassFeeSummary) -> ClassFeeSummary:
    """Associative; collection_percentage is filled in after the fold."""
    return ClassFeeSummary(
        class_id=a.class_id,
        academic_year_id=a.academic_year_id,
        total_students=a.total_students + b.total_students,
        total_fees=a.total_fees + b.total_fees,
        total_paid=a.total_paid + b.total_paid,
        total_outstanding=a.total_outstanding + b.total_outstanding,
        paid_count=a.paid_count + b.paid_count,
        partial_count=a.partial_count + b.partial_count,
        pending_count=a.pending_count + b.pending_count,
    )


def summarize_class(class_id: str, year_id: str, statuses: List[FeeStatus]) -> ClassFeeSummary:
    empty = ClassFeeSummary(class_id=class_id, academic_year_id=year_id)
    summary = reduce(merge_summaries, (summary_of(s, class_id) for s in statuses), empty)
    if summary.total_fees > ZERO:
        summary.collection_percentage = quantize_money(summary.total_paid / summary.total_fees * 100)
    return summary


# ═══════════════════════════════════════════════════════════
# STORE-BACKED ENTRY POINTS
# ═══════════════════════════════════════════════════════════

def _allocations_by_payment(snap: Snapshot) -> Dict[str, Dict[str, Any]]:
    return {a["payment_id"]: a for a in snap.rows("payment_allocation")}


def resolve_year_id(store: FeeStore, year_id: Optional[str]) -> str:
    if year_id:
        store.require_one("academic_years", year_id, "Academic year")
        return year_id
    current = current_year_id(store)
    if not current:
        raise NotFoundError("No current academic year. Please set one.")
    return current


def read_student_ledger(store: FeeStore, student: Dict[str, Any], year_id: str) -> Snapshot:
    """Everything calculate_fee_status() needs for one student, read at one instant."""
    queries: Dict[str, Any] = {
        "fee_structure":      {"academic_year_id": year_id, "class_id": student["class_id"]},
        "fee_payments":       {"academic_year_id": year_id, "student_id": student["id"]},
        "payment_allocation": {"academic_year_id": year_id, "student_id": student["id"]},
    }
    if student.get("has_school_bus") and student.get("village_id"):
        queries["bus_fee_structure"] = {
            "academic_year_id": year_id, "village_id": student["village_id"], "is_active": True,
        }
    return store.snapshot(queries)


def status_from_snapshot(student: Dict[str, Any], year_id: str, snap: Snapshot,
                         exclude_payment_id: Optional[str] = None) -> FeeStatus:
    payments = [
        p for p in snap.where("fee_payments", student_id=student["id"])
        if p["id"] != exclude_payment_id
    ]
    return calculate_fee_status(
        student=student,
        year_id=year_id,
        fee_items=snap.where("fee_structure", class_id=student["class_id"]),
        bus_fees=snap.rows("bus_fee_structure"),
        payments=payments,
        allocations=_allocations_by_payment(snap),
    )


def compute_student_fee_status(
    store: FeeStore,
    student_id: str,
    year_id: Optional[str] = None,
) -> FeeStatus:
    student = store.require_one("students", student_id, "Student")
    year_id = resolve_year_id(store, year_id)
    snap = read_student_ledger(store, student, year_id)
    return status_from_snapshot(student, year_id, snap)


def _class_statuses(store: FeeStore, class_id: str) -> tuple[str, List[FeeStatus]]:
    cls = store.require_one("classes", class_id, "Class")
    year_id = cls["academic_year_id"]

    # One snapshot for the whole class so a payment recorded mid-report
    # cannot be half counted.
    snap = store.snapshot({
        "students":           {"class_id": class_id},
        "fee_structure":      {"academic_year_id": year_id, "class_id": class_id},
        "bus_fee_structure":  {"academic_year_id": year_id, "is_active": True},
        "fee_payments":       {"academic_year_id": year_id},
        "payment_allocation": {"academic_year_id": year_id},
    })
    students = [s for s in snap.rows("students") if (s.get("status") or "active") == "active"]
    statuses = [status_from_snapshot(s, year_id, snap) for s in students]
    return year_id, statuses


def compute_class_fee_status(store: FeeStore, class_id: str) -> ClassFeeSummary:
    year_id, statuses = _class_statuses(store, class_id)
    summary = summarize_class(class_id, year_id, statuses)
    logger.debug(
        f"Class {class_id}: {summary.total_students} students, "
        f"{summary.paid_count} paid / {summary.partial_count} partial / {summary.pending_count} pending"
    )
    return summary


def list_defaulters(store: FeeStore, class_id: str) -> DefaultersResponse:
    """Unpaid students with a nonzero balance, largest balance first."""
    year_id, statuses = _class_statuses(store, class_id)
    defaulters = [s for s in statuses if s.status != FeePaymentStatus.paid and s.outstanding_total > ZERO]
    defaulters.sort(key=lambda s: s.outstanding_total, reverse=True)
    return DefaultersResponse(class_id=class_id, academic_year_id=year_id, defaulters=defaulters)
