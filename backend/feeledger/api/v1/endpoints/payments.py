# ============================================================
# feeledger/api/v1/endpoints/payments.py
#
# Fee collection. Admins and accountants record payments; a
# wrong amount is fixed with a correction (delete + re-insert
# under the same receipt number), never an in-place edit.
# ============================================================

from datetime import date
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Response, status

from feeledger.core.database import get_store
from feeledger.core.security import CurrentUser, get_current_user, require_roles
from feeledger.core.store import FeeStore
from feeledger.schemas.common import APIResponse
from feeledger.schemas.payments import (
    PaymentCorrection, PaymentCreate, PaymentMethod, PaymentResponse, PaymentSummary,
)
from feeledger.services import payment_service

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("", response_model=APIResponse[PaymentResponse], status_code=201)
def record_payment(
    body: PaymentCreate,
    user: CurrentUser = Depends(require_roles("admin", "accountant")),
    store: FeeStore = Depends(get_store),
):
    payment = payment_service.record_payment(store, body, created_by=user.user_id)
    return APIResponse(data=payment, message=f"Payment recorded. Receipt {payment.receipt_number}")


@router.get("", response_model=APIResponse[List[PaymentResponse]])
def list_payments(
    student_id: Optional[str] = None,
    year_id: Optional[str] = None,
    method: Optional[PaymentMethod] = None,
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    user: CurrentUser = Depends(get_current_user),
    store: FeeStore = Depends(get_store),
):
    payments = payment_service.list_payments(store, student_id, year_id, method, start_date, end_date)
    return APIResponse(data=payments)


@router.get("/summary", response_model=APIResponse[PaymentSummary])
def payment_summary(
    student_id: Optional[str] = None,
    year_id: Optional[str] = None,
    method: Optional[PaymentMethod] = None,
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    user: CurrentUser = Depends(require_roles("admin", "accountant")),
    store: FeeStore = Depends(get_store),
):
    summary = payment_service.summarize_payments(store, student_id, year_id, method, start_date, end_date)
    return APIResponse(data=summary)


@router.put("/{payment_id}", response_model=APIResponse[PaymentResponse])
def correct_payment(
    payment_id: str,
    body: PaymentCorrection,
    user: CurrentUser = Depends(require_roles("admin", "accountant")),
    store: FeeStore = Depends(get_store),
):
    payment = payment_service.correct_payment(store, payment_id, body, changed_by=user.user_id)
    return APIResponse(data=payment, message="Payment corrected")


@router.delete("/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment(
    payment_id: str,
    user: CurrentUser = Depends(require_roles("admin")),
    store: FeeStore = Depends(get_store),
):
    payment_service.delete_payment(store, payment_id, deleted_by=user.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
