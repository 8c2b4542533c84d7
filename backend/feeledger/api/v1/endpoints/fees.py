# ============================================================
# feeledger/api/v1/endpoints/fees.py
#
# Fee types, fee structures, bus fees, carry-forward and fee
# status. Writes need the admin role; reads need any signed-in
# user.
# ============================================================

from typing import List, Optional
from fastapi import APIRouter, Body, Depends, Query

from feeledger.core.database import get_store
from feeledger.core.security import CurrentUser, get_current_user, require_roles
from feeledger.core.store import FeeStore
from feeledger.schemas.common import APIResponse
from feeledger.schemas.fees import (
    BusFeeCreate, BusFeeResponse, CarryForwardRequest, CarryForwardResult,
    ClassTotalsResponse, FeeAmountUpdate, FeeCategory,
    FeeStructureHistoryResponse, FeeStructureItemCreate,
    FeeStructureItemResponse, FeeStructureSaveResult, FeeTypeCreate,
    FeeTypeResponse,
)
from feeledger.schemas.payments import ClassFeeSummary, DefaultersResponse, FeeStatus
from feeledger.services import (
    carry_forward_service, fee_status_service, fee_structure_service,
)

router = APIRouter(tags=["Fees"])


# ═══════════════════════════════════════════════════════════
# FEE TYPES
# ═══════════════════════════════════════════════════════════

@router.post("/types", response_model=APIResponse[FeeTypeResponse], status_code=201)
def create_fee_type(
    body: FeeTypeCreate,
    user: CurrentUser = Depends(require_roles("admin")),
    store: FeeStore = Depends(get_store),
):
    fee_type = fee_structure_service.create_fee_type(store, body)
    return APIResponse(data=fee_type, message=f"Fee type '{fee_type.name}' created")


@router.get("/types", response_model=APIResponse[List[FeeTypeResponse]])
def list_fee_types(
    category: Optional[FeeCategory] = None,
    user: CurrentUser = Depends(get_current_user),
    store: FeeStore = Depends(get_store),
):
    return APIResponse(data=fee_structure_service.list_fee_types(store, category))


# ═══════════════════════════════════════════════════════════
# FEE STRUCTURE
# ═══════════════════════════════════════════════════════════

@router.get("/structure/{year_id}", response_model=APIResponse[List[FeeStructureItemResponse]])
def get_fee_structure(
    year_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: FeeStore = Depends(get_store),
):
    return APIResponse(data=fee_structure_service.get_fee_structure(store, year_id))


@router.put("/structure/{year_id}", response_model=APIResponse[FeeStructureSaveResult])
def set_fee_structure(
    year_id: str,
    items: List[FeeStructureItemCreate] = Body(...),
    user: CurrentUser = Depends(require_roles("admin")),
    store: FeeStore = Depends(get_store),
):
    """Replaces the whole structure of the year. Any invalid item rejects the lot."""
    result = fee_structure_service.set_fee_structure(store, year_id, items, changed_by=user.user_id)
    return APIResponse(data=result, message="Fee structure saved")


@router.get("/structure/{year_id}/totals", response_model=APIResponse[List[ClassTotalsResponse]])
def get_class_totals(
    year_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: FeeStore = Depends(get_store),
):
    return APIResponse(data=fee_structure_service.get_class_totals(store, year_id))


@router.patch("/structure/items/{item_id}", response_model=APIResponse[FeeStructureItemResponse])
def update_fee_item_amount(
    item_id: str,
    body: FeeAmountUpdate,
    user: CurrentUser = Depends(require_roles("admin")),
    store: FeeStore = Depends(get_store),
):
    item = fee_structure_service.update_fee_item_amount(
        store, item_id, body.amount, changed_by=user.user_id, reason=body.reason,
    )
    return APIResponse(data=item, message="Fee amount updated")


@router.get("/structure/items/{item_id}/history",
            response_model=APIResponse[List[FeeStructureHistoryResponse]])
def get_fee_history(
    item_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: FeeStore = Depends(get_store),
):
    return APIResponse(data=fee_structure_service.get_fee_history(store, item_id))


# ═══════════════════════════════════════════════════════════
# BUS FEES
# ═══════════════════════════════════════════════════════════

@router.get("/bus/{year_id}", response_model=APIResponse[List[BusFeeResponse]])
def list_bus_fees(
    year_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: FeeStore = Depends(get_store),
):
    return APIResponse(data=fee_structure_service.list_bus_fees(store, year_id))


@router.put("/bus", response_model=APIResponse[BusFeeResponse])
def set_bus_fee(
    body: BusFeeCreate,
    user: CurrentUser = Depends(require_roles("admin")),
    store: FeeStore = Depends(get_store),
):
    fee = fee_structure_service.set_bus_fee(store, body, changed_by=user.user_id)
    return APIResponse(data=fee, message="Bus fee saved")


# ═══════════════════════════════════════════════════════════
# CARRY-FORWARD
# ═══════════════════════════════════════════════════════════

@router.post("/carry-forward", response_model=APIResponse[CarryForwardResult])
def carry_forward_fee_structure(
    body: CarryForwardRequest,
    user: CurrentUser = Depends(require_roles("admin")),
    store: FeeStore = Depends(get_store),
):
    result = carry_forward_service.copy_fee_structure(
        store, body.from_year_id, body.to_year_id, body.due_date, created_by=user.user_id,
    )
    return APIResponse(
        data=result,
        message=f"Copied {result.copied_count} fee items, skipped {result.skipped_count}",
    )


@router.post("/carry-forward/previous/{year_id}", response_model=APIResponse[CarryForwardResult])
def carry_forward_from_previous(
    year_id: str,
    user: CurrentUser = Depends(require_roles("admin")),
    store: FeeStore = Depends(get_store),
):
    result = carry_forward_service.copy_from_previous_year(store, year_id, created_by=user.user_id)
    return APIResponse(
        data=result,
        message=f"Copied {result.copied_count} fee items, skipped {result.skipped_count}",
    )


@router.post("/carry-forward/bus", response_model=APIResponse[CarryForwardResult])
def carry_forward_bus_fees(
    body: CarryForwardRequest,
    user: CurrentUser = Depends(require_roles("admin")),
    store: FeeStore = Depends(get_store),
):
    result = carry_forward_service.copy_bus_fee_structure(
        store, body.from_year_id, body.to_year_id, created_by=user.user_id,
    )
    return APIResponse(
        data=result,
        message=f"Copied {result.copied_count} bus fees, skipped {result.skipped_count}",
    )


# ═══════════════════════════════════════════════════════════
# FEE STATUS
# ═══════════════════════════════════════════════════════════

@router.get("/status/students/{student_id}", response_model=APIResponse[FeeStatus])
def get_student_fee_status(
    student_id: str,
    year_id: Optional[str] = Query(default=None, description="Defaults to the current year"),
    user: CurrentUser = Depends(get_current_user),
    store: FeeStore = Depends(get_store),
):
    return APIResponse(data=fee_status_service.compute_student_fee_status(store, student_id, year_id))


@router.get("/status/classes/{class_id}", response_model=APIResponse[ClassFeeSummary])
def get_class_fee_status(
    class_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: FeeStore = Depends(get_store),
):
    return APIResponse(data=fee_status_service.compute_class_fee_status(store, class_id))


@router.get("/status/classes/{class_id}/defaulters", response_model=APIResponse[DefaultersResponse])
def get_class_defaulters(
    class_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: FeeStore = Depends(get_store),
):
    return APIResponse(data=fee_status_service.list_defaulters(store, class_id))
