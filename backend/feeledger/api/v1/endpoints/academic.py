# feeledger/api/v1/endpoints/academic.py
#
# Academic years. Creating years and moving the current-year
# pointer are admin operations; anyone signed in may read.

from typing import List
from fastapi import APIRouter, Depends

from feeledger.core.database import get_store
from feeledger.core.security import CurrentUser, get_current_user, require_roles
from feeledger.core.store import FeeStore
from feeledger.schemas.academic import (
    AcademicYearCreate, AcademicYearResponse, TransitionUpdate,
)
from feeledger.schemas.common import APIResponse
from feeledger.services import academic_year_service

router = APIRouter(tags=["Academic Years"])


@router.post("/years", response_model=APIResponse[AcademicYearResponse], status_code=201)
def create_year(
    body: AcademicYearCreate,
    user: CurrentUser = Depends(require_roles("admin")),
    store: FeeStore = Depends(get_store),
):
    year = academic_year_service.create_academic_year(store, body, created_by=user.user_id)
    return APIResponse(data=year, message=f"Academic year '{year.year_name}' created")


@router.get("/years", response_model=APIResponse[List[AcademicYearResponse]])
def list_years(
    user: CurrentUser = Depends(get_current_user),
    store: FeeStore = Depends(get_store),
):
    return APIResponse(data=academic_year_service.list_academic_years(store))


@router.get("/years/current", response_model=APIResponse[AcademicYearResponse])
def get_current_year(
    user: CurrentUser = Depends(get_current_user),
    store: FeeStore = Depends(get_store),
):
    return APIResponse(data=academic_year_service.get_current_academic_year(store))


@router.get("/years/{year_id}", response_model=APIResponse[AcademicYearResponse])
def get_year(
    year_id: str,
    user: CurrentUser = Depends(get_current_user),
    store: FeeStore = Depends(get_store),
):
    return APIResponse(data=academic_year_service.get_academic_year(store, year_id))


@router.post("/years/{year_id}/set-current", response_model=APIResponse[AcademicYearResponse])
def set_current_year(
    year_id: str,
    user: CurrentUser = Depends(require_roles("admin")),
    store: FeeStore = Depends(get_store),
):
    year = academic_year_service.set_current_academic_year(store, year_id, changed_by=user.user_id)
    return APIResponse(data=year, message=f"{year.year_name} is now the current academic year")


@router.patch("/years/{year_id}/transition", response_model=APIResponse[AcademicYearResponse])
def update_transition(
    year_id: str,
    body: TransitionUpdate,
    user: CurrentUser = Depends(require_roles("admin")),
    store: FeeStore = Depends(get_store),
):
    year = academic_year_service.update_transition_status(store, year_id, body.transition_status)
    return APIResponse(data=year, message="Transition status updated")
