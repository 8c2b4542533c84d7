# feeledger/schemas/academic.py

from pydantic import BaseModel, Field
from typing import Optional
from datetime import date, datetime
from enum import Enum


class TransitionStatus(str, Enum):
    pending     = "pending"
    in_progress = "in_progress"
    completed   = "completed"


TRANSITION_ORDER = [TransitionStatus.pending, TransitionStatus.in_progress, TransitionStatus.completed]


# ── Academic Years ───────────────────────────────────────────
class AcademicYearCreate(BaseModel):
    year_name: str = Field(examples=["2025-2026"])
    is_current: bool = False
    transition_status: TransitionStatus = TransitionStatus.pending


class TransitionUpdate(BaseModel):
    transition_status: TransitionStatus


class AcademicYearResponse(BaseModel):
    id: str
    year_name: str
    start_date: date
    end_date: date
    is_current: bool = False                # derived from app_settings, never stored
    transition_status: TransitionStatus = TransitionStatus.pending
    previous_year_id: Optional[str] = None
    next_year_id: Optional[str] = None
    created_at: Optional[datetime] = None
