# feeledger/schemas/fees.py

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal
from enum import Enum


class FeeCategory(str, Enum):
    school    = "school"
    bus       = "bus"
    admission = "admission"


class FeeFrequency(str, Enum):
    monthly   = "monthly"
    quarterly = "quarterly"
    annual    = "annual"


# ── Fee Types ────────────────────────────────────────────────
class FeeTypeCreate(BaseModel):
    name: str = Field(min_length=2, examples=["Tuition Fee", "Lab Fee"])
    description: Optional[str] = None
    category: FeeCategory = FeeCategory.school
    frequency: FeeFrequency = FeeFrequency.annual
    is_monthly: bool = False
    is_for_new_students_only: bool = False


class FeeTypeResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    category: FeeCategory
    frequency: FeeFrequency
    is_monthly: bool
    is_for_new_students_only: bool


# ── Fee Structure ────────────────────────────────────────────
class FeeStructureItemCreate(BaseModel):
    """
    One line of a year's fee structure as submitted by an admin.
    Deliberately loose: the catalog validates the whole batch itself
    so it can report every bad row by index at once.
    """
    class_id: Optional[str] = None
    fee_type_id: Optional[str] = None
    amount: Optional[Decimal] = None
    due_date: Optional[date] = None
    applicable_to_new_students_only: bool = False
    is_recurring_monthly: bool = False
    notes: Optional[str] = None


class FeeStructureItemResponse(BaseModel):
    id: str
    academic_year_id: str
    class_id: str
    class_name: Optional[str] = None
    fee_type_id: str
    fee_type: Optional[FeeTypeResponse] = None
    amount: Decimal
    due_date: date
    applicable_to_new_students_only: bool = False
    is_recurring_monthly: bool = False
    notes: Optional[str] = None


class FeeStructureSaveResult(BaseModel):
    academic_year_id: str
    added: int
    changed: int
    removed: int
    unchanged: int
    history_records: int


class FeeAmountUpdate(BaseModel):
    amount: Decimal = Field(gt=0)
    reason: Optional[str] = None


class FeeStructureHistoryResponse(BaseModel):
    id: str
    fee_structure_id: Optional[str] = None
    previous_amount: Optional[Decimal] = None
    new_amount: Decimal
    changed_by: Optional[str] = None
    change_date: datetime
    reason: Optional[str] = None


class ClassTotals(BaseModel):
    monthly_total: Decimal
    term_total: Decimal
    annual_total: Decimal


class ClassTotalsResponse(ClassTotals):
    class_id: str
    class_name: Optional[str] = None
    item_count: int


# ── Bus Fees ─────────────────────────────────────────────────
class BusFeeCreate(BaseModel):
    village_id: str
    academic_year_id: str
    fee_amount: Decimal = Field(gt=0)
    effective_from_date: date
    effective_to_date: date
    notes: Optional[str] = None


class BusFeeResponse(BaseModel):
    id: str
    academic_year_id: str
    village_id: str
    village_name: Optional[str] = None
    distance_from_school: Optional[Decimal] = None
    fee_amount: Decimal
    effective_from_date: date
    effective_to_date: date
    is_active: bool


# ── Carry-forward ────────────────────────────────────────────
class CarryForwardRequest(BaseModel):
    from_year_id: str
    to_year_id: str
    due_date: Optional[date] = None


class CarryForwardResult(BaseModel):
    from_year_id: str
    to_year_id: str
    copied_count: int
    skipped_count: int
    skipped: List[str] = []             # human-readable reasons, one per skipped item
