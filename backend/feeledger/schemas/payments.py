# feeledger/schemas/payments.py

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date
from decimal import Decimal
from enum import Enum


class PaymentMethod(str, Enum):
    cash   = "cash"
    online = "online"


class FeePaymentStatus(str, Enum):
    paid    = "paid"
    partial = "partial"
    pending = "pending"


# ── Allocation ───────────────────────────────────────────────
class Allocation(BaseModel):
    """How one payment is split between bus and school fees."""
    bus_amount: Decimal = Field(ge=0, decimal_places=2)
    school_amount: Decimal = Field(ge=0, decimal_places=2)

    @property
    def total(self) -> Decimal:
        return self.bus_amount + self.school_amount


# ── Payments ─────────────────────────────────────────────────
class PaymentCreate(BaseModel):
    student_id: str
    amount: Decimal = Field(gt=0, decimal_places=2)
    payment_method: PaymentMethod = PaymentMethod.cash
    allocation: Optional[Allocation] = None        # manual split; default policy when absent
    payment_date: Optional[date] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    academic_year_id: Optional[str] = None         # defaults to the current year


class PaymentCorrection(BaseModel):
    amount: Decimal = Field(gt=0, decimal_places=2)
    payment_method: Optional[PaymentMethod] = None
    allocation: Optional[Allocation] = None
    payment_date: Optional[date] = None
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    id: str
    student_id: str
    academic_year_id: str
    amount_paid: Decimal
    payment_date: date
    payment_method: PaymentMethod
    transaction_id: Optional[str] = None
    receipt_number: str
    notes: Optional[str] = None
    created_by: Optional[str] = None
    allocation: Optional[Allocation] = None


class PaymentSummary(BaseModel):
    total_amount: Decimal = Decimal("0")
    cash_amount: Decimal = Decimal("0")
    online_amount: Decimal = Decimal("0")
    bus_fees_amount: Decimal = Decimal("0")
    school_fees_amount: Decimal = Decimal("0")
    payment_count: int = 0


# ── Fee status (derived, never persisted) ────────────────────
class FeeStatus(BaseModel):
    student_id: str
    academic_year_id: str
    total_school_fees: Decimal
    total_bus_fees: Decimal
    total_fees: Decimal
    paid_school_fees: Decimal
    paid_bus_fees: Decimal
    total_paid: Decimal
    outstanding_school: Decimal
    outstanding_bus: Decimal
    outstanding_total: Decimal
    status: FeePaymentStatus
    last_payment_date: Optional[date] = None


class ClassFeeSummary(BaseModel):
    class_id: str
    academic_year_id: str
    total_students: int = 0
    total_fees: Decimal = Decimal("0")
    total_paid: Decimal = Decimal("0")
    total_outstanding: Decimal = Decimal("0")
    paid_count: int = 0
    partial_count: int = 0
    pending_count: int = 0
    collection_percentage: Decimal = Decimal("0")


class DefaultersResponse(BaseModel):
    class_id: str
    academic_year_id: str
    defaulters: List[FeeStatus] = []
