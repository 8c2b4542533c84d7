# feeledger/services/allocation_service.py
#
# Splits one payment between school fees and bus fees.
#
#   Default policy: school first, then bus, any overpayment
#   back onto school.
#   Manual override: the caller's split, accepted only if it adds
#   up to the payment exactly.
#
# Amounts must be whole cents, matching the numeric(12,2) columns.
# Everything after that is Decimal arithmetic with no rounding step,
# so bus_amount + school_amount == payment amount always holds.
# The result is stored with the payment and never recomputed.

from decimal import Decimal
from typing import Optional

from feeledger.core.errors import ConflictError, ValidationError
from feeledger.schemas.common import quantize_money, to_money
from feeledger.schemas.payments import Allocation

ZERO = Decimal("0")


def allocate(
    payment_amount: Decimal,
    outstanding_bus: Decimal,
    outstanding_school: Decimal,
    manual_override: Optional[Allocation] = None,
) -> Allocation:
    payment_amount = to_money(payment_amount)
    if payment_amount <= ZERO:
        raise ValidationError(
            "Payment amount must be greater than 0",
            errors=[{"index": None, "field": "amount", "message": "must be > 0"}],
        )
    _require_cents(payment_amount, "amount")

    if manual_override is not None:
        return _validate_override(payment_amount, manual_override)

    outstanding_school = max(to_money(outstanding_school), ZERO)
    outstanding_bus = max(to_money(outstanding_bus), ZERO)

    school = min(payment_amount, outstanding_school)
    remainder = payment_amount - school
    bus = min(remainder, outstanding_bus)
    school += remainder - bus               # overpayment lands on school

    return Allocation(bus_amount=bus, school_amount=school)


def _require_cents(value: Decimal, field: str) -> None:
    if quantize_money(value) != value:
        raise ValidationError(
            f"{value} has more than two decimal places",
            errors=[{"index": None, "field": field, "message": "must be whole cents"}],
        )


def _validate_override(payment_amount: Decimal, override: Allocation) -> Allocation:
    bus = to_money(override.bus_amount)
    school = to_money(override.school_amount)
    if bus < ZERO or school < ZERO:
        raise ValidationError(
            "Allocation amounts cannot be negative",
            errors=[{"index": None, "field": "allocation", "message": "negative amount"}],
        )
    _require_cents(bus, "allocation.bus_amount")
    _require_cents(school, "allocation.school_amount")
    if bus + school != payment_amount:
        raise ValidationError(
            f"Allocation {bus} + {school} does not equal payment amount {payment_amount}",
            errors=[{"index": None, "field": "allocation", "message": "sum mismatch"}],
        )
    return Allocation(bus_amount=bus, school_amount=school)


def check_conservation(payment: dict, allocation: Optional[dict]) -> None:
    """Raise ConflictError if a stored allocation does not add up to its payment."""
    if allocation is None:
        return
    amount = to_money(payment.get("amount_paid"))
    split = to_money(allocation.get("bus_fee_amount")) + to_money(allocation.get("school_fee_amount"))
    if split != amount:
        raise ConflictError(
            f"Payment {payment.get('receipt_number') or payment.get('id')} is allocated "
            f"{split} but recorded as {amount}",
            {"payment_id": payment.get("id")},
        )
