# ============================================================
# feeledger/schemas/common.py
#
# Pydantic schemas define what data looks like going IN
# (request body) and coming OUT (response body).
# They are NOT the database tables; they are the API contract.
#
# Naming convention we follow:
#   SomethingCreate   → body for POST/PUT requests
#   SomethingResponse → what the API returns
# ============================================================

from decimal import Decimal, ROUND_HALF_UP
from pydantic import BaseModel
from typing import Any, Optional, Generic, TypeVar

T = TypeVar("T")

CENTS = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Parse a stored amount (str/int/float/Decimal/None) into an exact Decimal."""
    if value is None or value == "":
        return Decimal("0")
    return value if isinstance(value, Decimal) else Decimal(str(value))


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


# ── Standard API response wrapper ────────────────────────────
class APIResponse(BaseModel, Generic[T]):
    """
    Every endpoint returns this shape:
    {
        "success": true,
        "message": "Fee structure saved",
        "data": { ... }
    }
    """
    success: bool = True
    message: str = "OK"
    data: Optional[T] = None


class ErrorResponse(BaseModel):
    """Returned when something goes wrong."""
    success: bool = False
    message: str
    detail: Optional[Any] = None
