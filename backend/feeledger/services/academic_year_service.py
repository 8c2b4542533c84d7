# feeledger/services/academic_year_service.py
#
# Academic years and the single "current year" pointer.
#
# The current year is NOT a boolean column scanned across rows.
# It is app_settings.current_academic_year_id on one row
# (id = 'global'), so moving it is a single-row write and two
# years can never be current at once. AcademicYearResponse.is_current
# is filled in on read.

import re
from datetime import date
from typing import Optional, List, Tuple
from uuid import uuid4

from feeledger.core.config import settings
from feeledger.core.errors import ConflictError, NotFoundError, ValidationError
from feeledger.core.store import FeeStore, SETTINGS_ROW_ID, WriteBatch
from feeledger.schemas.academic import (
    AcademicYearCreate, AcademicYearResponse, TransitionStatus, TRANSITION_ORDER,
)
import logging

logger = logging.getLogger(__name__)

YEAR_NAME_PATTERN = re.compile(r"^(\d{4})-(\d{4})$")


def parse_year_name(year_name: str) -> Tuple[date, date]:
    """
    "2025-2026" → (2025-06-01, 2026-04-30).
    The second year must follow the first directly.
    """
    match = YEAR_NAME_PATTERN.match(year_name or "")
    if not match:
        raise ValidationError(
            "Academic year must be in format YYYY-YYYY (e.g., 2025-2026)",
            errors=[{"index": None, "field": "year_name", "message": "invalid format"}],
        )
    start_year, end_year = int(match.group(1)), int(match.group(2))
    if end_year != start_year + 1:
        raise ValidationError(
            "End year must be the next year after start year",
            errors=[{"index": None, "field": "year_name", "message": "years not consecutive"}],
        )
    start = date(start_year, settings.ACADEMIC_YEAR_START_MONTH, settings.ACADEMIC_YEAR_START_DAY)
    end = date(end_year, settings.ACADEMIC_YEAR_END_MONTH, settings.ACADEMIC_YEAR_END_DAY)
    if not start < end:
        raise ValidationError(f"Academic year {year_name} resolves to an empty date range")
    return start, end


def current_year_id(store: FeeStore) -> Optional[str]:
    row = store.select_one("app_settings", id=SETTINGS_ROW_ID)
    return (row or {}).get("current_academic_year_id")


def _to_response(row: dict, current_id: Optional[str]) -> AcademicYearResponse:
    return AcademicYearResponse(**{**row, "is_current": row["id"] == current_id})


def _current_pointer(year_id: str, changed_by: Optional[str]) -> dict:
    return {
        "id": SETTINGS_ROW_ID,
        "current_academic_year_id": year_id,
        "updated_by": changed_by,
    }


def create_academic_year(
    store: FeeStore,
    data: AcademicYearCreate,
    created_by: Optional[str] = None,
) -> AcademicYearResponse:
    """
    Insert a year, link it to its predecessor, and optionally make it current.

    Insert, predecessor back-link and current-year pointer are one
    batch: either all of them land or none do.
    """
    start_date, end_date = parse_year_name(data.year_name)

    if store.select_one("academic_years", year_name=data.year_name):
        raise ConflictError(f"Academic year '{data.year_name}' already exists")

    # Predecessor = latest end_date strictly before our start_date
    previous = None
    for year in store.select("academic_years"):
        if date.fromisoformat(str(year["end_date"])) < start_date:
            if previous is None or str(year["end_date"]) > str(previous["end_date"]):
                previous = year

    year_id = str(uuid4())
    row = {
        "id":                year_id,
        "year_name":         data.year_name,
        "start_date":        start_date.isoformat(),
        "end_date":          end_date.isoformat(),
        "transition_status": data.transition_status.value,
        "previous_year_id":  previous["id"] if previous else None,
        "next_year_id":      None,
        "created_by":        created_by,
    }

    batch = WriteBatch("academic_year.create").insert("academic_years", row)
    if previous:
        batch.update("academic_years", {"next_year_id": year_id}, id=previous["id"])
    if data.is_current:
        batch.upsert("app_settings", _current_pointer(year_id, created_by))

    written = store.apply(batch)
    created = next((w for w in written if w.get("id") == year_id), row)

    logger.info(
        f"Academic year {data.year_name} created"
        + (f", follows {previous['year_name']}" if previous else "")
        + (" (current)" if data.is_current else "")
    )
    return _to_response(created, year_id if data.is_current else current_year_id(store))


def set_current_academic_year(
    store: FeeStore,
    year_id: str,
    changed_by: Optional[str] = None,
) -> AcademicYearResponse:
    year = store.require_one("academic_years", year_id, "Academic year")
    store.apply(
        WriteBatch("academic_year.set_current")
        .upsert("app_settings", _current_pointer(year_id, changed_by))
    )
    logger.info(f"Current academic year set to {year['year_name']}")
    return _to_response(year, year_id)


def get_current_academic_year(store: FeeStore) -> AcademicYearResponse:
    current_id = current_year_id(store)
    year = store.select_one("academic_years", id=current_id) if current_id else None
    if not year:
        raise NotFoundError("No current academic year. Please set one.")
    return _to_response(year, current_id)


def get_academic_year(store: FeeStore, year_id: str) -> AcademicYearResponse:
    year = store.require_one("academic_years", year_id, "Academic year")
    return _to_response(year, current_year_id(store))


def list_academic_years(store: FeeStore) -> List[AcademicYearResponse]:
    """All years, newest start_date first."""
    current_id = current_year_id(store)
    rows = store.select("academic_years", order_by="start_date", desc=True)
    return [_to_response(r, current_id) for r in rows]


def update_transition_status(
    store: FeeStore,
    year_id: str,
    status: TransitionStatus,
) -> AcademicYearResponse:
    """Transition only moves forward: pending → in_progress → completed."""
    year = store.require_one("academic_years", year_id, "Academic year")
    current = TransitionStatus(year.get("transition_status") or TransitionStatus.pending)
    if TRANSITION_ORDER.index(status) < TRANSITION_ORDER.index(current):
        raise ValidationError(
            f"Cannot move transition status back from {current.value} to {status.value}"
        )
    if status != current:
        store.apply(
            WriteBatch("academic_year.transition")
            .update("academic_years", {"transition_status": status.value}, id=year_id)
        )
        logger.info(f"Academic year {year['year_name']} transition: {current.value} → {status.value}")
    return get_academic_year(store, year_id)
