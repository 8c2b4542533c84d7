# feeledger/services/carry_forward_service.py
#
# Starting a new year's fee structure from an old one.
#
# Classes are re-created every year with new ids, so an item is
# carried over by matching its class NAME in the target year. An item
# whose class has no namesake, or whose (class, fee type) already
# exists in the target, is skipped and counted. The source year is
# only read; all inserts land in one batch.

from datetime import date
from typing import Any, Dict, List, Optional
from uuid import uuid4

from feeledger.core.errors import (
    NoFeeStructureFoundError, NoPreviousYearFoundError, NotFoundError,
)
from feeledger.core.store import FeeStore, WriteBatch
from feeledger.schemas.fees import CarryForwardResult
import logging

logger = logging.getLogger(__name__)


def _require_target(store: FeeStore, to_year_id: str) -> Dict[str, Any]:
    year = store.select_one("academic_years", id=to_year_id)
    if not year:
        raise NotFoundError(f"Academic year '{to_year_id}' not found")
    return year


def _require_source(store: FeeStore, from_year_id: Optional[str]) -> Dict[str, Any]:
    year = store.select_one("academic_years", id=from_year_id) if from_year_id else None
    if not year:
        raise NoPreviousYearFoundError()
    return year


def copy_fee_structure(
    store: FeeStore,
    from_year_id: str,
    to_year_id: str,
    due_date: Optional[date] = None,
    created_by: Optional[str] = None,
) -> CarryForwardResult:
    source = _require_source(store, from_year_id)
    target = _require_target(store, to_year_id)

    snap = store.snapshot({
        "fee_structure": {"academic_year_id": [from_year_id, to_year_id]},
        "classes":       {"academic_year_id": [from_year_id, to_year_id]},
    })
    source_items = snap.where("fee_structure", academic_year_id=from_year_id)
    if not source_items:
        raise NoFeeStructureFoundError(f"No fee structure found for {source['year_name']}")

    source_class_names = {c["id"]: c["name"] for c in snap.where("classes", academic_year_id=from_year_id)}
    target_classes = {c["name"]: c["id"] for c in snap.where("classes", academic_year_id=to_year_id)}
    taken = {
        (i["class_id"], i["fee_type_id"])
        for i in snap.where("fee_structure", academic_year_id=to_year_id)
    }

    reset_due = (due_date or date.fromisoformat(str(target["start_date"])[:10])).isoformat()
    provenance = f"Copied from {source['year_name']}"

    batch = WriteBatch("carry_forward.fee_structure")
    skipped: List[str] = []
    for item in source_items:
        class_name = source_class_names.get(item["class_id"])
        target_class_id = target_classes.get(class_name) if class_name is not None else None
        if target_class_id is None:
            skipped.append(f"class '{class_name}' does not exist in {target['year_name']}")
            continue
        if (target_class_id, item["fee_type_id"]) in taken:
            skipped.append(f"class '{class_name}' already has fee type {item['fee_type_id']}")
            continue

        taken.add((target_class_id, item["fee_type_id"]))
        batch.insert("fee_structure", {
            "id":                              str(uuid4()),
            "academic_year_id":                to_year_id,
            "class_id":                        target_class_id,
            "fee_type_id":                     item["fee_type_id"],
            "amount":                          str(item["amount"]),
            "due_date":                        reset_due,
            "applicable_to_new_students_only": bool(item.get("applicable_to_new_students_only")),
            "is_recurring_monthly":            bool(item.get("is_recurring_monthly")),
            "notes":                           provenance,
            "last_updated_by":                 created_by,
        })

    store.apply(batch)

    logger.info(
        f"Fee structure carried forward {source['year_name']} → {target['year_name']}: "
        f"{len(batch)} copied, {len(skipped)} skipped"
    )
    return CarryForwardResult(
        from_year_id=from_year_id,
        to_year_id=to_year_id,
        copied_count=len(batch),
        skipped_count=len(skipped),
        skipped=skipped,
    )


def copy_from_previous_year(
    store: FeeStore,
    to_year_id: str,
    due_date: Optional[date] = None,
    created_by: Optional[str] = None,
) -> CarryForwardResult:
    """Carry forward from the year linked as this year's predecessor."""
    target = _require_target(store, to_year_id)
    return copy_fee_structure(store, target.get("previous_year_id"), to_year_id, due_date, created_by)


def copy_bus_fee_structure(
    store: FeeStore,
    from_year_id: str,
    to_year_id: str,
    created_by: Optional[str] = None,
) -> CarryForwardResult:
    """
    Carry active bus fees forward, re-dated to the target year's bounds.
    Villages already priced in the target year are skipped.
    """
    source = _require_source(store, from_year_id)
    target = _require_target(store, to_year_id)

    snap = store.snapshot({
        "bus_fee_structure": {"academic_year_id": [from_year_id, to_year_id], "is_active": True},
    })
    source_fees = snap.where("bus_fee_structure", academic_year_id=from_year_id)
    if not source_fees:
        raise NoFeeStructureFoundError(f"No bus fees found for {source['year_name']}")
    priced = {f["village_id"] for f in snap.where("bus_fee_structure", academic_year_id=to_year_id)}

    batch = WriteBatch("carry_forward.bus_fees")
    skipped: List[str] = []
    for fee in source_fees:
        if fee["village_id"] in priced:
            skipped.append(f"village {fee['village_id']} already has a bus fee in {target['year_name']}")
            continue
        priced.add(fee["village_id"])
        batch.insert("bus_fee_structure", {
            "id":                  str(uuid4()),
            "academic_year_id":    to_year_id,
            "village_id":          fee["village_id"],
            "fee_amount":          str(fee["fee_amount"]),
            "effective_from_date": str(target["start_date"])[:10],
            "effective_to_date":   str(target["end_date"])[:10],
            "is_active":           True,
            "notes":               f"Copied from {source['year_name']}",
            "last_updated_by":     created_by,
        })

    store.apply(batch)

    logger.info(
        f"Bus fees carried forward {source['year_name']} → {target['year_name']}: "
        f"{len(batch)} copied, {len(skipped)} skipped"
    )
    return CarryForwardResult(
        from_year_id=from_year_id,
        to_year_id=to_year_id,
        copied_count=len(batch),
        skipped_count=len(skipped),
        skipped=skipped,
    )
