# feeledger/services/fee_structure_service.py
#
# The fee catalog: fee types, per-class fee structure items for a
# year, per-village bus fees, and the frequency → total conversions.
#
# Saving a year's structure is an explicit diff against what is
# stored (added / changed / removed), applied as ONE WriteBatch.
# A history row is written before every update whose amount
# actually changes, inside the same batch, so the audit trail can
# never disagree with the structure it describes.

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from feeledger.core.errors import (
    DuplicateCombinationError, ValidationError,
)
from feeledger.core.store import FeeStore, WriteBatch
from feeledger.schemas.common import quantize_money, to_money
from feeledger.schemas.fees import (
    BusFeeCreate, BusFeeResponse, ClassTotals, ClassTotalsResponse,
    FeeCategory, FeeStructureHistoryResponse, FeeStructureItemCreate,
    FeeStructureItemResponse, FeeStructureSaveResult, FeeTypeCreate,
    FeeTypeResponse,
)
import logging

logger = logging.getLogger(__name__)

# Columns an admin may change on an existing item (besides amount)
_MUTABLE_FIELDS = ("due_date", "applicable_to_new_students_only", "is_recurring_monthly", "notes")

MONTHS_PER_YEAR = 12
MONTHS_PER_TERM = 4
TERMS_PER_YEAR = 3


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ═══════════════════════════════════════════════════════════
# FREQUENCY CONVERSIONS
# ═══════════════════════════════════════════════════════════

def _is_monthly(item: Dict[str, Any]) -> bool:
    if "is_monthly" in item:
        return bool(item["is_monthly"])
    fee_type = item.get("fee_type") or {}
    if "is_monthly" in fee_type:
        return bool(fee_type["is_monthly"])
    return bool(item.get("is_recurring_monthly"))


def compute_class_totals(items: Iterable[Dict[str, Any]]) -> ClassTotals:
    """
    Monthly item A:     monthly += A,    term += A*4, annual += A*12
    Non-monthly item A: monthly += A/12, term += A/3, annual += A

    Sums are kept exact and rounded to cents once at the end.
    """
    monthly = term = annual = Decimal("0")
    for item in items:
        amount = to_money(item.get("amount"))
        if _is_monthly(item):
            monthly += amount
            term += amount * MONTHS_PER_TERM
            annual += amount * MONTHS_PER_YEAR
        else:
            monthly += amount / MONTHS_PER_YEAR
            term += amount / TERMS_PER_YEAR
            annual += amount
    return ClassTotals(
        monthly_total=quantize_money(monthly),
        term_total=quantize_money(term),
        annual_total=quantize_money(annual),
    )


# ═══════════════════════════════════════════════════════════
# FEE TYPES
# ═══════════════════════════════════════════════════════════

def create_fee_type(store: FeeStore, data: FeeTypeCreate) -> FeeTypeResponse:
    row = store.insert("fee_types", {
        "id":                       str(uuid4()),
        "name":                     data.name.strip(),
        "description":              data.description,
        "category":                 data.category.value,
        "frequency":                data.frequency.value,
        "is_monthly":               data.is_monthly,
        "is_for_new_students_only": data.is_for_new_students_only,
    })
    logger.info(f"Fee type '{data.name}' created ({data.category.value}, {data.frequency.value})")
    return FeeTypeResponse(**row)


def list_fee_types(store: FeeStore, category: Optional[FeeCategory] = None) -> List[FeeTypeResponse]:
    filters = {"category": category.value} if category else None
    return [FeeTypeResponse(**r) for r in store.select("fee_types", filters, order_by="name")]


# ═══════════════════════════════════════════════════════════
# FEE STRUCTURE
# ═══════════════════════════════════════════════════════════

def validate_items(
    items: List[FeeStructureItemCreate],
    class_ids: Iterable[str],
    fee_types: Dict[str, Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """Return one error dict per problem, each tagged with the item's index."""
    class_ids = set(class_ids)
    errors: List[Dict[str, Any]] = []

    def err(index: int, field: str, message: str):
        errors.append({"index": index, "field": field, "message": message})

    for i, item in enumerate(items):
        if item.amount is None or item.amount <= 0:
            err(i, "amount", "amount must be greater than 0")
        if not item.class_id:
            err(i, "class_id", "class is required")
        elif item.class_id not in class_ids:
            err(i, "class_id", "class does not belong to this academic year")
        if not item.fee_type_id:
            err(i, "fee_type_id", "fee type is required")
        elif item.fee_type_id not in fee_types:
            err(i, "fee_type_id", "unknown fee type")
        elif fee_types[item.fee_type_id].get("category") == FeeCategory.bus.value:
            err(i, "fee_type_id", "bus fees are set per village, not per class")
        if item.due_date is None:
            err(i, "due_date", "due date is required")
    return errors


def find_duplicates(items: List[FeeStructureItemCreate]) -> List[Dict[str, Any]]:
    seen: Dict[Tuple[str, str], int] = {}
    duplicates = []
    for i, item in enumerate(items):
        key = (item.class_id, item.fee_type_id)
        if key in seen:
            duplicates.append({"index": i, "first_index": seen[key],
                               "class_id": item.class_id, "fee_type_id": item.fee_type_id})
        else:
            seen[key] = i
    return duplicates


def _item_row(year_id: str, item: FeeStructureItemCreate, changed_by: Optional[str]) -> Dict[str, Any]:
    return {
        "academic_year_id":                year_id,
        "class_id":                        item.class_id,
        "fee_type_id":                     item.fee_type_id,
        "amount":                          str(quantize_money(item.amount)),
        "due_date":                        item.due_date.isoformat(),
        "applicable_to_new_students_only": item.applicable_to_new_students_only,
        "is_recurring_monthly":            item.is_recurring_monthly,
        "notes":                           item.notes,
        "last_updated_by":                 changed_by,
    }


def _history_row(item: Dict[str, Any], new_amount: Decimal, changed_by: Optional[str],
                 reason: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id":               str(uuid4()),
        "fee_structure_id": item["id"],
        "academic_year_id": item.get("academic_year_id"),
        "previous_amount":  str(to_money(item.get("amount"))),
        "new_amount":       str(quantize_money(new_amount)),
        "changed_by":       changed_by,
        "change_date":      _now(),
        "reason":           reason,
    }


def set_fee_structure(
    store: FeeStore,
    year_id: str,
    items: List[FeeStructureItemCreate],
    changed_by: Optional[str] = None,
) -> FeeStructureSaveResult:
    """
    Replace the full fee structure of a year.

    Every item is validated before anything is written; on any error
    the stored structure is left exactly as it was.
    """
    year = store.require_one("academic_years", year_id, "Academic year")

    class_ids = [c["id"] for c in store.select("classes", {"academic_year_id": year_id})]
    fee_types = {t["id"]: t for t in store.select("fee_types")}

    errors = validate_items(items, class_ids, fee_types)
    if errors:
        raise ValidationError(f"{len({e['index'] for e in errors})} fee item(s) are invalid", errors=errors)

    duplicates = find_duplicates(items)
    if duplicates:
        raise DuplicateCombinationError(duplicates)

    existing = {
        (r["class_id"], r["fee_type_id"]): r
        for r in store.select("fee_structure", {"academic_year_id": year_id})
    }
    incoming = {(i.class_id, i.fee_type_id): i for i in items}

    batch = WriteBatch("fee_structure.replace")
    added = changed = unchanged = history = 0

    for key, item in incoming.items():
        row = _item_row(year_id, item, changed_by)
        current = existing.get(key)
        if current is None:
            batch.insert("fee_structure", {"id": str(uuid4()), **row})
            added += 1
            continue

        amount_changed = to_money(current.get("amount")) != quantize_money(item.amount)
        field_changes = {
            f: row[f] for f in _MUTABLE_FIELDS
            if str(current.get(f)) != str(row[f])
        }
        if not amount_changed and not field_changes:
            unchanged += 1
            continue

        if amount_changed:
            batch.insert("fee_structure_history", _history_row(current, item.amount, changed_by))
            field_changes["amount"] = row["amount"]
            history += 1
        field_changes["last_updated_by"] = changed_by
        batch.update("fee_structure", field_changes, id=current["id"])
        changed += 1

    removed_keys = [k for k in existing if k not in incoming]
    for key in removed_keys:
        batch.delete("fee_structure", id=existing[key]["id"])

    store.apply(batch)

    logger.info(
        f"Fee structure for {year['year_name']} saved: {added} added, {changed} changed, "
        f"{len(removed_keys)} removed, {unchanged} unchanged, {history} history records"
    )
    return FeeStructureSaveResult(
        academic_year_id=year_id,
        added=added,
        changed=changed,
        removed=len(removed_keys),
        unchanged=unchanged,
        history_records=history,
    )


def update_fee_item_amount(
    store: FeeStore,
    item_id: str,
    new_amount: Decimal,
    changed_by: Optional[str] = None,
    reason: Optional[str] = None,
) -> FeeStructureItemResponse:
    if new_amount is None or new_amount <= 0:
        raise ValidationError("amount must be greater than 0",
                              errors=[{"index": None, "field": "amount", "message": "must be > 0"}])
    item = store.require_one("fee_structure", item_id, "Fee structure item")

    if to_money(item.get("amount")) != quantize_money(new_amount):
        store.apply(
            WriteBatch("fee_structure.amount")
            .insert("fee_structure_history", _history_row(item, new_amount, changed_by, reason))
            .update("fee_structure",
                    {"amount": str(quantize_money(new_amount)), "last_updated_by": changed_by},
                    id=item_id)
        )
        logger.info(f"Fee item {item_id} amount {item.get('amount')} → {quantize_money(new_amount)}")

    items = get_fee_structure(store, item["academic_year_id"])
    return next(i for i in items if i.id == item_id)


def get_fee_history(store: FeeStore, item_id: str) -> List[FeeStructureHistoryResponse]:
    rows = store.select("fee_structure_history", {"fee_structure_id": item_id},
                        order_by="change_date", desc=True)
    return [FeeStructureHistoryResponse(**r) for r in rows]


def get_fee_structure(store: FeeStore, year_id: str) -> List[FeeStructureItemResponse]:
    """Items of a year with class name and fee type metadata resolved."""
    snap = store.snapshot({
        "fee_structure": {"academic_year_id": year_id},
        "classes":       {"academic_year_id": year_id},
        "fee_types":     None,
    })
    classes = {c["id"]: c for c in snap.rows("classes")}
    fee_types = {t["id"]: t for t in snap.rows("fee_types")}

    items = []
    for row in snap.rows("fee_structure"):
        fee_type = fee_types.get(row["fee_type_id"])
        items.append(FeeStructureItemResponse(
            **row,
            class_name=(classes.get(row["class_id"]) or {}).get("name"),
            fee_type=FeeTypeResponse(**fee_type) if fee_type else None,
        ))
    items.sort(key=lambda i: (i.class_name or "", i.fee_type.name if i.fee_type else ""))
    return items


def get_class_totals(store: FeeStore, year_id: str) -> List[ClassTotalsResponse]:
    store.require_one("academic_years", year_id, "Academic year")
    by_class: Dict[str, List[Dict[str, Any]]] = {}
    names: Dict[str, Optional[str]] = {}
    for item in get_fee_structure(store, year_id):
        names[item.class_id] = item.class_name
        by_class.setdefault(item.class_id, []).append({
            "amount":     item.amount,
            "is_monthly": item.fee_type.is_monthly if item.fee_type else item.is_recurring_monthly,
        })

    return [
        ClassTotalsResponse(
            class_id=class_id,
            class_name=names[class_id],
            item_count=len(class_items),
            **compute_class_totals(class_items).model_dump(),
        )
        for class_id, class_items in sorted(by_class.items(), key=lambda kv: names[kv[0]] or "")
    ]


# ═══════════════════════════════════════════════════════════
# BUS FEES
# ═══════════════════════════════════════════════════════════

def latest_active_bus_fee(rows: Iterable[Dict[str, Any]], village_id: str) -> Optional[Dict[str, Any]]:
    """The active row for a village; the latest effective_from_date wins."""
    candidates = [r for r in rows if r.get("village_id") == village_id and r.get("is_active")]
    return max(candidates, key=lambda r: str(r.get("effective_from_date") or ""), default=None)


def get_bus_fee(store: FeeStore, village_id: str, year_id: str) -> Optional[Decimal]:
    rows = store.select("bus_fee_structure", {"village_id": village_id,
                                              "academic_year_id": year_id, "is_active": True})
    row = latest_active_bus_fee(rows, village_id)
    return to_money(row["fee_amount"]) if row else None


def set_bus_fee(
    store: FeeStore,
    data: BusFeeCreate,
    changed_by: Optional[str] = None,
) -> BusFeeResponse:
    """
    Make `data` the active bus fee for a village in a year.

    The previous active row is deactivated (kept for history) and a
    bus_fee_history row records the amount change, all in one batch.
    """
    if not data.effective_from_date < data.effective_to_date:
        raise ValidationError(
            "Effective from date must be before effective to date",
            errors=[{"index": None, "field": "effective_to_date", "message": "must be after effective_from_date"}],
        )
    if data.fee_amount <= 0:
        raise ValidationError("Bus fee must be greater than 0")

    store.require_one("academic_years", data.academic_year_id, "Academic year")
    village = store.require_one("villages", data.village_id, "Village")

    active = store.select("bus_fee_structure", {"village_id": data.village_id,
                                                "academic_year_id": data.academic_year_id, "is_active": True})
    previous = latest_active_bus_fee(active, data.village_id)

    batch = WriteBatch("bus_fee.set")
    if active:
        batch.update("bus_fee_structure", {"is_active": False, "last_updated_by": changed_by},
                     village_id=data.village_id, academic_year_id=data.academic_year_id, is_active=True)
    new_amount = quantize_money(data.fee_amount)
    if previous is None or to_money(previous["fee_amount"]) != new_amount:
        batch.insert("bus_fee_history", {
            "id":               str(uuid4()),
            "village_id":       data.village_id,
            "academic_year_id": data.academic_year_id,
            "previous_amount":  str(to_money(previous["fee_amount"])) if previous else None,
            "new_amount":       str(new_amount),
            "changed_by":       changed_by,
            "change_date":      _now(),
        })
    row_id = str(uuid4())
    batch.insert("bus_fee_structure", {
        "id":                  row_id,
        "academic_year_id":    data.academic_year_id,
        "village_id":          data.village_id,
        "fee_amount":          str(new_amount),
        "effective_from_date": data.effective_from_date.isoformat(),
        "effective_to_date":   data.effective_to_date.isoformat(),
        "is_active":           True,
        "notes":               data.notes,
        "last_updated_by":     changed_by,
    })
    written = store.apply(batch)
    row = next(w for w in written if w.get("id") == row_id)

    logger.info(f"Bus fee for {village['name']} set to {new_amount}")
    return _bus_response(row, village)


def list_bus_fees(store: FeeStore, year_id: str) -> List[BusFeeResponse]:
    snap = store.snapshot({
        "bus_fee_structure": {"academic_year_id": year_id, "is_active": True},
        "villages":          None,
    })
    villages = {v["id"]: v for v in snap.rows("villages")}
    fees = [_bus_response(r, villages.get(r["village_id"])) for r in snap.rows("bus_fee_structure")]
    return sorted(fees, key=lambda f: f.village_name or "")


def _bus_response(row: Dict[str, Any], village: Optional[Dict[str, Any]]) -> BusFeeResponse:
    village = village or {}
    return BusFeeResponse(
        **row,
        village_name=village.get("name"),
        distance_from_school=village.get("distance_from_school"),
    )
