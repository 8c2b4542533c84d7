from datetime import date
from decimal import Decimal

import pytest

from feeledger.core.errors import DuplicateCombinationError, NotFoundError, ValidationError
from feeledger.core.memory_store import MemoryStore
from feeledger.schemas.fees import BusFeeCreate, FeeCategory, FeeStructureItemCreate, FeeTypeCreate
from feeledger.services import fee_structure_service as catalog
from feeledger.services.fee_status_service import active_bus_fee


def _item(class_id, fee_type_id, amount, **extra):
    return FeeStructureItemCreate(
        class_id=class_id,
        fee_type_id=fee_type_id,
        amount=Decimal(str(amount)) if amount is not None else None,
        due_date=extra.pop("due_date", date(2025, 7, 1)),
        **extra,
    )


# ── Totals ───────────────────────────────────────────────────

def test_class_totals_mix_monthly_and_annual_items():
    totals = catalog.compute_class_totals([
        {"amount": "1200", "is_monthly": False},
        {"amount": "100", "is_monthly": True},
    ])
    assert totals.monthly_total == Decimal("200.00")
    assert totals.term_total == Decimal("800.00")
    assert totals.annual_total == Decimal("2400.00")


def test_class_totals_round_once_at_the_end():
    totals = catalog.compute_class_totals([{"amount": "1000"}, {"amount": "1000"}])
    assert totals.monthly_total == Decimal("166.67")
    assert totals.term_total == Decimal("666.67")
    assert totals.annual_total == Decimal("2000.00")


def test_class_totals_of_nothing_are_zero():
    totals = catalog.compute_class_totals([])
    assert (totals.monthly_total, totals.term_total, totals.annual_total) == (0, 0, 0)


def test_get_class_totals_groups_by_class(school):
    school.add_item(school.class_1, "ft-tuition", "1200.00")
    school.add_item(school.class_1, "ft-monthly", "50.00")
    school.add_item(school.class_2, "ft-tuition", "2400.00")

    totals = {t.class_name: t for t in catalog.get_class_totals(school.store, school.year)}
    assert totals["Class 1"].annual_total == Decimal("1800.00")
    assert totals["Class 1"].item_count == 2
    assert totals["Class 2"].monthly_total == Decimal("200.00")


# ── Fee types ────────────────────────────────────────────────

def test_fee_types_filter_by_category(school):
    catalog.create_fee_type(
        school.store, FeeTypeCreate(name="Lab Fee", category=FeeCategory.school)
    )
    names = [t.name for t in catalog.list_fee_types(school.store, FeeCategory.school)]
    assert names == ["Lab Fee", "Monthly Fee", "Tuition Fee"]


# ── Saving a year's structure ────────────────────────────────

def test_invalid_items_reject_the_whole_batch(school):
    items = [
        _item(school.class_1, "ft-tuition", 1000),
        _item(school.class_1, "ft-monthly", 0),
        _item(school.prev_class_1, "ft-tuition", 500),
        _item(school.class_2, "nope", 500),
    ]
    with pytest.raises(ValidationError) as exc:
        catalog.set_fee_structure(school.store, school.year, items)

    assert exc.value.indexes == [1, 2, 3]
    assert school.store.count("fee_structure") == 0


def test_rejected_saves_leave_an_existing_structure_untouched(school):
    store = school.store
    catalog.set_fee_structure(store, school.year, [
        _item(school.class_1, "ft-tuition", 1000),
        _item(school.class_1, "ft-monthly", 50),
    ])
    tuition = store.select_one("fee_structure", class_id=school.class_1, fee_type_id="ft-tuition")
    catalog.update_fee_item_amount(store, tuition["id"], Decimal("1100"), changed_by="admin-1")

    def state():
        rows = store.select("fee_structure", {"academic_year_id": school.year})
        return sorted((r["id"], r["fee_type_id"], r["amount"]) for r in rows), store.count("fee_structure_history")

    before = state()

    invalid = [
        _item(school.class_1, "ft-tuition", 1300),
        _item(school.class_2, "ft-tuition", 700),
        _item(school.class_2, "nope", 500),
    ]
    with pytest.raises(ValidationError):
        catalog.set_fee_structure(store, school.year, invalid)

    duplicated = [
        _item(school.class_1, "ft-tuition", 1300),
        _item(school.class_1, "ft-tuition", 1400),
    ]
    with pytest.raises(DuplicateCombinationError):
        catalog.set_fee_structure(store, school.year, duplicated)

    assert state() == before
    assert before[1] == 1


def test_missing_due_date_is_reported(school):
    items = [_item(school.class_1, "ft-tuition", 1000, due_date=None)]
    with pytest.raises(ValidationError) as exc:
        catalog.set_fee_structure(school.store, school.year, items)
    assert exc.value.errors[0]["field"] == "due_date"


def test_bus_fee_types_cannot_be_priced_per_class(school):
    with pytest.raises(ValidationError):
        catalog.set_fee_structure(
            school.store, school.year, [_item(school.class_1, "ft-bus", 300)]
        )


def test_duplicate_class_and_fee_type_is_rejected(school):
    items = [
        _item(school.class_1, "ft-tuition", 1000),
        _item(school.class_2, "ft-tuition", 1000),
        _item(school.class_1, "ft-tuition", 1100),
    ]
    with pytest.raises(DuplicateCombinationError) as exc:
        catalog.set_fee_structure(school.store, school.year, items)

    assert exc.value.duplicates[0]["index"] == 2
    assert exc.value.duplicates[0]["first_index"] == 0
    assert school.store.count("fee_structure") == 0


def test_save_applies_a_diff_and_records_amount_changes(school):
    store = school.store
    first = catalog.set_fee_structure(store, school.year, [
        _item(school.class_1, "ft-tuition", 1000),
        _item(school.class_1, "ft-monthly", 50),
    ], changed_by="admin-1")
    assert (first.added, first.changed, first.removed, first.history_records) == (2, 0, 0, 0)

    tuition = store.select_one("fee_structure", class_id=school.class_1, fee_type_id="ft-tuition")

    second = catalog.set_fee_structure(store, school.year, [
        _item(school.class_1, "ft-tuition", 1200),
        _item(school.class_2, "ft-tuition", 900),
    ], changed_by="admin-2")
    assert (second.added, second.changed, second.removed, second.unchanged) == (1, 1, 1, 0)
    assert second.history_records == 1

    updated = store.select_one("fee_structure", id=tuition["id"])
    assert updated["amount"] == "1200.00"
    history = catalog.get_fee_history(store, tuition["id"])
    assert len(history) == 1
    assert history[0].previous_amount == Decimal("1000.00")
    assert history[0].new_amount == Decimal("1200.00")
    assert history[0].changed_by == "admin-2"
    assert store.count("fee_structure", academic_year_id=school.year) == 2


def test_resaving_the_same_structure_changes_nothing(school):
    items = [_item(school.class_1, "ft-tuition", 1000)]
    catalog.set_fee_structure(school.store, school.year, items)
    result = catalog.set_fee_structure(school.store, school.year, items)

    assert (result.added, result.changed, result.removed, result.unchanged) == (0, 0, 0, 1)
    assert school.store.count("fee_structure_history") == 0


def test_save_for_unknown_year(school):
    with pytest.raises(NotFoundError):
        catalog.set_fee_structure(school.store, "missing", [])


def test_update_amount_writes_history_only_on_change(school):
    item = school.add_item(school.class_1, "ft-tuition", "1000.00")

    updated = catalog.update_fee_item_amount(
        school.store, item["id"], Decimal("1500"), changed_by="admin-1", reason="new rate"
    )
    assert updated.amount == Decimal("1500.00")
    catalog.update_fee_item_amount(school.store, item["id"], Decimal("1500.00"))

    history = catalog.get_fee_history(school.store, item["id"])
    assert len(history) == 1
    assert history[0].reason == "new rate"


def test_fee_structure_resolves_names(school):
    school.add_item(school.class_2, "ft-tuition", "900.00")
    school.add_item(school.class_1, "ft-tuition", "800.00")

    items = catalog.get_fee_structure(school.store, school.year)
    assert [i.class_name for i in items] == ["Class 1", "Class 2"]
    assert items[0].fee_type.name == "Tuition Fee"


# ── Bus fees ─────────────────────────────────────────────────

def _bus(amount, **extra):
    return BusFeeCreate(
        village_id="v-north",
        academic_year_id="y2025",
        fee_amount=Decimal(str(amount)),
        effective_from_date=extra.pop("effective_from_date", date(2025, 6, 1)),
        effective_to_date=extra.pop("effective_to_date", date(2026, 4, 30)),
        **extra,
    )


def test_setting_a_bus_fee_keeps_one_active_row(school):
    store = school.store
    catalog.set_bus_fee(store, _bus(300), changed_by="admin-1")
    latest = catalog.set_bus_fee(store, _bus(350), changed_by="admin-1")

    assert latest.fee_amount == Decimal("350.00")
    assert latest.village_name == "Northfield"
    assert store.count("bus_fee_structure", village_id="v-north", academic_year_id="y2025", is_active=True) == 1
    assert store.count("bus_fee_structure") == 2
    assert catalog.get_bus_fee(store, "v-north", "y2025") == Decimal("350.00")

    history = store.select("bus_fee_history")
    assert sorted(h["new_amount"] for h in history) == ["300.00", "350.00"]
    assert {h["previous_amount"] for h in history} == {None, "300.00"}


def test_bus_fee_dates_must_be_ordered(school):
    with pytest.raises(ValidationError):
        catalog.set_bus_fee(
            school.store, _bus(300, effective_from_date=date(2026, 4, 30), effective_to_date=date(2025, 6, 1))
        )
    assert school.store.count("bus_fee_structure") == 0


def test_bus_fee_for_unpriced_village_is_none(school):
    assert catalog.get_bus_fee(school.store, "v-north", school.year) is None


def test_list_bus_fees_only_active(school):
    catalog.set_bus_fee(school.store, _bus(300))
    catalog.set_bus_fee(school.store, _bus(320))

    fees = catalog.list_bus_fees(school.store, school.year)
    assert [f.fee_amount for f in fees] == [Decimal("320.00")]


def test_several_active_rows_resolve_to_the_latest_everywhere():
    store = MemoryStore({
        "academic_years": [{"id": "y1", "year_name": "2025-2026"}],
        "villages": [{"id": "v1", "name": "Northfield"}],
        "bus_fee_structure": [
            {"id": "b1", "academic_year_id": "y1", "village_id": "v1", "fee_amount": "300.00",
             "effective_from_date": "2025-09-01", "is_active": True},
            {"id": "b2", "academic_year_id": "y1", "village_id": "v1", "fee_amount": "250.00",
             "effective_from_date": "2025-06-01", "is_active": True},
        ],
    })
    rider = {"id": "s1", "has_school_bus": True, "village_id": "v1"}

    assert catalog.get_bus_fee(store, "v1", "y1") == Decimal("300.00")
    assert active_bus_fee(rider, store.select("bus_fee_structure")) == Decimal("300.00")

    catalog.set_bus_fee(store, BusFeeCreate(
        village_id="v1", academic_year_id="y1", fee_amount=Decimal("320"),
        effective_from_date=date(2025, 6, 1), effective_to_date=date(2026, 4, 30),
    ))
    assert store.count("bus_fee_structure", is_active=True) == 1
    assert store.select_one("bus_fee_history")["previous_amount"] == "300.00"
    assert catalog.get_bus_fee(store, "v1", "y1") == Decimal("320.00")
