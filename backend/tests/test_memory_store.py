import pytest

from feeledger.core.errors import ConflictError, NotFoundError
from feeledger.core.memory_store import MemoryStore
from feeledger.core.store import WriteBatch


def test_failed_batch_leaves_nothing_behind():
    store = MemoryStore()
    store.seed("fee_types", {"id": "ft-1", "name": "Tuition Fee"})

    batch = (
        WriteBatch("test")
        .insert("fee_types", {"id": "ft-2", "name": "Lab Fee"})
        .update("fee_types", {"description": "changed"}, id="ft-1")
        .insert("fee_types", {"id": "ft-3", "name": "Tuition Fee"})
    )
    with pytest.raises(ConflictError):
        store.apply(batch)

    assert store.count("fee_types") == 1
    assert store.select_one("fee_types", id="ft-1").get("description") is None


def test_upsert_updates_in_place():
    store = MemoryStore()
    store.apply(WriteBatch().upsert("app_settings", {"id": "global", "current_academic_year_id": "a"}))
    store.apply(WriteBatch().upsert("app_settings", {"id": "global", "current_academic_year_id": "b"}))

    rows = store.select("app_settings")
    assert len(rows) == 1
    assert rows[0]["current_academic_year_id"] == "b"


def test_reads_are_copies():
    store = MemoryStore({"villages": [{"id": "v1", "name": "Northfield"}]})
    store.select_one("villages", id="v1")["name"] = "mutated"
    assert store.select_one("villages", id="v1")["name"] == "Northfield"


def test_in_filters_and_snapshot():
    store = MemoryStore()
    store.seed("classes", {"academic_year_id": "a", "name": "I"}, {"academic_year_id": "b", "name": "I"},
               {"academic_year_id": "c", "name": "I"})
    snap = store.snapshot({"classes": {"academic_year_id": ["a", "b"]}, "villages": None})

    assert len(snap.rows("classes")) == 2
    assert snap.rows("villages") == []
    assert snap.first("classes", academic_year_id="b")["name"] == "I"


def test_sequences_are_monotonic_per_name():
    store = MemoryStore()
    assert [store.next_sequence("r") for _ in range(3)] == [1, 2, 3]
    assert store.next_sequence("other") == 1


def test_require_one():
    store = MemoryStore()
    with pytest.raises(NotFoundError):
        store.require_one("students", "missing", "Student")


def test_filterless_writes_are_refused():
    with pytest.raises(ValueError):
        WriteBatch().delete("fee_payments")


def _bus_row(row_id, active):
    return {"id": row_id, "academic_year_id": "y1", "village_id": "v1", "fee_amount": "300.00", "is_active": active}


def test_one_active_bus_fee_per_village_and_year():
    store = MemoryStore()
    store.seed("bus_fee_structure", _bus_row("b1", True), _bus_row("b2", False), _bus_row("b3", False))

    with pytest.raises(ConflictError):
        store.seed("bus_fee_structure", _bus_row("b4", True))
    with pytest.raises(ConflictError):
        store.apply(WriteBatch().update("bus_fee_structure", {"is_active": True}, id="b2"))

    store.apply(
        WriteBatch()
        .update("bus_fee_structure", {"is_active": False}, id="b1")
        .update("bus_fee_structure", {"is_active": True}, id="b2")
    )
    assert [r["id"] for r in store.select("bus_fee_structure", {"is_active": True})] == ["b2"]
    assert store.count("bus_fee_structure") == 3
