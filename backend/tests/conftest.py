import os
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest


# Ensure `import feeledger...` resolves when tests run from repo root.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))


# Minimal defaults so settings can initialize in test environments.
os.environ.setdefault("SUPABASE_URL", "https://example.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("STORE_BACKEND", "memory")


from feeledger.core.memory_store import MemoryStore  # noqa: E402
from feeledger.core.store import SETTINGS_ROW_ID  # noqa: E402


def _year(year_id, name, previous=None, next_=None):
    start, end = name.split("-")
    return {
        "id": year_id,
        "year_name": name,
        "start_date": f"{start}-06-01",
        "end_date": f"{end}-04-30",
        "transition_status": "pending",
        "previous_year_id": previous,
        "next_year_id": next_,
    }


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def school(store):
    """
    Two linked years (2024-2025 → 2025-2026, the latter current), the
    same two class names in each, a small fee type catalog and one village.
    """
    store.seed(
        "academic_years",
        _year("y2024", "2024-2025", next_="y2025"),
        _year("y2025", "2025-2026", previous="y2024"),
    )
    store.seed("app_settings", {"id": SETTINGS_ROW_ID, "current_academic_year_id": "y2025"})
    store.seed(
        "classes",
        {"id": "c24-1", "academic_year_id": "y2024", "name": "Class 1"},
        {"id": "c24-2", "academic_year_id": "y2024", "name": "Class 2"},
        {"id": "c25-1", "academic_year_id": "y2025", "name": "Class 1"},
        {"id": "c25-2", "academic_year_id": "y2025", "name": "Class 2"},
    )
    store.seed(
        "fee_types",
        {"id": "ft-tuition", "name": "Tuition Fee", "category": "school", "frequency": "annual",
         "is_monthly": False, "is_for_new_students_only": False},
        {"id": "ft-admission", "name": "Admission Fee", "category": "admission", "frequency": "annual",
         "is_monthly": False, "is_for_new_students_only": True},
        {"id": "ft-monthly", "name": "Monthly Fee", "category": "school", "frequency": "monthly",
         "is_monthly": True, "is_for_new_students_only": False},
        {"id": "ft-bus", "name": "Bus Fee", "category": "bus", "frequency": "annual",
         "is_monthly": False, "is_for_new_students_only": False},
    )
    store.seed("villages", {"id": "v-north", "name": "Northfield", "distance_from_school": "4.5"})

    def add_item(class_id, fee_type_id, amount, year_id="y2025", new_only=False, item_id=None):
        row = {
            "academic_year_id": year_id,
            "class_id": class_id,
            "fee_type_id": fee_type_id,
            "amount": str(amount),
            "due_date": "2025-07-01" if year_id == "y2025" else "2024-07-01",
            "applicable_to_new_students_only": new_only,
            "is_recurring_monthly": False,
            "notes": None,
        }
        if item_id:
            row["id"] = item_id
        return store.seed("fee_structure", row)[0]

    def add_bus_fee(amount, year_id="y2025", village_id="v-north"):
        start, end = ("2025-06-01", "2026-04-30") if year_id == "y2025" else ("2024-06-01", "2025-04-30")
        return store.seed("bus_fee_structure", {
            "academic_year_id": year_id,
            "village_id": village_id,
            "fee_amount": str(amount),
            "effective_from_date": start,
            "effective_to_date": end,
            "is_active": True,
        })[0]

    def add_student(student_id, class_id="c25-1", registration_type="continuing",
                    has_school_bus=False, village_id=None, status="active"):
        return store.seed("students", {
            "id": student_id,
            "full_name": student_id.title(),
            "class_id": class_id,
            "registration_type": registration_type,
            "has_school_bus": has_school_bus,
            "village_id": village_id,
            "status": status,
        })[0]

    def add_payment(student_id, amount, school=None, bus=None, year_id="y2025",
                    payment_date="2025-08-01", method="cash", receipt=None):
        payment = store.seed("fee_payments", {
            "student_id": student_id,
            "academic_year_id": year_id,
            "amount_paid": str(amount),
            "payment_date": payment_date,
            "payment_method": method,
            "receipt_number": receipt or f"RCP/TEST/{store.next_sequence('test_receipt'):06d}",
        })[0]
        if school is not None or bus is not None:
            store.seed("payment_allocation", {
                "payment_id": payment["id"],
                "student_id": student_id,
                "academic_year_id": year_id,
                "school_fee_amount": str(school or 0),
                "bus_fee_amount": str(bus or 0),
                "allocation_date": payment_date,
            })
        return payment

    return SimpleNamespace(
        store=store,
        prev_year="y2024",
        year="y2025",
        prev_class_1="c24-1",
        prev_class_2="c24-2",
        class_1="c25-1",
        class_2="c25-2",
        village="v-north",
        add_item=add_item,
        add_bus_fee=add_bus_fee,
        add_student=add_student,
        add_payment=add_payment,
    )
