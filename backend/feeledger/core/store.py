# ============================================================
# feeledger/core/store.py
#
# The generic read/write interface the engine talks to.
# Services never import supabase directly: they receive a
# FeeStore and use four primitives.
#
#   select()        → plain filtered read of one table
#   snapshot()      → several tables read at one point in time
#   apply(batch)    → a WriteBatch executed all-or-nothing
#   next_sequence() → monotonic counters (receipt numbers)
#
# Two implementations:
#   SupabaseStore (core/database.py)     → production
#   MemoryStore   (core/memory_store.py) → development + tests
# ============================================================

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from feeledger.core.errors import NotFoundError

# Filters are {column: value}. A list/tuple/set value means "column IN (...)",
# None means "column IS NULL".
Filters = Dict[str, Any]

# Unique keys enforced by the store (mirrors migrations/001_fee_ledger.sql).
UNIQUE_KEYS: Dict[str, List[Tuple[str, ...]]] = {
    "academic_years":   [("id",), ("year_name",)],
    "app_settings":     [("id",)],
    "classes":          [("id",), ("academic_year_id", "name")],
    "fee_types":        [("id",), ("name",)],
    "fee_structure":    [("id",), ("academic_year_id", "class_id", "fee_type_id")],
    "fee_payments":     [("id",), ("receipt_number",)],
    "payment_allocation": [("id",), ("payment_id",)],
}

# Unique only among rows matching the filter (partial unique indexes).
PARTIAL_UNIQUE_KEYS: Dict[str, List[Tuple[Tuple[str, ...], Filters]]] = {
    "bus_fee_structure": [(("academic_year_id", "village_id"), {"is_active": True})],
}

SETTINGS_ROW_ID = "global"


@dataclass
class WriteOp:
    kind: str                       # insert | update | delete | upsert
    table: str
    values: Dict[str, Any] = field(default_factory=dict)
    filters: Filters = field(default_factory=dict)
    on_conflict: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "table": self.table,
            "values": self.values,
            "filters": {k: list(v) if isinstance(v, (set, tuple)) else v for k, v in self.filters.items()},
            "on_conflict": self.on_conflict,
        }


class WriteBatch:
    """
    An ordered list of writes that must land together.

    Ops run in the order they were added, so an audit row added
    before its update really is written first.
    """

    def __init__(self, label: str = "batch"):
        self.label = label
        self.ops: List[WriteOp] = []

    def insert(self, table: str, values: Dict[str, Any]) -> "WriteBatch":
        self.ops.append(WriteOp("insert", table, dict(values)))
        return self

    def insert_many(self, table: str, rows: Iterable[Dict[str, Any]]) -> "WriteBatch":
        for row in rows:
            self.insert(table, row)
        return self

    def update(self, table: str, values: Dict[str, Any], **filters) -> "WriteBatch":
        if not filters:
            raise ValueError("update() requires at least one filter")
        self.ops.append(WriteOp("update", table, dict(values), filters))
        return self

    def delete(self, table: str, **filters) -> "WriteBatch":
        if not filters:
            raise ValueError("delete() requires at least one filter")
        self.ops.append(WriteOp("delete", table, filters=filters))
        return self

    def upsert(self, table: str, values: Dict[str, Any], on_conflict: str = "id") -> "WriteBatch":
        self.ops.append(WriteOp("upsert", table, dict(values), on_conflict=on_conflict))
        return self

    def to_payload(self) -> List[Dict[str, Any]]:
        return [op.to_payload() for op in self.ops]

    def __len__(self) -> int:
        return len(self.ops)


class Snapshot:
    """Rows of several tables, all read at the same instant."""

    def __init__(self, tables: Dict[str, List[Dict[str, Any]]]):
        self._tables = tables

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self._tables.get(table, [])

    def where(self, table: str, **filters) -> List[Dict[str, Any]]:
        return [r for r in self.rows(table) if matches(r, filters)]

    def first(self, table: str, **filters) -> Optional[Dict[str, Any]]:
        found = self.where(table, **filters)
        return found[0] if found else None


def matches(row: Dict[str, Any], filters: Optional[Filters]) -> bool:
    for col, val in (filters or {}).items():
        current = row.get(col)
        if isinstance(val, (list, tuple, set)):
            if current not in val:
                return False
        elif current != val:
            return False
    return True


class FeeStore(ABC):

    @abstractmethod
    def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
    ) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def snapshot(self, queries: Dict[str, Optional[Filters]]) -> Snapshot:
        ...

    @abstractmethod
    def apply(self, batch: WriteBatch) -> List[Dict[str, Any]]:
        """Execute every op or none. Returns rows written by insert/upsert ops."""

    @abstractmethod
    def next_sequence(self, name: str) -> int:
        ...

    # ── Conveniences built on the primitives ─────────────────
    def select_one(self, table: str, **filters) -> Optional[Dict[str, Any]]:
        rows = self.select(table, filters)
        return rows[0] if rows else None

    def require_one(self, table: str, record_id: str, label: Optional[str] = None) -> Dict[str, Any]:
        row = self.select_one(table, id=record_id)
        if not row:
            raise NotFoundError(f"{label or table} '{record_id}' not found")
        return row

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        written = self.apply(WriteBatch(f"insert:{table}").insert(table, values))
        return written[0] if written else {}
