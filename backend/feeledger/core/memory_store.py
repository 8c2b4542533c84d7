# feeledger/core/memory_store.py
#
# In-process FeeStore. Every read and write holds one lock, and a
# batch is staged on a copy of the tables that only replaces the
# live tables once every op has succeeded. A failing op therefore
# leaves nothing behind.

import copy
import logging
import threading
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from feeledger.core.errors import ConflictError
from feeledger.core.store import (
    PARTIAL_UNIQUE_KEYS, UNIQUE_KEYS, FeeStore, Filters, Snapshot, WriteBatch, WriteOp, matches,
)

logger = logging.getLogger(__name__)

Tables = Dict[str, List[Dict[str, Any]]]


class MemoryStore(FeeStore):

    def __init__(self, tables: Optional[Tables] = None):
        self._lock = threading.RLock()
        self._tables: Tables = defaultdict(list)
        self._sequences: Dict[str, int] = defaultdict(int)
        for name, rows in (tables or {}).items():
            self._tables[name] = [dict(r) for r in rows]

    # ── Reads ────────────────────────────────────────────────
    def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            rows = _filtered(self._tables, table, filters)
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by) or ""), reverse=desc)
        return rows

    def snapshot(self, queries: Dict[str, Optional[Filters]]) -> Snapshot:
        with self._lock:
            return Snapshot({t: _filtered(self._tables, t, f) for t, f in queries.items()})

    # ── Writes ───────────────────────────────────────────────
    def apply(self, batch: WriteBatch) -> List[Dict[str, Any]]:
        with self._lock:
            staged: Tables = defaultdict(list, copy.deepcopy(dict(self._tables)))
            written: List[Dict[str, Any]] = []
            for op in batch.ops:
                written.extend(_apply_op(staged, op))
            self._tables = staged
        logger.debug(f"Applied {batch.label} ({len(batch)} ops)")
        return [dict(r) for r in written]

    def next_sequence(self, name: str) -> int:
        with self._lock:
            self._sequences[name] += 1
            return self._sequences[name]

    # ── Test/dev helpers ─────────────────────────────────────
    def seed(self, table: str, *rows: Dict[str, Any]) -> List[Dict[str, Any]]:
        batch = WriteBatch(f"seed:{table}").insert_many(table, rows)
        return self.apply(batch)

    def count(self, table: str, **filters) -> int:
        return len(self.select(table, filters))


def _filtered(tables: Tables, table: str, filters: Optional[Filters]) -> List[Dict[str, Any]]:
    return [dict(r) for r in tables.get(table, []) if matches(r, filters)]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _apply_op(tables: Tables, op: WriteOp) -> List[Dict[str, Any]]:
    rows = tables[op.table]

    if op.kind == "insert":
        row = dict(op.values)
        row.setdefault("id", str(uuid4()))
        row.setdefault("created_at", _now())
        _check_unique(rows, op.table, row)
        rows.append(row)
        return [row]

    if op.kind == "update":
        for row in rows:
            if matches(row, op.filters):
                row.update(op.values)
                row["updated_at"] = _now()
                _check_unique(rows, op.table, row)
        return []

    if op.kind == "delete":
        tables[op.table] = [r for r in rows if not matches(r, op.filters)]
        return []

    if op.kind == "upsert":
        keys = [k.strip() for k in (op.on_conflict or "id").split(",")]
        existing = next(
            (r for r in rows if all(r.get(k) == op.values.get(k) for k in keys)), None
        )
        if existing is None:
            return _apply_op(tables, WriteOp("insert", op.table, op.values))
        existing.update(op.values)
        existing["updated_at"] = _now()
        _check_unique(rows, op.table, existing)
        return [existing]

    raise ValueError(f"Unknown write op '{op.kind}'")


def _check_unique(rows: List[Dict[str, Any]], table: str, candidate: Dict[str, Any]) -> None:
    keys = [(key, None) for key in UNIQUE_KEYS.get(table, [])] + PARTIAL_UNIQUE_KEYS.get(table, [])
    for key, where in keys:
        if where is not None and not matches(candidate, where):
            continue
        value = tuple(candidate.get(k) for k in key)
        if any(v is None for v in value):
            continue
        for other in rows:
            if other is candidate or (where is not None and not matches(other, where)):
                continue
            if tuple(other.get(k) for k in key) == value:
                raise ConflictError(
                    f"Duplicate value for {table}({', '.join(key)})",
                    {"table": table, "columns": list(key)},
                )
