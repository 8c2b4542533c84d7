# ============================================================
# feeledger/core/database.py
#
# SupabaseStore: the production FeeStore.
#
# ├── select()        → PostgREST table query
# ├── snapshot()      → rpc("read_snapshot")      one statement, one MVCC snapshot
# ├── apply(batch)    → rpc("apply_write_batch")  one Postgres transaction
# └── next_sequence() → rpc("next_sequence_value")
#
# PostgREST cannot open a transaction across several HTTP calls,
# so anything that must be atomic is shipped to a Postgres
# function in one request. The functions live in
# migrations/001_fee_ledger.sql.
#
# Every call goes through with_retry(): connection failures are
# retried with exponential backoff, database errors are mapped to
# the domain taxonomy and surface at once.
# ============================================================

import logging
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

import httpx
from fastapi.concurrency import run_in_threadpool
from postgrest.exceptions import APIError
from supabase import create_client, Client
from supabase.lib.client_options import SyncClientOptions

from feeledger.core.config import settings
from feeledger.core.errors import (
    ConflictError, DependencyError, NotFoundError, ValidationError,
)
from feeledger.core.store import FeeStore, Filters, Snapshot, WriteBatch
from feeledger.utils.retry import with_retry

logger = logging.getLogger(__name__)

# Postgres SQLSTATE → domain error
_UNIQUE_VIOLATION = "23505"
_CHECK_VIOLATIONS = {"23502", "23514", "22P02", "22007", "22003"}
_NO_DATA = "P0002"


def make_query_client() -> Client:
    return create_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_KEY,
        options=SyncClientOptions(schema=settings.DB_SCHEMA),
    )


def translate_error(e: Exception) -> Exception:
    """Map a client/database exception onto the domain taxonomy."""
    if isinstance(e, APIError):
        code = getattr(e, "code", None)
        message = getattr(e, "message", None) or str(e)
        if code == _UNIQUE_VIOLATION:
            return ConflictError(message, {"code": code})
        if code in _CHECK_VIOLATIONS:
            return ValidationError(message)
        if code == _NO_DATA:
            return NotFoundError(message)
        return DependencyError(f"Database rejected the request: {message}", details={"code": code})
    if isinstance(e, (httpx.TransportError, httpx.TimeoutException)):
        return DependencyError(f"Database unreachable: {e}", transient=True)
    if isinstance(e, (KeyError, TypeError, ValueError)):
        return DependencyError(f"Malformed response from database: {e}")
    return e


class SupabaseStore(FeeStore):

    def __init__(self, client: Optional[Client] = None):
        self._client: Client = client or make_query_client()

    def _call(self, label: str, fn: Callable[[], Any]) -> Any:
        def attempt():
            try:
                return fn()
            except Exception as e:
                mapped = translate_error(e)
                if mapped is e:
                    raise
                raise mapped from e
        return with_retry(attempt, label=label)

    def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        desc: bool = False,
    ) -> List[Dict[str, Any]]:
        def run():
            query = self._client.table(table).select("*")
            for col, val in (filters or {}).items():
                if val is None:
                    query = query.is_(col, "null")
                elif isinstance(val, (list, tuple, set)):
                    query = query.in_(col, list(val))
                else:
                    query = query.eq(col, val)
            if order_by:
                query = query.order(order_by, desc=desc)
            return query.execute().data or []
        return self._call(f"select {table}", run)

    def snapshot(self, queries: Dict[str, Optional[Filters]]) -> Snapshot:
        payload = {
            table: {k: list(v) if isinstance(v, (set, tuple)) else v for k, v in (f or {}).items()}
            for table, f in queries.items()
        }

        def run():
            data = self._client.rpc("read_snapshot", {"p_queries": payload}).execute().data
            if not isinstance(data, dict):
                raise TypeError(f"read_snapshot returned {type(data).__name__}")
            return Snapshot({t: data.get(t) or [] for t in queries})
        return self._call("snapshot", run)

    def apply(self, batch: WriteBatch) -> List[Dict[str, Any]]:
        if not batch.ops:
            return []

        def run():
            return self._client.rpc("apply_write_batch", {"p_ops": batch.to_payload()}).execute().data or []
        written = self._call(batch.label, run)
        logger.debug(f"Applied {batch.label} ({len(batch)} ops)")
        return written

    def next_sequence(self, name: str) -> int:
        def run():
            return int(self._client.rpc("next_sequence_value", {"p_name": name}).execute().data)
        return self._call(f"sequence {name}", run)


# ── Store dependency ─────────────────────────────────────────
@lru_cache(maxsize=1)
def get_store() -> FeeStore:
    """
    FastAPI dependency returning the process-wide store.
    Built lazily so importing the app never opens a connection.
    """
    if settings.STORE_BACKEND == "memory":
        from feeledger.core.memory_store import MemoryStore
        logger.warning("Using in-memory store, data is lost on restart")
        return MemoryStore()
    return SupabaseStore()


# ── Health check ─────────────────────────────────────────────
async def check_db_connection() -> bool:
    try:
        await run_in_threadpool(get_store().select, "app_settings")
        return True
    except Exception as e:
        logger.error(f"DB health check failed: {e}")
        return False
