# ============================================================
# feeledger/core/errors.py
#
# Domain error taxonomy. Services raise these; the FastAPI
# layer (main.py) turns them into the standard error envelope
# using each class's status_code.
#
#   ValidationError  → 422  bad shape / range, never retried
#   NotFoundError    → 404  missing year / structure / student
#   ConflictError    → 409  uniqueness or consistency clash
#   DependencyError  → 503  persistence unreachable / malformed
#
# Only a transient DependencyError is ever retried.
# ============================================================

from typing import Any, Dict, List, Optional


class FeeLedgerError(Exception):
    """Base class for every error the engine raises on purpose."""

    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_detail(self) -> Any:
        return self.details or None


# ── Validation ───────────────────────────────────────────────
class ValidationError(FeeLedgerError):
    """
    Input failed a shape or range check.

    `errors` is a list of {"index", "field", "message"} dicts so a
    caller submitting a batch can point at the offending rows.
    """

    status_code = 422

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        self.errors = errors or []
        super().__init__(message, {"errors": self.errors} if self.errors else None)

    @property
    def indexes(self) -> List[int]:
        return sorted({e["index"] for e in self.errors if e.get("index") is not None})


class DuplicateCombinationError(ValidationError):
    """The same (class_id, fee_type_id) pair appears more than once in a year."""

    def __init__(self, duplicates: List[Dict[str, Any]]):
        self.duplicates = duplicates
        super().__init__(
            "Each class and fee type combination may appear only once per academic year",
            errors=[
                {"index": d["index"], "field": "class_id,fee_type_id",
                 "message": f"duplicates item {d['first_index']}"}
                for d in duplicates
            ],
        )


# ── Not found ────────────────────────────────────────────────
class NotFoundError(FeeLedgerError):
    status_code = 404


class NoPreviousYearFoundError(NotFoundError):
    def __init__(self, message: str = "No previous academic year found"):
        super().__init__(message)


class NoFeeStructureFoundError(NotFoundError):
    def __init__(self, message: str = "No fee structure found for previous year"):
        super().__init__(message)


# ── Conflict ─────────────────────────────────────────────────
class ConflictError(FeeLedgerError):
    status_code = 409


# ── Dependency ───────────────────────────────────────────────
class DependencyError(FeeLedgerError):
    """
    The persistence layer could not be reached or answered with
    something we cannot use. `transient=True` marks connectivity
    failures that are worth retrying.
    """

    status_code = 503

    def __init__(self, message: str, transient: bool = False, details: Optional[Dict[str, Any]] = None):
        self.transient = transient
        super().__init__(message, details)
