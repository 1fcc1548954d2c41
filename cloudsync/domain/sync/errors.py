"""
Failure classification shared by the upload controller and range reader.

Every store failure maps to exactly one ``SyncErrorKind``. The mapping is a
pure function of the reported status, code and message so it can be tested
without a store. Precedence: HTTP status, then store code (SQLSTATE or
PostgREST code), then message substrings. Anything unmatched is VALIDATION,
which is terminal, so an unknown failure is never retried forever.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from cloudsync.db.store import StoreError


class SyncErrorKind(str, Enum):
    CAPACITY_EXCEEDED = "capacity_exceeded"
    PERMISSION_DENIED = "permission_denied"
    TRANSIENT = "transient"
    VALIDATION = "validation"


_CAPACITY_CODES = {"54000", "54001", "57014"}
_PERMISSION_CODES = {"42501", "PGRST301", "PGRST302"}
_TRANSIENT_CODES = {"57P01", "57P02", "57P03", "40001", "40P01"}

_CAPACITY_PHRASES = (
    "payload too large",
    "request entity too large",
    "too many parameters",
    "too many sql variables",
    "number of parameters must be between",
    "statement timeout",
    "timed out",
    "timeout",
)
_PERMISSION_PHRASES = (
    "permission denied",
    "row-level security",
    "insufficient privilege",
    "invalid api key",
    "jwt expired",
)
_TRANSIENT_PHRASES = (
    "connection refused",
    "connection reset",
    "could not connect",
    "server closed the connection",
    "name or service not known",
    "temporary failure in name resolution",
    "network is unreachable",
    "ssl syscall error",
)


def _classify_status(status: int) -> Optional[SyncErrorKind]:
    if status == 413 or status == 408 or 500 <= status <= 599:
        return SyncErrorKind.CAPACITY_EXCEEDED
    if status in (401, 403):
        return SyncErrorKind.PERMISSION_DENIED
    if status == 429:
        return SyncErrorKind.TRANSIENT
    return None


def _classify_code(code: str) -> SyncErrorKind:
    normalized = code.strip().upper()
    if normalized in _CAPACITY_CODES or normalized.startswith("53"):
        return SyncErrorKind.CAPACITY_EXCEEDED
    if normalized in _PERMISSION_CODES:
        return SyncErrorKind.PERMISSION_DENIED
    if normalized in _TRANSIENT_CODES or normalized.startswith("08"):
        return SyncErrorKind.TRANSIENT
    return SyncErrorKind.VALIDATION


def _classify_message(message: str) -> Optional[SyncErrorKind]:
    lowered = message.lower()
    # Permission first: "permission denied ... timeout" must not be retried.
    if any(phrase in lowered for phrase in _PERMISSION_PHRASES):
        return SyncErrorKind.PERMISSION_DENIED
    if any(phrase in lowered for phrase in _TRANSIENT_PHRASES):
        return SyncErrorKind.TRANSIENT
    if any(phrase in lowered for phrase in _CAPACITY_PHRASES):
        return SyncErrorKind.CAPACITY_EXCEEDED
    return None


def classify_store_error(
    status: Optional[int] = None,
    code: Optional[str] = None,
    message: Optional[str] = None,
) -> SyncErrorKind:
    if status is not None:
        kind = _classify_status(int(status))
        if kind is not None:
            return kind
    if code:
        return _classify_code(str(code))
    if message:
        kind = _classify_message(message)
        if kind is not None:
            return kind
    return SyncErrorKind.VALIDATION


def classify_exception(exc: StoreError) -> SyncErrorKind:
    return classify_store_error(exc.status, exc.code, exc.message)


_OPERATOR_HINTS = {
    SyncErrorKind.PERMISSION_DENIED: (
        "The store rejected the write policy for this table. Grant INSERT/UPDATE to the sync "
        "role or disable row-level security on the table, then retry."
    ),
    SyncErrorKind.CAPACITY_EXCEEDED: (
        "Rows were still too large for the store at the minimum batch size."
    ),
    SyncErrorKind.TRANSIENT: (
        "The store stayed unreachable after all retries. Check network access and try again."
    ),
}


class SyncError(Exception):
    """Classified, terminal failure of an upload call."""

    def __init__(
        self,
        kind: SyncErrorKind,
        message: str,
        *,
        table: Optional[str] = None,
        code: Optional[str] = None,
        status: Optional[int] = None,
        row_start: Optional[int] = None,
        row_end: Optional[int] = None,
        rows_written: int = 0,
    ):
        self.kind = kind
        self.message = message
        self.table = table
        self.code = code
        self.status = status
        self.row_start = row_start
        self.row_end = row_end
        self.rows_written = rows_written
        super().__init__(self.describe())

    @classmethod
    def from_store_error(
        cls,
        exc: StoreError,
        *,
        table: Optional[str] = None,
        row_start: Optional[int] = None,
        row_end: Optional[int] = None,
        rows_written: int = 0,
    ) -> "SyncError":
        return cls(
            classify_exception(exc),
            exc.message,
            table=table,
            code=exc.code,
            status=exc.status,
            row_start=row_start,
            row_end=row_end,
            rows_written=rows_written,
        )

    @property
    def operator_hint(self) -> Optional[str]:
        return _OPERATOR_HINTS.get(self.kind)

    def describe(self) -> str:
        parts = []
        if self.table:
            parts.append(f"[{self.table}]")
        parts.append(f"{self.kind.value}: {self.message}")
        if self.row_start is not None and self.row_end is not None:
            # 1-based, inclusive, as operators count spreadsheet rows
            parts.append(f"(rows {self.row_start + 1}-{self.row_end})")
        hint = self.operator_hint
        if hint:
            parts.append(hint)
        return " ".join(parts)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "table": self.table,
            "code": self.code,
            "status": self.status,
            "row_start": self.row_start,
            "row_end": self.row_end,
            "rows_written": self.rows_written,
            "hint": self.operator_hint,
        }
