"""
Remote tabular store client.

The sync engine talks to the hosted store only through the three operations
of ``TabularStoreClient``. ``SqlStoreClient`` implements them on a SQLAlchemy
engine (hosted Postgres in production) and reports every failure as a
``StoreError`` so callers never see driver-specific exception types.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

# SQLSTATE connection_failure
_CONNECTION_FAILURE_CODE = "08006"


class StoreError(Exception):
    """Failure reported by the remote store, with whatever structure it exposed."""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        self.message = message
        self.status = status
        self.code = code
        super().__init__(message)

    def __repr__(self) -> str:
        return f"StoreError(status={self.status!r}, code={self.code!r}, message={self.message!r})"


class TabularStoreClient(Protocol):
    def upsert(self, table: str, records: Sequence[Record], conflict_key: Sequence[str]) -> None:
        ...

    def select_range(
        self,
        table: str,
        field: str,
        low: Any,
        high: Any,
        offset: int,
        limit: int,
        tiebreak: Sequence[str] = (),
    ) -> List[Record]:
        ...

    def delete(self, table: str, predicate: Optional[Mapping[str, Any]]) -> int:
        ...


def _quote_identifier(name: str) -> str:
    if not isinstance(name, str) or not name or "\x00" in name:
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return '"' + name.replace('"', '""') + '"'


def _to_store_error(exc: SQLAlchemyError) -> StoreError:
    origin = getattr(exc, "orig", None)
    code = getattr(origin, "pgcode", None) or getattr(origin, "sqlstate", None)
    if not code and isinstance(exc, DBAPIError) and exc.connection_invalidated:
        # Dropped connections carry no SQLSTATE; report connection_failure.
        code = _CONNECTION_FAILURE_CODE
    message = str(origin) if origin is not None else str(exc)
    return StoreError(message.strip(), code=code)


class SqlStoreClient:
    """``TabularStoreClient`` backed by a SQLAlchemy engine."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def upsert(self, table: str, records: Sequence[Record], conflict_key: Sequence[str]) -> None:
        """
        Insert-or-update ``records`` on ``conflict_key``.

        All records must share the same column set. Rows are sent as one
        executemany inside a single transaction, so a failed batch leaves
        nothing behind.
        """
        if not records:
            return

        columns = list(records[0].keys())
        params = [{f"p{i}": record.get(col) for i, col in enumerate(columns)} for record in records]

        columns_sql = ", ".join(_quote_identifier(col) for col in columns)
        placeholders = ", ".join(f":p{i}" for i in range(len(columns)))
        insert_sql = f"INSERT INTO {_quote_identifier(table)} ({columns_sql}) VALUES ({placeholders})"

        if conflict_key:
            conflict_sql = ", ".join(_quote_identifier(col) for col in conflict_key)
            update_columns = [col for col in columns if col not in conflict_key]
            if update_columns:
                assignments = ", ".join(
                    f"{_quote_identifier(col)} = EXCLUDED.{_quote_identifier(col)}" for col in update_columns
                )
                insert_sql += f" ON CONFLICT ({conflict_sql}) DO UPDATE SET {assignments}"
            else:
                insert_sql += f" ON CONFLICT ({conflict_sql}) DO NOTHING"

        try:
            with self.engine.begin() as conn:
                conn.execute(text(insert_sql), params)
        except SQLAlchemyError as exc:
            raise _to_store_error(exc) from exc

    def select_range(
        self,
        table: str,
        field: str,
        low: Any,
        high: Any,
        offset: int,
        limit: int,
        tiebreak: Sequence[str] = (),
    ) -> List[Record]:
        """
        Return one page of rows with ``low <= field <= high``, ordered by ``field``.

        Either bound may be None to leave that side open. ``tiebreak`` columns
        extend the ORDER BY so offset pages stay stable when ``field`` repeats.
        """
        quoted_field = _quote_identifier(field)
        conditions = []
        params: Dict[str, Any] = {"limit": int(limit), "offset": int(offset)}
        if low is not None:
            conditions.append(f"{quoted_field} >= :low")
            params["low"] = low
        if high is not None:
            conditions.append(f"{quoted_field} <= :high")
            params["high"] = high

        order_columns = [field] + [col for col in tiebreak if col != field]
        order_sql = ", ".join(f"{_quote_identifier(col)} ASC" for col in order_columns)
        where_sql = f" WHERE {' AND '.join(conditions)}" if conditions else ""

        select_sql = (
            f"SELECT * FROM {_quote_identifier(table)}{where_sql} "
            f"ORDER BY {order_sql} LIMIT :limit OFFSET :offset"
        )

        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(select_sql), params)
                return [dict(row._mapping) for row in result]
        except SQLAlchemyError as exc:
            raise _to_store_error(exc) from exc

    def delete(self, table: str, predicate: Optional[Mapping[str, Any]]) -> int:
        """
        Delete rows matching every ``field == value`` pair in ``predicate``.

        ``None`` deletes every row of the table. Returns the deleted row count.
        """
        params: Dict[str, Any] = {}
        where_sql = ""
        if predicate is not None:
            if not predicate:
                raise ValueError("Empty delete predicate; pass None to delete every row")
            clauses = []
            for i, (col, value) in enumerate(predicate.items()):
                if value is None:
                    clauses.append(f"{_quote_identifier(col)} IS NULL")
                else:
                    clauses.append(f"{_quote_identifier(col)} = :p{i}")
                    params[f"p{i}"] = value
            where_sql = " WHERE " + " AND ".join(clauses)

        delete_sql = f"DELETE FROM {_quote_identifier(table)}{where_sql}"
        try:
            with self.engine.begin() as conn:
                result = conn.execute(text(delete_sql), params)
                deleted = result.rowcount
        except SQLAlchemyError as exc:
            raise _to_store_error(exc) from exc

        logger.info("Deleted %s rows from %s", deleted, table)
        return deleted
