"""
Snapshot-level sync operations built on the upload controller and range reader.

These are what the dashboard's cloud-sync screen triggers: check the
connection, push every local fact table plus config entries, pull them back,
persist small key-value config documents and clear a table.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from cloudsync.db.store import StoreError, TabularStoreClient
from cloudsync.db.tables import (
    CLOUD_SYNC_CONFIG_KEY,
    FACT_TABLES,
    TableName,
    get_table_spec,
)
from cloudsync.domain.sync.errors import SyncError, SyncErrorKind, classify_exception
from cloudsync.domain.sync.reader import fetch_range
from cloudsync.domain.sync.uploader import BatchUploadController, UploadResult

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
TableProgressCallback = Callable[[str, int, int], None]

_MISSING_RELATION_CODES = {"42P01", "PGRST205"}


@dataclass
class ConnectionCheck:
    ok: bool
    message: str
    kind: Optional[str] = None
    code: Optional[str] = None


@dataclass
class PushSummary:
    tables: Dict[str, UploadResult] = field(default_factory=dict)
    configs_pushed: int = 0
    last_sync: Optional[str] = None

    @property
    def total_pushed(self) -> int:
        return sum(result.written for result in self.tables.values())


@dataclass
class PulledSnapshot:
    tables: Dict[str, List[Record]] = field(default_factory=dict)
    configs: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_rows(self) -> int:
        return sum(len(rows) for rows in self.tables.values())


def _is_missing_relation(exc: StoreError) -> bool:
    if exc.code in _MISSING_RELATION_CODES:
        return True
    lowered = exc.message.lower()
    return "does not exist" in lowered or "no such table" in lowered


def check_connection(client: TabularStoreClient) -> ConnectionCheck:
    """Probe the config table with a one-row read and explain what failed."""
    spec = get_table_spec(TableName.APP_CONFIG)
    try:
        client.select_range(spec.remote_name, "key", None, None, offset=0, limit=1)
    except StoreError as exc:
        kind = classify_exception(exc)
        if _is_missing_relation(exc):
            message = "Sync tables are not initialized in the store. Run the table bootstrap and retry."
        elif kind is SyncErrorKind.PERMISSION_DENIED:
            message = "Store credentials are invalid or lack permission to read sync tables."
        else:
            message = exc.message
        logger.warning("Connection check failed (%s): %s", kind.value, exc.message)
        return ConnectionCheck(ok=False, message=message, kind=kind.value, code=exc.code)
    return ConnectionCheck(ok=True, message="Store is reachable and sync tables respond.")


def _decode_config_data(value: Any) -> Any:
    # Stored as JSON text; the Postgres engine keeps JSONB undecoded on read.
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def load_config(client: TabularStoreClient, key: str, default: Any = None) -> Any:
    """Read one config document; any failure or a missing key yields ``default``."""
    spec = get_table_spec(TableName.APP_CONFIG)
    try:
        rows = client.select_range(spec.remote_name, "key", key, key, offset=0, limit=1)
    except StoreError as exc:
        logger.warning("Could not load config '%s': %s", key, exc.message)
        return default
    if not rows:
        return default
    return _decode_config_data(rows[0].get("data"))


def save_config(
    client: TabularStoreClient,
    key: str,
    data: Any,
    controller: Optional[BatchUploadController] = None,
) -> None:
    controller = controller or BatchUploadController(client)
    controller.upload(TableName.APP_CONFIG, [{"key": key, "data": data}])


def get_sync_status(client: TabularStoreClient) -> Dict[str, Any]:
    status = load_config(client, CLOUD_SYNC_CONFIG_KEY, {})
    return status if isinstance(status, dict) else {}


def clear_table(client: TabularStoreClient, table: Union[TableName, str]) -> int:
    """
    Delete every row of ``table``.

    Raises:
        SyncError: If the store rejects the delete
    """
    spec = get_table_spec(table)
    try:
        deleted = client.delete(spec.remote_name, None)
    except StoreError as exc:
        raise SyncError.from_store_error(exc, table=spec.remote_name)
    logger.info("Cleared %s (%s rows)", spec.remote_name, deleted)
    return deleted


def _ordered_tables(tables: Mapping[Union[TableName, str], Any]) -> List[TableName]:
    requested = {get_table_spec(name).name for name in tables}
    if TableName.APP_CONFIG in requested:
        raise ValueError("Config entries are pushed through 'configs', not as a table")
    ordered = [name for name in FACT_TABLES if name in requested]
    ordered.extend(name for name in TableName if name in requested and name not in ordered)
    return ordered


def push_snapshot(
    client: TabularStoreClient,
    tables: Mapping[Union[TableName, str], Iterable[Mapping[str, Any]]],
    configs: Optional[Mapping[str, Any]] = None,
    on_progress: Optional[TableProgressCallback] = None,
    controller: Optional[BatchUploadController] = None,
) -> PushSummary:
    """
    Push a full local snapshot: fact tables in fixed order, then config entries,
    then the last-sync timestamp.

    A failing table aborts the push with its ``SyncError``; tables pushed
    before it stay written.
    """
    controller = controller or BatchUploadController(client)
    rows_by_table = {get_table_spec(name).name: list(rows) for name, rows in tables.items()}
    summary = PushSummary()

    for name in _ordered_tables(tables):
        rows = rows_by_table[name]
        if not rows:
            continue

        def report(written: int, total: int, _table: str = name.value) -> None:
            if on_progress:
                on_progress(_table, written, total)

        summary.tables[name.value] = controller.upload(name, rows, report)

    if configs:
        config_rows = [{"key": key, "data": data} for key, data in configs.items() if key != CLOUD_SYNC_CONFIG_KEY]
        if config_rows:
            result = controller.upload(TableName.APP_CONFIG, config_rows)
            summary.configs_pushed = result.written

    status = get_sync_status(client)
    summary.last_sync = datetime.now(timezone.utc).isoformat()
    status["last_sync"] = summary.last_sync
    save_config(client, CLOUD_SYNC_CONFIG_KEY, status, controller)

    logger.info(
        "Snapshot push complete: %d rows across %d tables, %d config entries",
        summary.total_pushed,
        len(summary.tables),
        summary.configs_pushed,
    )
    return summary


def pull_snapshot(
    client: TabularStoreClient,
    low: Any = None,
    high: Any = None,
    page_size: Optional[int] = None,
) -> PulledSnapshot:
    """Read every fact table (optionally date-bounded) and all config entries."""
    snapshot = PulledSnapshot()
    for name in FACT_TABLES:
        spec = get_table_spec(name)
        snapshot.tables[spec.remote_name] = fetch_range(
            client, name, spec.date_field, low, high, page_size=page_size
        )

    for row in fetch_range(client, TableName.APP_CONFIG, "key", None, None, page_size=page_size):
        snapshot.configs[row["key"]] = _decode_config_data(row.get("data"))

    logger.info("Snapshot pull complete: %d rows, %d config entries", snapshot.total_rows, len(snapshot.configs))
    return snapshot
