"""
Record cleanup applied before any row leaves the process.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping

from cloudsync.db.tables import TableSpec
from cloudsync.utils.date import is_blank, to_calendar_day
from cloudsync.utils.serialization import make_json_safe

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

IDENTIFIER_FIELD = "id"


@dataclass
class NormalizedBatch:
    records: List[Record]
    skipped: List[int] = field(default_factory=list)  # 0-based input positions

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def _column_order(spec: TableSpec, records: Iterable[Mapping[str, Any]]) -> List[str]:
    columns = list(spec.columns)
    seen = set(columns)
    for record in records:
        for key in record.keys():
            if key not in seen:
                seen.add(key)
                columns.append(key)
    if spec.append_only and IDENTIFIER_FIELD in seen:
        columns.remove(IDENTIFIER_FIELD)
    return columns


def _normalize_value(spec: TableSpec, column: str, value: Any) -> Any:
    if column == spec.date_field:
        return to_calendar_day(value, log_context=f"{spec.remote_name}.{column}")
    if column in spec.json_fields:
        if value is None:
            return None
        return json.dumps(make_json_safe(value), ensure_ascii=False)
    if is_blank(value) and not isinstance(value, str):
        return None
    if isinstance(value, (dict, list, tuple, set)):
        return json.dumps(make_json_safe(value), ensure_ascii=False)
    return value


def normalize_record(spec: TableSpec, record: Mapping[str, Any], columns: List[str]) -> Record:
    """
    Project one record onto ``columns``.

    Absent fields become explicit None so an upsert overwrites stale values
    instead of silently keeping them. Empty natural-key fields with a sentinel
    receive it.
    """
    normalized = {column: _normalize_value(spec, column, record.get(column)) for column in columns}
    for column, sentinel in spec.key_defaults.items():
        if is_blank(normalized.get(column)):
            normalized[column] = sentinel
    return normalized


def _missing_key_fields(spec: TableSpec, record: Record) -> List[str]:
    return [column for column in spec.conflict_key if is_blank(record.get(column))]


def normalize_records(spec: TableSpec, records: Iterable[Mapping[str, Any]]) -> NormalizedBatch:
    """
    Normalize a full input sequence for ``spec``.

    Every returned record has the same column set. Records whose natural key
    is still incomplete after sentinel defaults are dropped and their input
    positions reported in ``skipped``.
    """
    source = list(records)
    columns = _column_order(spec, source)

    batch = NormalizedBatch(records=[])
    for position, record in enumerate(source):
        normalized = normalize_record(spec, record, columns)
        missing = _missing_key_fields(spec, normalized)
        if missing:
            batch.skipped.append(position)
            if batch.skipped_count <= 5:
                logger.warning(
                    "Skipping %s row %d: empty natural-key field(s) %s",
                    spec.remote_name,
                    position + 1,
                    ", ".join(missing),
                )
            continue
        batch.records.append(normalized)

    if batch.skipped_count:
        logger.warning(
            "Dropped %d of %d %s rows with incomplete natural keys",
            batch.skipped_count,
            len(source),
            spec.remote_name,
        )
    return batch
