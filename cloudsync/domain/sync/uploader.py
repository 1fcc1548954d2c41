"""
Batch upload controller.

Pushes an arbitrary number of records to one sync table in adaptively sized,
strictly sequential batches. The per-batch control flow is a small state
machine kept on ``UploadRun`` so shrink/grow/retry decisions can be driven
directly in tests; ``BatchUploadController`` only performs the I/O, sleeps
and progress callbacks around it.

Callers must treat partial progress as durable: batches already upserted are
not rolled back when a later batch fails.
"""
from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from cloudsync.core.config import settings
from cloudsync.db.store import StoreError, TabularStoreClient
from cloudsync.db.tables import TableName, TableSpec, get_table_spec
from cloudsync.domain.sync.chunking import ChunkSizer, ChunkTuningConfig
from cloudsync.domain.sync.errors import SyncError, SyncErrorKind
from cloudsync.domain.sync.normalization import normalize_records

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
ProgressCallback = Callable[[int, int], None]


class UploadState(str, Enum):
    SIZING = "sizing"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


@dataclass
class UploadRun:
    """Mutable state of one upload call. Owned by exactly one call, never shared."""

    spec: TableSpec
    rows: List[Record]
    sizer: ChunkSizer
    max_attempts: int = 3
    state: UploadState = UploadState.SIZING
    offset: int = 0
    attempt: int = 0
    batch: List[Record] = field(default_factory=list)
    error: Optional[SyncError] = None
    round_trips: int = 0
    batches_written: int = 0

    @property
    def total(self) -> int:
        return len(self.rows)

    @property
    def written(self) -> int:
        return self.offset

    @property
    def batch_end(self) -> int:
        return self.offset + len(self.batch)

    def begin_batch(self) -> bool:
        """SIZING -> ATTEMPTING. Returns False when every row has been written."""
        if self.state is not UploadState.SIZING:
            raise RuntimeError(f"Cannot size a batch while {self.state.value}")
        if self.offset >= self.total:
            self.batch = []
            return False
        self.batch = self.rows[self.offset:self.offset + self.sizer.current_size]
        self.attempt = 0
        self.state = UploadState.ATTEMPTING
        return True

    def record_success(self) -> None:
        """ATTEMPTING -> SUCCEEDED."""
        self._require(UploadState.ATTEMPTING)
        self.round_trips += 1
        self.offset += len(self.batch)
        self.batches_written += 1
        self.sizer.grow()
        self.state = UploadState.SUCCEEDED

    def record_failure(self, exc: StoreError) -> None:
        """
        ATTEMPTING -> SIZING (shrunk), ATTEMPTING (retry) or EXHAUSTED.

        Capacity failures above the floor shrink without spending an attempt.
        At the floor they are retried like transient failures.
        """
        self._require(UploadState.ATTEMPTING)
        self.round_trips += 1
        error = SyncError.from_store_error(
            exc,
            table=self.spec.remote_name,
            row_start=self.offset,
            row_end=self.batch_end,
            rows_written=self.offset,
        )
        self.error = error

        if error.kind is SyncErrorKind.CAPACITY_EXCEEDED and not self.sizer.at_floor(len(self.batch)):
            self.sizer.shrink(len(self.batch))
            self.state = UploadState.SIZING
            return

        if error.kind in (SyncErrorKind.CAPACITY_EXCEEDED, SyncErrorKind.TRANSIENT):
            self.attempt += 1
            if self.attempt < self.max_attempts:
                return
        self.state = UploadState.EXHAUSTED

    def advance(self) -> None:
        """SUCCEEDED -> SIZING."""
        self._require(UploadState.SUCCEEDED)
        self.state = UploadState.SIZING

    def _require(self, state: UploadState) -> None:
        if self.state is not state:
            raise RuntimeError(f"Expected state {state.value}, got {self.state.value}")


@dataclass
class UploadResult:
    table: str
    total: int
    written: int
    skipped: int
    batches: int
    round_trips: int
    final_chunk_size: int

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "total": self.total,
            "written": self.written,
            "skipped": self.skipped,
            "batches": self.batches,
            "round_trips": self.round_trips,
            "final_chunk_size": self.final_chunk_size,
        }


class BatchUploadController:
    """
    Sequential, adaptively sized upserts against a ``TabularStoreClient``.

    ``sleep`` and ``jitter`` are injectable so tests run without real delays.
    """

    def __init__(
        self,
        client: TabularStoreClient,
        *,
        tuning: Optional[ChunkTuningConfig] = None,
        max_attempts: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        backoff_jitter_seconds: Optional[float] = None,
        pause_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[float, float], float] = random.uniform,
    ):
        self.client = client
        self.tuning = tuning or ChunkTuningConfig.from_settings()
        self.max_attempts = max_attempts if max_attempts is not None else settings.sync_max_attempts
        self.backoff_base_seconds = (
            backoff_base_seconds if backoff_base_seconds is not None else settings.sync_backoff_base_seconds
        )
        self.backoff_jitter_seconds = (
            backoff_jitter_seconds if backoff_jitter_seconds is not None else settings.sync_backoff_jitter_seconds
        )
        self.pause_seconds = pause_seconds if pause_seconds is not None else settings.sync_batch_pause_seconds
        self._sleep = sleep
        self._jitter = jitter

    def _backoff(self, run: UploadRun) -> None:
        delay = self.backoff_base_seconds + self._jitter(0.0, self.backoff_jitter_seconds)
        logger.warning(
            "Retrying %s rows %d-%d in %.2fs (attempt %d/%d): %s",
            run.spec.remote_name,
            run.offset + 1,
            run.batch_end,
            delay,
            run.attempt + 1,
            self.max_attempts,
            run.error.message if run.error else "",
        )
        self._sleep(delay)

    def upload(
        self,
        table: Union[TableName, str],
        records: Iterable[Mapping[str, Any]],
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """
        Upsert every record into ``table`` on its conflict key.

        ``on_progress(written, total)`` is called once with ``(0, total)`` and
        after every successful batch. Exceptions it raises abort the upload.

        Raises:
            SyncError: On a permission/validation failure, or when capacity or
                transient failures outlast every mitigation
        """
        spec = get_table_spec(table)
        normalized = normalize_records(spec, records)
        run = UploadRun(
            spec=spec,
            rows=normalized.records,
            sizer=ChunkSizer(self.tuning),
            max_attempts=self.max_attempts,
        )

        logger.info(
            "Uploading %d rows to %s (chunk size %d, %d skipped)",
            run.total,
            spec.remote_name,
            run.sizer.current_size,
            normalized.skipped_count,
        )
        if on_progress:
            on_progress(0, run.total)

        while True:
            if run.state is UploadState.SIZING:
                if not run.begin_batch():
                    break
            elif run.state is UploadState.ATTEMPTING:
                try:
                    self.client.upsert(spec.remote_name, run.batch, spec.conflict_key)
                except StoreError as exc:
                    run.record_failure(exc)
                    if run.state is UploadState.ATTEMPTING:
                        self._backoff(run)
                else:
                    run.record_success()
            elif run.state is UploadState.SUCCEEDED:
                logger.debug("Wrote %s rows %d/%d", spec.remote_name, run.written, run.total)
                if on_progress:
                    on_progress(run.written, run.total)
                if self.pause_seconds > 0 and run.written < run.total:
                    self._sleep(self.pause_seconds)
                run.advance()
            else:
                logger.error("Upload to %s aborted after %d/%d rows: %s",
                             spec.remote_name, run.written, run.total, run.error)
                raise run.error

        logger.info(
            "Upload to %s complete: %d rows in %d batches (%d round trips)",
            spec.remote_name,
            run.written,
            run.batches_written,
            run.round_trips,
        )
        return UploadResult(
            table=spec.remote_name,
            total=run.total,
            written=run.written,
            skipped=normalized.skipped_count,
            batches=run.batches_written,
            round_trips=run.round_trips,
            final_chunk_size=run.sizer.current_size,
        )


def upload(
    client: TabularStoreClient,
    table: Union[TableName, str],
    records: Iterable[Mapping[str, Any]],
    on_progress: Optional[ProgressCallback] = None,
) -> UploadResult:
    """Upload with settings-derived tuning."""
    return BatchUploadController(client).upload(table, records, on_progress)
