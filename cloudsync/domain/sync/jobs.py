"""
In-process tracking for background uploads started over HTTP.

Jobs live only as long as the process; the upload itself is durable in the
store, this registry just lets a client poll progress.
"""
from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from cloudsync.db.store import TabularStoreClient
from cloudsync.domain.sync.errors import SyncError
from cloudsync.domain.sync.uploader import BatchUploadController

logger = logging.getLogger(__name__)

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncJob:
    id: str
    table: str
    status: str = PENDING
    written: int = 0
    total: int = 0
    message: str = "Queued"
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def progress(self) -> int:
        if self.status == COMPLETED:
            return 100
        if self.total <= 0:
            return 0
        return min(100, int(self.written * 100 / self.total))


class SyncJobRegistry:
    def __init__(self) -> None:
        self._jobs: Dict[str, SyncJob] = {}
        self._lock = threading.Lock()

    def create(self, table: str, total: int = 0) -> SyncJob:
        job = SyncJob(id=str(uuid.uuid4()), table=table, total=total)
        with self._lock:
            self._jobs[job.id] = job
            return replace(job)

    def _update(self, job_id: str, **changes: Any) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise KeyError(job_id)
            for name, value in changes.items():
                setattr(job, name, value)
            job.updated_at = _now()

    def update_progress(self, job_id: str, written: int, total: int) -> None:
        self._update(
            job_id,
            status=PROCESSING,
            written=written,
            total=total,
            message=f"Uploaded {written}/{total} rows",
        )

    def complete(self, job_id: str, result: Dict[str, Any]) -> None:
        self._update(job_id, status=COMPLETED, result=result, message="Upload completed")

    def fail(self, job_id: str, error: Dict[str, Any], message: str) -> None:
        self._update(job_id, status=FAILED, error=error, message=message)

    def get(self, job_id: str) -> Optional[SyncJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    def list(self, limit: int = 50, offset: int = 0) -> Tuple[List[SyncJob], int]:
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda job: job.created_at, reverse=True)
            return [replace(job) for job in jobs[offset:offset + limit]], len(jobs)


job_registry = SyncJobRegistry()


def run_upload_job(
    registry: SyncJobRegistry,
    job_id: str,
    client: TabularStoreClient,
    table: str,
    records: Iterable[Mapping[str, Any]],
    controller: Optional[BatchUploadController] = None,
) -> None:
    """Background task body: run one upload and mirror its progress into ``registry``."""
    controller = controller or BatchUploadController(client)
    try:
        result = controller.upload(
            table,
            records,
            lambda written, total: registry.update_progress(job_id, written, total),
        )
    except SyncError as exc:
        registry.fail(job_id, exc.to_dict(), exc.describe())
        return
    except Exception as exc:
        logger.exception("Upload job %s crashed", job_id)
        registry.fail(job_id, {"kind": "internal", "message": str(exc)}, f"Upload failed: {exc}")
        return
    registry.complete(job_id, result.to_dict())
