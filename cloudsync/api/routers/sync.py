"""
Cloud sync endpoints: push/pull tables, range reads, config documents and
background upload jobs.
"""
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query

from cloudsync.api.dependencies import get_job_registry, resolve_table, sync_http_error
from cloudsync.api.schemas.sync import (
    ClearTableResponse,
    ConfigValueRequest,
    ConfigValueResponse,
    ConnectionCheckResponse,
    PullSnapshotResponse,
    PushSnapshotRequest,
    PushSnapshotResponse,
    RangeResponse,
    SyncJobListResponse,
    SyncJobResponse,
    UploadRecordsRequest,
    UploadResponse,
    UploadResultResponse,
)
from cloudsync.db.session import get_store_client
from cloudsync.db.store import TabularStoreClient
from cloudsync.domain.sync import service
from cloudsync.domain.sync.errors import SyncError
from cloudsync.domain.sync.jobs import SyncJob, SyncJobRegistry, run_upload_job
from cloudsync.domain.sync.reader import fetch_range
from cloudsync.domain.sync.uploader import BatchUploadController
from cloudsync.utils.serialization import make_json_safe

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])

_MISSING = object()


def _job_response(job: SyncJob) -> SyncJobResponse:
    return SyncJobResponse(
        job_id=job.id,
        table=job.table,
        status=job.status,
        progress=job.progress,
        written=job.written,
        total=job.total,
        message=job.message,
        result=UploadResultResponse(**job.result) if job.result else None,
        error=job.error,
        created_at=job.created_at,
        updated_at=job.updated_at,
    )


@router.get("/connection", response_model=ConnectionCheckResponse)
def check_connection(client: TabularStoreClient = Depends(get_store_client)):
    """Probe the store and report the last successful snapshot push."""
    check = service.check_connection(client)
    last_sync = service.get_sync_status(client).get("last_sync") if check.ok else None
    return ConnectionCheckResponse(
        ok=check.ok,
        message=check.message,
        kind=check.kind,
        code=check.code,
        last_sync=last_sync,
    )


@router.post("/tables/{table}/upload", response_model=UploadResponse)
def upload_records(
    table: str,
    request: UploadRecordsRequest,
    background_tasks: BackgroundTasks,
    background: bool = False,
    client: TabularStoreClient = Depends(get_store_client),
    registry: SyncJobRegistry = Depends(get_job_registry),
):
    """
    Upsert records into a sync table.

    Parameters:
    - table: Remote table name (e.g. ``fact_shangzhi``)
    - background: Return a job id immediately and upload in the background

    Returns:
    - The upload result, or the job id to poll at ``/api/sync/jobs/{job_id}``
    """
    spec = resolve_table(table)

    if background:
        job = registry.create(spec.remote_name, total=len(request.records))
        background_tasks.add_task(
            run_upload_job, registry, job.id, client, spec.remote_name, request.records
        )
        return UploadResponse(success=True, message="Upload queued", job_id=job.id)

    try:
        result = BatchUploadController(client).upload(spec.name, request.records)
    except SyncError as exc:
        raise sync_http_error(exc)

    return UploadResponse(
        success=True,
        message=f"Uploaded {result.written} rows to {result.table}",
        result=UploadResultResponse(**result.to_dict()),
    )


@router.get("/jobs/{job_id}", response_model=SyncJobResponse)
def get_job(job_id: str, registry: SyncJobRegistry = Depends(get_job_registry)):
    job = registry.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_response(job)


@router.get("/jobs", response_model=SyncJobListResponse)
def list_jobs(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    registry: SyncJobRegistry = Depends(get_job_registry),
):
    jobs, total = registry.list(limit=limit, offset=offset)
    return SyncJobListResponse(
        success=True,
        jobs=[_job_response(job) for job in jobs],
        total_count=total,
        limit=limit,
        offset=offset,
    )


@router.get("/tables/{table}/range", response_model=RangeResponse)
def read_range(
    table: str,
    field: Optional[str] = None,
    low: Optional[str] = None,
    high: Optional[str] = None,
    client: TabularStoreClient = Depends(get_store_client),
):
    """
    Read rows with ``low <= field <= high`` (both optional), paginating server-side.

    ``field`` defaults to the table's date column, or its first key column.
    Failures truncate the result rather than erroring.
    """
    spec = resolve_table(table)
    field = field or spec.date_field or spec.conflict_key[0]
    if field not in spec.columns:
        raise HTTPException(status_code=400, detail=f"Unknown field '{field}' for table '{spec.remote_name}'")

    rows = fetch_range(client, spec.name, field, low, high)
    return RangeResponse(
        success=True,
        table=spec.remote_name,
        field=field,
        low=low,
        high=high,
        row_count=len(rows),
        records=make_json_safe(rows),
    )


@router.delete("/tables/{table}", response_model=ClearTableResponse)
def clear_table(table: str, client: TabularStoreClient = Depends(get_store_client)):
    spec = resolve_table(table)
    try:
        deleted = service.clear_table(client, spec.name)
    except SyncError as exc:
        raise sync_http_error(exc)
    return ClearTableResponse(success=True, table=spec.remote_name, deleted=deleted or 0)


@router.get("/config/{key}", response_model=ConfigValueResponse)
def get_config(key: str, client: TabularStoreClient = Depends(get_store_client)):
    data = service.load_config(client, key, _MISSING)
    if data is _MISSING:
        return ConfigValueResponse(key=key, data=None, found=False)
    return ConfigValueResponse(key=key, data=make_json_safe(data), found=True)


@router.put("/config/{key}", response_model=ConfigValueResponse)
def put_config(
    key: str,
    request: ConfigValueRequest,
    client: TabularStoreClient = Depends(get_store_client),
):
    try:
        service.save_config(client, key, request.data)
    except SyncError as exc:
        raise sync_http_error(exc)
    return ConfigValueResponse(key=key, data=request.data, found=True)


@router.post("/push", response_model=PushSnapshotResponse)
def push_snapshot(request: PushSnapshotRequest, client: TabularStoreClient = Depends(get_store_client)):
    """Push a full local snapshot of fact tables and config entries."""
    for table in request.tables:
        resolve_table(table)

    try:
        summary = service.push_snapshot(client, request.tables, request.configs)
    except SyncError as exc:
        raise sync_http_error(exc)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return PushSnapshotResponse(
        success=True,
        message=f"Pushed {summary.total_pushed} rows to the store",
        tables={name: UploadResultResponse(**result.to_dict()) for name, result in summary.tables.items()},
        configs_pushed=summary.configs_pushed,
        total_pushed=summary.total_pushed,
        last_sync=summary.last_sync,
    )


@router.get("/pull", response_model=PullSnapshotResponse)
def pull_snapshot(
    low: Optional[str] = None,
    high: Optional[str] = None,
    client: TabularStoreClient = Depends(get_store_client),
):
    """Read every fact table (optionally bounded by date) and all config entries."""
    snapshot = service.pull_snapshot(client, low, high)
    return PullSnapshotResponse(
        success=True,
        tables=make_json_safe(snapshot.tables),
        configs=make_json_safe(snapshot.configs),
        total_rows=snapshot.total_rows,
    )
