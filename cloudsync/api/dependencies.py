"""
Shared dependencies and helpers used across routers.
"""
from fastapi import HTTPException

from cloudsync.api.schemas.sync import SyncErrorDetail
from cloudsync.db.tables import TableSpec, get_table_spec
from cloudsync.domain.sync.errors import SyncError, SyncErrorKind
from cloudsync.domain.sync.jobs import SyncJobRegistry, job_registry

_STATUS_BY_KIND = {
    SyncErrorKind.PERMISSION_DENIED: 403,
    SyncErrorKind.VALIDATION: 422,
    SyncErrorKind.CAPACITY_EXCEEDED: 507,
    SyncErrorKind.TRANSIENT: 503,
}


def get_job_registry() -> SyncJobRegistry:
    return job_registry


def resolve_table(table: str) -> TableSpec:
    """
    Look up a sync table from a path parameter.

    Raises:
    - HTTPException 404: If the table is not part of the sync registry
    """
    try:
        return get_table_spec(table)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))


def sync_http_error(exc: SyncError) -> HTTPException:
    detail = SyncErrorDetail(**exc.to_dict())
    return HTTPException(status_code=_STATUS_BY_KIND.get(exc.kind, 500), detail=detail.model_dump())
