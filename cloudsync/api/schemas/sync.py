from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class UploadRecordsRequest(BaseModel):
    records: List[Dict[str, Any]] = Field(default_factory=list)


class UploadResultResponse(BaseModel):
    table: str
    total: int
    written: int
    skipped: int
    batches: int
    round_trips: int
    final_chunk_size: int


class UploadResponse(BaseModel):
    success: bool
    message: str
    result: Optional[UploadResultResponse] = None
    job_id: Optional[str] = None


class SyncErrorDetail(BaseModel):
    kind: str
    message: str
    table: Optional[str] = None
    code: Optional[str] = None
    status: Optional[int] = None
    row_start: Optional[int] = None
    row_end: Optional[int] = None
    rows_written: int = 0
    hint: Optional[str] = None


class SyncJobResponse(BaseModel):
    job_id: str
    table: str
    status: str  # pending, processing, completed, failed
    progress: int = 0
    written: int = 0
    total: int = 0
    message: str
    result: Optional[UploadResultResponse] = None
    error: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime


class SyncJobListResponse(BaseModel):
    success: bool
    jobs: List[SyncJobResponse]
    total_count: int
    limit: int
    offset: int


class RangeResponse(BaseModel):
    success: bool
    table: str
    field: str
    low: Optional[str] = None
    high: Optional[str] = None
    row_count: int
    records: List[Dict[str, Any]]


class ClearTableResponse(BaseModel):
    success: bool
    table: str
    deleted: int


class ConnectionCheckResponse(BaseModel):
    ok: bool
    message: str
    kind: Optional[str] = None
    code: Optional[str] = None
    last_sync: Optional[str] = None


class ConfigValueRequest(BaseModel):
    data: Any = None


class ConfigValueResponse(BaseModel):
    key: str
    data: Any = None
    found: bool


class PushSnapshotRequest(BaseModel):
    tables: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    configs: Dict[str, Any] = Field(default_factory=dict)


class PushSnapshotResponse(BaseModel):
    success: bool
    message: str
    tables: Dict[str, UploadResultResponse]
    configs_pushed: int
    total_pushed: int
    last_sync: Optional[str] = None


class PullSnapshotResponse(BaseModel):
    success: bool
    tables: Dict[str, List[Dict[str, Any]]]
    configs: Dict[str, Any]
    total_rows: int
