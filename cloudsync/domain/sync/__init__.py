"""
Remote data synchronization: batch upload controller, paginated range
reader and the helpers they share.
"""
from cloudsync.domain.sync.errors import SyncError, SyncErrorKind, classify_store_error
from cloudsync.domain.sync.reader import fetch_range, fetch_range_frame
from cloudsync.domain.sync.uploader import BatchUploadController, UploadResult, upload

__all__ = [
    "BatchUploadController",
    "SyncError",
    "SyncErrorKind",
    "UploadResult",
    "classify_store_error",
    "fetch_range",
    "fetch_range_frame",
    "upload",
]
