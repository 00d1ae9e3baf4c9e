"""File transfer logic.

This module contains:
- FileUploader: Conflict-aware upload of one file, direct or resumable
- ResumableUpload: Chunked, checkpointed upload state machine

These are low-level components used by the orchestrator.
"""

from drivemirror.client.sync.transfers.file_uploader import (
    FileUploader,
    UploadResult,
    guess_mime_type,
)
from drivemirror.client.sync.transfers.resumable import ResumableUpload, UploadState

__all__ = [
    "FileUploader",
    "ResumableUpload",
    "UploadResult",
    "UploadState",
    "guess_mime_type",
]
