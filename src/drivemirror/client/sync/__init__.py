"""Sync operations for mirroring a local tree onto the remote store.

Architecture:
    SyncOrchestrator → DirectoryIndexer → FileUploader → ResumableUpload

Components:
- **SyncOrchestrator**: Runs one sync: directory phase, then file phase
- **DirectoryIndexer**: Finds or creates the remote folder of each local directory
- **FileUploader**: Applies the conflict decision table, then uploads
- **ResumableUpload**: Chunked upload state machine with checkpoints
- **CheckpointStore**: Persists resumable sessions across restarts
- **WorkerPool**: Runs several syncs concurrently

All public symbols are re-exported here.
"""

from drivemirror.client.sync.checkpoint import Checkpoint, CheckpointStore
from drivemirror.client.sync.indexer import DirectoryIndexer
from drivemirror.client.sync.local_tree import iter_directories, iter_files
from drivemirror.client.sync.orchestrator import SyncOrchestrator
from drivemirror.client.sync.retry import (
    RetryCounter,
    RetryDecision,
    UploadStatusClass,
    backoff_delay,
    call_with_retry,
    classify_error,
    classify_upload_status,
)
from drivemirror.client.sync.transfers import FileUploader, ResumableUpload, UploadState
from drivemirror.client.sync.types import (
    AmbiguousDirectoryError,
    EntryKind,
    IntegrityError,
    LocalEntry,
    MissingParentError,
    OperationResult,
    RemoteDestination,
    ResumableUploadError,
    StatusReporter,
    StopRequester,
    SyncError,
    TerminalUploadError,
    UploadCancelledError,
    UploadError,
)
from drivemirror.client.sync.workers import PoolState, SyncTask, WorkerPool

__all__ = [
    # Checkpoints
    "Checkpoint",
    "CheckpointStore",
    # Directory phase
    "DirectoryIndexer",
    "iter_directories",
    "iter_files",
    # Orchestration
    "SyncOrchestrator",
    # Retry
    "RetryCounter",
    "RetryDecision",
    "UploadStatusClass",
    "backoff_delay",
    "call_with_retry",
    "classify_error",
    "classify_upload_status",
    # Transfers
    "FileUploader",
    "ResumableUpload",
    "UploadState",
    # Types
    "AmbiguousDirectoryError",
    "EntryKind",
    "IntegrityError",
    "LocalEntry",
    "MissingParentError",
    "OperationResult",
    "RemoteDestination",
    "ResumableUploadError",
    "StatusReporter",
    "StopRequester",
    "SyncError",
    "TerminalUploadError",
    "UploadCancelledError",
    "UploadError",
    # Workers
    "PoolState",
    "SyncTask",
    "WorkerPool",
]
