"""Core module - Shared configuration, hashing, and types."""

from drivemirror.core.config import (
    CHUNK_ALIGNMENT,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_LARGE_FILE_THRESHOLD,
    DEFAULT_MAX_RETRIES,
    ProxySettings,
    UploaderConfig,
)
from drivemirror.core.hashing import compute_bytes_hash, compute_file_hash
from drivemirror.core.types import OperationStatus

__all__ = [
    # Config
    "CHUNK_ALIGNMENT",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_LARGE_FILE_THRESHOLD",
    "DEFAULT_MAX_RETRIES",
    "ProxySettings",
    "UploaderConfig",
    # Hashing
    "compute_bytes_hash",
    "compute_file_hash",
    # Types
    "OperationStatus",
]
