"""Shared types and dataclasses for sync operations.

This module provides:
- SyncError, UploadError and subclasses: Exception classes
- EntryKind, LocalEntry: Local file system entries
- RemoteDestination: Where a local tree is mirrored to
- OperationResult: Outcome of one sync run
- StatusReporter, StopRequester: Collaborator protocols
- SafeReporter, NullStatusReporter, NeverStop: Collaborator helpers
- format_size: Human-readable byte counts
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum, auto
from functools import cached_property
from pathlib import Path
from typing import Protocol

from drivemirror.client.api import DriveFile
from drivemirror.core.hashing import compute_file_hash
from drivemirror.core.types import OperationStatus

logger = logging.getLogger(__name__)

DirectoryMapping = dict[Path, DriveFile]


# =============================================================================
# Exceptions
# =============================================================================


class SyncError(Exception):
    """Base exception for sync errors."""


class AmbiguousDirectoryError(SyncError):
    """Several remote folders match one local directory."""

    def __init__(self, path: Path, count: int) -> None:
        self.path = path
        self.count = count
        super().__init__(f"{count} remote directories match {path.name!r}")


class MissingParentError(SyncError):
    """The remote parent of a local entry was never resolved."""

    def __init__(self, path: Path) -> None:
        self.path = path
        super().__init__(f"No remote directory for the parent of {path}")


class UploadError(SyncError):
    """Failed to upload a file."""


class UploadCancelledError(UploadError):
    """Upload stopped on request. Its checkpoint is kept."""


class ResumableUploadError(UploadError):
    """Upload failed but can be resumed from its checkpoint."""


class TerminalUploadError(UploadError):
    """Upload failed and its session cannot be resumed."""


class IntegrityError(TerminalUploadError):
    """Stored content does not match the local fingerprint."""

    def __init__(self, path: Path, expected: str, actual: str | None) -> None:
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Checksum mismatch for {path.name}: expected {expected}, remote has {actual}"
        )


# =============================================================================
# Local entries
# =============================================================================


class EntryKind(IntEnum):
    """Kind of a local entry."""

    FILE = auto()
    DIRECTORY = auto()


@dataclass(frozen=True)
class LocalEntry:
    """A local file or directory.

    The content fingerprint is computed on first access and cached.
    """

    path: Path
    kind: EntryKind
    size: int = 0

    @classmethod
    def from_path(cls, path: Path) -> LocalEntry:
        """Create from an existing path."""
        if path.is_dir():
            return cls(path=path, kind=EntryKind.DIRECTORY)
        return cls(path=path, kind=EntryKind.FILE, size=path.stat().st_size)

    @property
    def name(self) -> str:
        """Get the entry name."""
        return self.path.name

    @cached_property
    def fingerprint(self) -> str:
        """Get the MD5 of the file content."""
        if self.kind is not EntryKind.FILE:
            raise ValueError(f"Directories have no fingerprint: {self.path}")
        return compute_file_hash(self.path)


@dataclass(frozen=True)
class RemoteDestination:
    """Destination folder of a sync run.

    Attributes:
        id: Id of an existing remote folder.
        title: Title of a folder under the store root, created if absent.
    """

    id: str | None = None
    title: str | None = None

    def __post_init__(self) -> None:
        if not self.id and not self.title:
            raise ValueError("A destination needs an id or a title")

    def __str__(self) -> str:
        return self.title or self.id or ""


# =============================================================================
# Run result
# =============================================================================


@dataclass
class OperationResult:
    """Outcome of one sync run.

    Attributes:
        status: Run status, UNKNOWN until the run ends.
        errors: Failed paths and their exceptions.
        warnings: Paths with a warning message.
        transferred: Number of files uploaded or updated.
        skipped: Number of files already on the remote.
    """

    status: OperationStatus = OperationStatus.UNKNOWN
    errors: dict[Path, Exception] = field(default_factory=dict)
    warnings: dict[Path, str] = field(default_factory=dict)
    transferred: int = 0
    skipped: int = 0

    def add_error(self, path: Path, error: Exception) -> None:
        """Record a failure for a path."""
        self.errors[path] = error

    def add_warning(self, path: Path, message: str) -> None:
        """Record a warning for a path."""
        self.warnings[path] = message

    @property
    def has_error(self) -> bool:
        return bool(self.errors)

    @property
    def has_warning(self) -> bool:
        return bool(self.warnings)

    def mark_stopped(self) -> None:
        self.status = OperationStatus.STOPPED

    def complete(self) -> OperationStatus:
        """Compute the final status from recorded errors and warnings.

        A STOPPED run stays STOPPED.

        Returns:
            The final status.
        """
        if self.status is OperationStatus.STOPPED:
            return self.status
        if self.has_error:
            self.status = OperationStatus.ERROR
        elif self.has_warning:
            self.status = OperationStatus.WARNING
        else:
            self.status = OperationStatus.COMPLETED
        return self.status

    def summary(self) -> str:
        """Get a one-line human summary of the run."""
        if self.status is OperationStatus.STOPPED:
            return "Stopped!"
        parts = ["Complete!"]
        if self.has_error:
            parts.append(f"Errors occurred. {len(self.errors)} files were not transferred.")
        if self.has_warning:
            parts.append(f"There are {len(self.warnings)} warnings.")
        return " ".join(parts)


# =============================================================================
# Collaborators
# =============================================================================


class StatusReporter(Protocol):
    """Receives progress of a sync run."""

    def set_status(self, text: str) -> None: ...

    def set_total_progress(self, fraction: float) -> None: ...

    def set_current_progress(self, fraction: float) -> None: ...


class StopRequester(Protocol):
    """Tells a sync run whether it should stop."""

    def is_stop_requested(self) -> bool: ...


class NullStatusReporter:
    """Reporter that ignores everything."""

    def set_status(self, text: str) -> None:
        pass

    def set_total_progress(self, fraction: float) -> None:
        pass

    def set_current_progress(self, fraction: float) -> None:
        pass


class NeverStop:
    """Stop requester that never asks to stop."""

    def is_stop_requested(self) -> bool:
        return False


class SafeReporter:
    """Best-effort wrapper around a StatusReporter.

    Reporter failures are logged and dropped so they never affect a run.
    """

    def __init__(self, reporter: StatusReporter | None) -> None:
        self._reporter = reporter if reporter is not None else NullStatusReporter()

    def set_status(self, text: str) -> None:
        try:
            self._reporter.set_status(text)
        except Exception:
            logger.exception("Status reporter failed")

    def set_total_progress(self, fraction: float) -> None:
        try:
            self._reporter.set_total_progress(_clamp(fraction))
        except Exception:
            logger.exception("Status reporter failed")

    def set_current_progress(self, fraction: float) -> None:
        try:
            self._reporter.set_current_progress(_clamp(fraction))
        except Exception:
            logger.exception("Status reporter failed")


def _clamp(fraction: float) -> float:
    return min(max(fraction, 0.0), 1.0)


def format_size(size_bytes: int) -> str:
    """Format size in bytes to human-readable string."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    if size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    return f"{size_bytes / (1024 * 1024 * 1024):.2f} GB"
