"""Upload of one local file into a remote folder.

This module provides:
- FileUploader: Resolves conflicts with existing remote copies, then sends
  the file directly (small files) or through a resumable session (large
  files)
- guess_mime_type: Content type of a local file
"""

from __future__ import annotations

import logging
import mimetypes
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from drivemirror.client.api import DEFAULT_MIME_TYPE
from drivemirror.client.sync.domain.conflicts import UploadAction, decide_upload
from drivemirror.client.sync.retry import RetryCounter, call_with_retry
from drivemirror.client.sync.transfers.resumable import ResumableUpload
from drivemirror.client.sync.types import IntegrityError

if TYPE_CHECKING:
    from drivemirror.client.api import DriveFile, RemoteStore
    from drivemirror.client.auth import TokenProvider
    from drivemirror.client.sync.checkpoint import CheckpointStore
    from drivemirror.client.sync.types import LocalEntry
    from drivemirror.core.config import UploaderConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


def guess_mime_type(path: Path) -> str:
    """Get the content type of a file from its name."""
    return mimetypes.guess_type(path.name)[0] or DEFAULT_MIME_TYPE


@dataclass
class UploadResult:
    """Result of uploading one file.

    Attributes:
        action: What was done.
        remote: Resulting remote file (the existing one when skipped).
        resumable: True if the chunked protocol was used.
        warning: Warning to record for the file, if any.
    """

    action: UploadAction
    remote: DriveFile | None
    resumable: bool = False
    warning: str | None = None


class FileUploader:
    """Uploads local files, applying the conflict decision table."""

    def __init__(
        self,
        client: RemoteStore,
        tokens: TokenProvider,
        checkpoints: CheckpointStore,
        config: UploaderConfig,
        cancel_check: Callable[[], bool] | None = None,
        on_progress: Callable[[float], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the uploader.

        Args:
            client: Remote store client.
            tokens: Access token provider.
            checkpoints: Checkpoint store for large files.
            config: Threshold, chunk and retry settings. Each call to
                upload gets its own budget of config.max_retries retries.
            cancel_check: Returns True when large uploads should stop.
            on_progress: Called with the fraction of the current file sent.
            sleep: Sleep function used for chunk backoff.
        """
        self._client = client
        self._tokens = tokens
        self._checkpoints = checkpoints
        self._config = config
        self._cancel_check = cancel_check
        self._on_progress = on_progress
        self._sleep = sleep

    def is_large(self, entry: LocalEntry) -> bool:
        """Check if a file goes through the resumable protocol."""
        return entry.size > self._config.large_file_threshold

    def upload(self, entry: LocalEntry, parent: DriveFile, overwrite: bool) -> UploadResult:
        """Upload a file into a remote folder.

        Args:
            entry: Local file.
            parent: Remote folder receiving the file.
            overwrite: Whether differing remote content may be replaced.

        Returns:
            What was done.

        Raises:
            UploadCancelledError: If a large upload was cancelled.
            UploadError: If the upload failed.
            APIError: If a remote call failed after retries.
        """
        title = entry.name
        mime_type = guess_mime_type(entry.path)
        counter = RetryCounter(self._config.max_retries)

        existing = self._retry(
            counter,
            lambda: self._client.find_files(title, parent.id, mime_type),
            f"listing {title}",
        )
        decision = decide_upload(existing, overwrite, lambda: entry.fingerprint, entry.path)
        if decision.warning:
            logger.warning(decision.warning)

        for duplicate in decision.to_trash:
            self._retry(
                counter,
                lambda dup=duplicate: self._client.trash_file(dup.id),
                f"trashing duplicate {duplicate.id}",
            )
            logger.info(f"Trashed duplicate copy {duplicate.id} of {entry.path}")

        if decision.action is UploadAction.SKIP:
            logger.debug(f"Skipping {entry.path}, already on remote")
            return UploadResult(UploadAction.SKIP, decision.target, warning=decision.warning)

        large = self.is_large(entry)
        target = decision.target
        if decision.action is UploadAction.UPDATE and target is not None:
            logger.info(f"Updating {entry.path}")
            if large:
                remote = self._run_resumable(entry, mime_type, file_id=target.id)
            else:
                remote = self._send_content(counter, entry, target.id, mime_type)
        else:
            logger.info(f"Uploading {entry.path}")
            if large:
                remote = self._run_resumable(entry, mime_type, parent_id=parent.id)
            else:
                remote = self._create_small(counter, entry, parent, mime_type)

        return UploadResult(decision.action, remote, resumable=large, warning=decision.warning)

    def _retry(self, counter: RetryCounter, func: Callable[[], T], description: str) -> T:
        return call_with_retry(func, counter, description=description)

    def _run_resumable(
        self,
        entry: LocalEntry,
        mime_type: str,
        parent_id: str | None = None,
        file_id: str | None = None,
    ) -> DriveFile:
        upload = ResumableUpload(
            self._client,
            self._tokens,
            self._checkpoints,
            self._config,
            entry,
            title=entry.name,
            mime_type=mime_type,
            parent_id=parent_id,
            file_id=file_id,
            on_progress=self._on_progress,
            cancel_check=self._cancel_check,
            sleep=self._sleep,
        )
        return upload.run()

    def _create_small(
        self, counter: RetryCounter, entry: LocalEntry, parent: DriveFile, mime_type: str
    ) -> DriveFile:
        created = self._retry(
            counter,
            lambda: self._client.insert_file(entry.name, parent.id, mime_type),
            f"creating {entry.name}",
        )
        try:
            return self._send_content(counter, entry, created.id, mime_type)
        except Exception:
            self._discard_empty(counter, created)
            raise

    def _send_content(
        self, counter: RetryCounter, entry: LocalEntry, file_id: str, mime_type: str
    ) -> DriveFile:
        remote = self._retry(
            counter,
            lambda: self._client.upload_content(file_id, entry.path, mime_type),
            f"sending {entry.name}",
        )
        if remote.md5_checksum is None:
            logger.warning(f"No checksum reported for {entry.path}, content not verified")
        elif remote.md5_checksum != entry.fingerprint:
            raise IntegrityError(entry.path, entry.fingerprint, remote.md5_checksum)
        if self._on_progress is not None:
            self._on_progress(1.0)
        return remote

    def _discard_empty(self, counter: RetryCounter, created: DriveFile) -> None:
        """Trash a node whose content never arrived."""
        try:
            self._retry(
                counter, lambda: self._client.trash_file(created.id), f"trashing {created.id}"
            )
        except Exception as e:
            logger.warning(f"Could not trash incomplete file {created.title} ({created.id}): {e}")
