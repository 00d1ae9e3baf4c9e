"""Resumable chunked upload of one large file.

ResumableUpload drives a small state machine. A plain loop calls the
handler of the current state, and every handler returns the next state:

    INIT ──► SESSION_RESOLVED ──308──► UPLOADING ──308──► SESSION_RESOLVED
                 │   ▲                   │
                 │   └── BACKOFF_WAIT ◄──┤ 5xx / no answer
                 │   └── TOKEN_REFRESH ◄─┤ 401
                 └──200/201──► VERIFYING ◄┘ 200/201
                                   │
                              DONE / FAILED_TERMINAL

FAILED_RESUMABLE is reached when the retry budget of a chunk runs out or
the committed offset cannot be determined. It keeps the checkpoint so a
later run continues the same session. DONE and FAILED_TERMINAL delete it.

HTTP answers are classified into UploadStatusClass values; transport
errors count as a missing answer and never escape a handler.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from enum import IntEnum, auto
from typing import TYPE_CHECKING

import httpx

from drivemirror.client.api import UploadResponse
from drivemirror.client.sync.checkpoint import Checkpoint, CheckpointStore
from drivemirror.client.sync.retry import (
    RetryCounter,
    UploadStatusClass,
    backoff_delay,
    call_with_retry,
    classify_upload_status,
)
from drivemirror.client.sync.types import (
    IntegrityError,
    ResumableUploadError,
    TerminalUploadError,
    UploadCancelledError,
)

if TYPE_CHECKING:
    from drivemirror.client.api import DriveFile, RemoteStore
    from drivemirror.client.auth import TokenProvider
    from drivemirror.client.sync.types import LocalEntry
    from drivemirror.core.config import UploaderConfig

logger = logging.getLogger(__name__)


class UploadState(IntEnum):
    """States of a resumable upload."""

    INIT = auto()
    SESSION_RESOLVED = auto()
    UPLOADING = auto()
    BACKOFF_WAIT = auto()
    TOKEN_REFRESH = auto()
    VERIFYING = auto()
    DONE = auto()
    FAILED_RESUMABLE = auto()
    FAILED_TERMINAL = auto()


FINAL_STATES = frozenset(
    {UploadState.DONE, UploadState.FAILED_RESUMABLE, UploadState.FAILED_TERMINAL}
)


class ResumableUpload:
    """Upload one file through a resumable session, with checkpointing."""

    def __init__(
        self,
        client: RemoteStore,
        tokens: TokenProvider,
        checkpoints: CheckpointStore,
        config: UploaderConfig,
        entry: LocalEntry,
        title: str,
        mime_type: str,
        parent_id: str | None = None,
        file_id: str | None = None,
        on_progress: Callable[[float], None] | None = None,
        cancel_check: Callable[[], bool] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the upload.

        Args:
            client: Remote store client.
            tokens: Access token provider, renewed on 401 answers.
            checkpoints: Checkpoint store.
            config: Chunk size and retry limits. Opening the session gets
                its own budget of config.max_retries retries.
            entry: Local file to send.
            title: Remote title (also the checkpoint key).
            mime_type: Content type.
            parent_id: Parent folder of a new file.
            file_id: Existing file whose content is replaced.
            on_progress: Called with the committed fraction after each chunk.
            cancel_check: Returns True when the upload should stop.
            sleep: Sleep function used for backoff.

        Raises:
            ValueError: If the file is empty.
        """
        if entry.size <= 0:
            raise ValueError(f"Resumable upload needs a non-empty file: {entry.path}")
        self._client = client
        self._tokens = tokens
        self._checkpoints = checkpoints
        self._config = config
        self._entry = entry
        self._title = title
        self._mime_type = mime_type
        self._parent_id = parent_id
        self._file_id = file_id
        self._on_progress = on_progress
        self._cancel_check = cancel_check
        self._sleep = sleep

        self.key = CheckpointStore.key_for(title, update=file_id is not None)
        self.state = UploadState.INIT
        self.resumed = False

        self._fingerprint = ""
        self._session_uri = ""
        self._offset = 0
        self._attempts = 0
        self._refreshes = 0
        self._return_state = UploadState.SESSION_RESOLVED
        self._completed: DriveFile | None = None
        self._result: DriveFile | None = None
        self._failure: Exception | None = None

        self._handlers: dict[UploadState, Callable[[], UploadState]] = {
            UploadState.INIT: self._init,
            UploadState.SESSION_RESOLVED: self._resolve_offset,
            UploadState.UPLOADING: self._upload_chunk,
            UploadState.BACKOFF_WAIT: self._backoff,
            UploadState.TOKEN_REFRESH: self._refresh_token,
            UploadState.VERIFYING: self._verify,
        }

    @property
    def total(self) -> int:
        return self._entry.size

    @property
    def offset(self) -> int:
        """Bytes committed by the server, as last reported."""
        return self._offset

    def run(self) -> DriveFile:
        """Run the upload to completion.

        Returns:
            Metadata of the stored file.

        Raises:
            UploadCancelledError: If cancel_check asked to stop (checkpoint kept).
            ResumableUploadError: If the upload can be continued later (checkpoint kept).
            TerminalUploadError: If the session is unusable (checkpoint deleted).
            IntegrityError: If the stored checksum differs (checkpoint deleted).
        """
        while self.state not in FINAL_STATES:
            self.state = self._handlers[self.state]()

        if self.state is UploadState.DONE and self._result is not None:
            self._checkpoints.discard(self.key)
            logger.info(f"Uploaded {self._title} ({self.total} bytes)")
            return self._result

        if self.state is UploadState.FAILED_TERMINAL:
            self._checkpoints.discard(self.key)
            if isinstance(self._failure, TerminalUploadError):
                raise self._failure
            raise TerminalUploadError(f"Upload of {self._title} failed: {self._failure}")

        logger.warning(f"Upload of {self._title} interrupted at byte {self._offset}, checkpoint kept")
        raise ResumableUploadError(
            f"Upload of {self._title} can be resumed: {self._failure}"
        )

    # === State handlers ===

    def _init(self) -> UploadState:
        checkpoint = self._checkpoints.load(self.key)
        if checkpoint is not None:
            self._fingerprint = checkpoint.fingerprint
            self._session_uri = checkpoint.session_uri
            self.resumed = True
            logger.info(f"Resuming upload of {self._title} from checkpoint")
            return UploadState.SESSION_RESOLVED

        self._fingerprint = self._entry.fingerprint
        self._session_uri = call_with_retry(
            lambda: self._client.create_resumable_session(
                self.total,
                self._mime_type,
                title=self._title,
                parent_id=self._parent_id,
                file_id=self._file_id,
            ),
            RetryCounter(self._config.max_retries),
            description=f"opening upload session for {self._title}",
        )
        self._checkpoints.save(self.key, Checkpoint(self._fingerprint, self._session_uri))
        return UploadState.SESSION_RESOLVED

    def _resolve_offset(self) -> UploadState:
        response = self._send(lambda: self._client.query_upload(self._session_uri, self.total))
        status = classify_upload_status(response.status_code)

        if status is UploadStatusClass.SUCCESS:
            self._completed = response.file
            return UploadState.VERIFYING
        if status is UploadStatusClass.INCOMPLETE:
            self._offset = response.offset or 0
            if self._offset >= self.total:
                self._failure = TerminalUploadError(
                    f"Session of {self._title} reports {self._offset} of {self.total} bytes "
                    f"but is not complete"
                )
                return UploadState.FAILED_TERMINAL
            return UploadState.UPLOADING
        if status is UploadStatusClass.UNAUTHORIZED:
            return self._token_refresh_then(UploadState.SESSION_RESOLVED)
        if status is UploadStatusClass.NOT_FOUND:
            self._failure = TerminalUploadError(f"Upload session of {self._title} no longer exists")
            return UploadState.FAILED_TERMINAL
        if status is UploadStatusClass.TRANSIENT:
            return self._backoff_then(UploadState.SESSION_RESOLVED)

        self._failure = ResumableUploadError(
            f"Cannot determine committed offset (HTTP {response.status_code})"
        )
        return UploadState.FAILED_RESUMABLE

    def _upload_chunk(self) -> UploadState:
        if self._cancel_check is not None and self._cancel_check():
            raise UploadCancelledError(
                f"Upload of {self._title} cancelled at byte {self._offset}"
            )

        start = self._offset
        data = self._read_chunk(start)
        response = self._send(
            lambda: self._client.upload_chunk(self._session_uri, data, start, self.total)
        )
        status = classify_upload_status(response.status_code)

        if status is UploadStatusClass.INCOMPLETE and (response.offset or 0) > start:
            self._attempts = 0
            self._refreshes = 0
            self._report_progress(response.offset or 0)
            return UploadState.SESSION_RESOLVED
        if status is UploadStatusClass.SUCCESS:
            self._completed = response.file
            self._report_progress(self.total)
            return UploadState.VERIFYING
        if status is UploadStatusClass.TRANSIENT:
            # The server may have kept part of the chunk, ask for the offset again
            return self._backoff_then(UploadState.SESSION_RESOLVED)
        if status is UploadStatusClass.UNAUTHORIZED:
            return self._token_refresh_then(UploadState.UPLOADING)
        if status is UploadStatusClass.NOT_FOUND:
            self._failure = TerminalUploadError(f"Upload session of {self._title} no longer exists")
            return UploadState.FAILED_TERMINAL

        self._attempts += 1
        logger.warning(
            f"Unexpected HTTP {response.status_code} for chunk at {start} of {self._title} "
            f"(attempt {self._attempts}/{self._config.max_chunk_retries})"
        )
        if self._attempts > self._config.max_chunk_retries:
            self._failure = ResumableUploadError(
                f"Chunk at {start} rejected with HTTP {response.status_code}"
            )
            return UploadState.FAILED_RESUMABLE
        return UploadState.SESSION_RESOLVED

    def _backoff(self) -> UploadState:
        self._attempts += 1
        if self._attempts > self._config.max_chunk_retries:
            self._failure = ResumableUploadError(
                f"Gave up after {self._config.max_chunk_retries} retries at byte {self._offset}"
            )
            return UploadState.FAILED_RESUMABLE
        delay = backoff_delay(self._attempts, self._config.max_backoff)
        logger.warning(
            f"Upload of {self._title} stalled, retry {self._attempts}/"
            f"{self._config.max_chunk_retries} in {delay:.0f}s"
        )
        self._sleep(delay)
        return self._return_state

    def _refresh_token(self) -> UploadState:
        self._refreshes += 1
        if self._refreshes > self._config.max_token_refreshes:
            self._failure = ResumableUploadError(
                f"Access token rejected {self._refreshes} times during upload"
            )
            return UploadState.FAILED_RESUMABLE
        if not self._tokens.refresh():
            self._failure = ResumableUploadError("Access token could not be renewed")
            return UploadState.FAILED_RESUMABLE
        return self._return_state

    def _verify(self) -> UploadState:
        remote = self._completed
        if remote is None:
            response = self._send(lambda: self._client.query_upload(self._session_uri, self.total))
            if classify_upload_status(response.status_code) is not UploadStatusClass.SUCCESS or (
                response.file is None
            ):
                self._failure = ResumableUploadError(
                    f"Cannot read metadata of completed upload (HTTP {response.status_code})"
                )
                return UploadState.FAILED_RESUMABLE
            remote = response.file

        if remote.md5_checksum != self._fingerprint:
            self._failure = IntegrityError(self._entry.path, self._fingerprint, remote.md5_checksum)
            return UploadState.FAILED_TERMINAL
        self._result = remote
        return UploadState.DONE

    # === Helpers ===

    def _backoff_then(self, state: UploadState) -> UploadState:
        self._return_state = state
        return UploadState.BACKOFF_WAIT

    def _token_refresh_then(self, state: UploadState) -> UploadState:
        self._return_state = state
        return UploadState.TOKEN_REFRESH

    def _send(self, call: Callable[[], UploadResponse]) -> UploadResponse:
        """Run a session call, turning transport failures into a missing answer."""
        try:
            return call()
        except httpx.TransportError as e:
            logger.warning(f"Transport error during upload of {self._title}: {e}")
            return UploadResponse(status_code=None)

    def _read_chunk(self, offset: int) -> bytes:
        with open(self._entry.path, "rb") as f:
            f.seek(offset)
            return f.read(self._config.chunk_size)

    def _report_progress(self, committed: int) -> None:
        if self._on_progress is not None:
            self._on_progress(committed / self.total)
