"""Tests for the resumable upload state machine."""

from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from fakes import FakeDrive, FakeTokens, no_sleep

from drivemirror.client.api import UploadResponse
from drivemirror.client.sync.checkpoint import Checkpoint, CheckpointStore
from drivemirror.client.sync.transfers.resumable import ResumableUpload, UploadState
from drivemirror.client.sync.types import (
    IntegrityError,
    LocalEntry,
    ResumableUploadError,
    TerminalUploadError,
    UploadCancelledError,
)
from drivemirror.core.config import CHUNK_ALIGNMENT, UploaderConfig
from drivemirror.core.hashing import compute_bytes_hash

SIZE = 3 * CHUNK_ALIGNMENT + 100


def write_file(path: Path, size: int) -> LocalEntry:
    path.write_bytes((b"0123456789abcdef" * (size // 16 + 1))[:size])
    return LocalEntry.from_path(path)


@pytest.fixture
def entry(tmp_path: Path) -> LocalEntry:
    return write_file(tmp_path / "big.bin", SIZE)


class Sleeps(list):
    """Sleep replacement recording the requested delays."""

    def __call__(self, seconds: float) -> None:
        self.append(seconds)


class TestResumableUpload:
    """Tests for ResumableUpload class."""

    @pytest.fixture
    def make_upload(
        self,
        drive: FakeDrive,
        tokens: FakeTokens,
        checkpoints: CheckpointStore,
        config: UploaderConfig,
        entry: LocalEntry,
    ):  # type: ignore[no-untyped-def]
        """Build uploads of the test file into one folder."""
        folder = drive.add_folder("Backups")

        def factory(**kwargs):  # type: ignore[no-untyped-def]
            kwargs.setdefault("parent_id", folder.id)
            kwargs.setdefault("sleep", no_sleep)
            return ResumableUpload(
                drive,
                kwargs.pop("tokens", tokens),
                checkpoints,
                config,
                kwargs.pop("entry", entry),
                "big.bin",
                "application/octet-stream",
                **kwargs,
            )

        factory.folder = folder  # type: ignore[attr-defined]
        return factory

    def test_uploads_in_chunks(
        self, make_upload, drive: FakeDrive, checkpoints: CheckpointStore, entry: LocalEntry
    ) -> None:
        """Should send aligned chunks and return the stored file."""
        progress: list[float] = []
        upload = make_upload(on_progress=progress.append)

        result = upload.run()

        assert upload.state is UploadState.DONE
        assert result.md5_checksum == entry.fingerprint
        assert drive.chunk_starts == [0, CHUNK_ALIGNMENT, 2 * CHUNK_ALIGNMENT, 3 * CHUNK_ALIGNMENT]
        assert drive.nodes[result.id].content == entry.path.read_bytes()
        assert progress == sorted(progress)
        assert progress[-1] == 1.0
        assert checkpoints.load("big.bin") is None

    def test_checkpoint_written_before_first_chunk(
        self, make_upload, checkpoints: CheckpointStore, entry: LocalEntry
    ) -> None:
        """Should persist fingerprint and session before sending bytes."""
        seen: list[Checkpoint | None] = []

        def cancel_check() -> bool:
            seen.append(checkpoints.load("big.bin"))
            return False

        make_upload(cancel_check=cancel_check).run()

        first = seen[0]
        assert first is not None
        assert first.fingerprint == entry.fingerprint
        assert first.session_uri.startswith("https://upload.test/session/")

    def test_resumes_after_cancel(
        self, make_upload, drive: FakeDrive, checkpoints: CheckpointStore, entry: LocalEntry
    ) -> None:
        """Should continue the same session from the committed offset."""
        first = make_upload(cancel_check=lambda: drive.count("upload_chunk") >= 1)
        with pytest.raises(UploadCancelledError):
            first.run()
        checkpoint = checkpoints.load("big.bin")
        assert checkpoint is not None

        drive.chunk_starts.clear()
        second = make_upload()
        result = second.run()

        assert second.resumed is True
        assert drive.count("create_resumable_session") == 1
        assert drive.chunk_starts == [CHUNK_ALIGNMENT, 2 * CHUNK_ALIGNMENT, 3 * CHUNK_ALIGNMENT]
        assert drive.nodes[result.id].content == entry.path.read_bytes()
        assert checkpoints.load("big.bin") is None

    def test_transient_error_backs_off(self, make_upload, drive: FakeDrive) -> None:
        """Should wait, ask for the offset and resend the chunk."""
        sleeps = Sleeps()
        drive.chunk_statuses = [503, 500]

        make_upload(sleep=sleeps).run()

        assert sleeps == [2.0, 4.0]
        assert drive.chunk_starts[:3] == [0, 0, 0]

    def test_transport_error_backs_off(self, make_upload, drive: FakeDrive) -> None:
        """Should treat a dropped connection as a transient failure."""
        sleeps = Sleeps()
        drive.fail("upload_chunk", httpx.ReadTimeout("timed out"))

        result = make_upload(sleep=sleeps).run()

        assert sleeps == [2.0]
        assert result.md5_checksum is not None

    def test_progress_resets_backoff(self, make_upload, drive: FakeDrive) -> None:
        """Should restart the backoff sequence after a committed chunk."""
        sleeps = Sleeps()
        drive.chunk_statuses = [503, None, 503]

        make_upload(sleep=sleeps).run()

        assert sleeps == [2.0, 2.0]

    def test_backoff_exhausted_keeps_checkpoint(
        self, make_upload, drive: FakeDrive, checkpoints: CheckpointStore
    ) -> None:
        """Should give up resumably after the chunk retry limit."""
        sleeps = Sleeps()
        drive.chunk_statuses = [503] * 6

        upload = make_upload(sleep=sleeps)
        with pytest.raises(ResumableUploadError):
            upload.run()

        assert upload.state is UploadState.FAILED_RESUMABLE
        assert sleeps == [2.0, 4.0, 8.0, 16.0, 32.0]
        assert checkpoints.load("big.bin") is not None

    def test_unexpected_status_exhausted(
        self, make_upload, drive: FakeDrive, checkpoints: CheckpointStore
    ) -> None:
        """Should count unexpected answers without sleeping."""
        sleeps = Sleeps()
        drive.chunk_statuses = [400] * 6

        with pytest.raises(ResumableUploadError):
            make_upload(sleep=sleeps).run()

        assert sleeps == []
        assert drive.count("upload_chunk") == 6
        assert checkpoints.load("big.bin") is not None

    def test_unauthorized_refreshes_token(
        self, make_upload, drive: FakeDrive, tokens: FakeTokens
    ) -> None:
        """Should renew the token and resend the chunk."""
        drive.chunk_statuses = [401]

        make_upload().run()

        assert tokens.refreshes == 1
        assert drive.chunk_starts[:2] == [0, 0]

    def test_token_refresh_failure(
        self, make_upload, drive: FakeDrive, checkpoints: CheckpointStore
    ) -> None:
        """Should stop resumably when the token cannot be renewed."""
        drive.chunk_statuses = [401]

        with pytest.raises(ResumableUploadError):
            make_upload(tokens=FakeTokens(refresh_result=False)).run()

        assert checkpoints.load("big.bin") is not None

    def test_token_refresh_limit(self, make_upload, drive: FakeDrive) -> None:
        """Should stop after too many rejected tokens for one chunk."""
        drive.chunk_statuses = [401] * 4

        with pytest.raises(ResumableUploadError, match="rejected"):
            make_upload().run()

    def test_session_gone_is_terminal(
        self, make_upload, drive: FakeDrive, checkpoints: CheckpointStore
    ) -> None:
        """Should delete the checkpoint when the session disappeared."""
        drive.chunk_statuses = [404]

        upload = make_upload()
        with pytest.raises(TerminalUploadError):
            upload.run()

        assert upload.state is UploadState.FAILED_TERMINAL
        assert checkpoints.load("big.bin") is None

    def test_stale_checkpoint_is_terminal(
        self, make_upload, drive: FakeDrive, checkpoints: CheckpointStore, entry: LocalEntry
    ) -> None:
        """Should drop a checkpoint whose session no longer exists."""
        checkpoints.save("big.bin", Checkpoint(entry.fingerprint, "https://upload.test/session/gone"))

        with pytest.raises(TerminalUploadError):
            make_upload().run()

        assert checkpoints.load("big.bin") is None
        assert drive.count("upload_chunk") == 0

    def test_offset_unknown_after_resume(
        self, make_upload, drive: FakeDrive, checkpoints: CheckpointStore
    ) -> None:
        """Should keep the checkpoint when the offset cannot be determined."""
        first = make_upload(cancel_check=lambda: True)
        with pytest.raises(UploadCancelledError):
            first.run()

        def forbidden(session_uri: str, total: int) -> UploadResponse:
            return UploadResponse(403)

        drive.query_upload = forbidden  # type: ignore[method-assign]
        with pytest.raises(ResumableUploadError):
            make_upload().run()

        assert checkpoints.load("big.bin") is not None

    def test_checksum_mismatch(
        self, make_upload, drive: FakeDrive, checkpoints: CheckpointStore
    ) -> None:
        """Should raise IntegrityError and delete the checkpoint."""
        drive.corrupt_checksums = True

        with pytest.raises(IntegrityError):
            make_upload().run()

        assert checkpoints.load("big.bin") is None

    def test_update_session(
        self,
        make_upload,
        drive: FakeDrive,
        checkpoints: CheckpointStore,
        entry: LocalEntry,
    ) -> None:
        """Should replace the content of an existing file."""
        existing = drive.add_file("big.bin", b"old", make_upload.folder.id)
        keys: list[list[str]] = []

        def cancel_check() -> bool:
            keys.append(checkpoints.list_pending())
            return False

        upload = make_upload(parent_id=None, file_id=existing.id, cancel_check=cancel_check)
        result = upload.run()

        assert upload.key == "big.bin-update"
        assert keys[0] == ["big.bin-update"]
        assert result.id == existing.id
        assert result.md5_checksum == compute_bytes_hash(entry.path.read_bytes())

    def test_session_creation_retried(self, make_upload, drive: FakeDrive) -> None:
        """Should retry opening the session until it succeeds."""
        drive.fail("create_resumable_session", httpx.ConnectError("refused"))

        make_upload().run()

        assert drive.count("create_resumable_session") == 2

    def test_session_creation_gives_up(
        self,
        make_upload,
        drive: FakeDrive,
        checkpoints: CheckpointStore,
        config: UploaderConfig,
    ) -> None:
        """Should raise once the retries of opening the session are used up."""
        config.max_retries = 1
        drive.fail(
            "create_resumable_session",
            httpx.ConnectError("refused"),
            httpx.ConnectError("refused"),
        )

        with pytest.raises(httpx.ConnectError):
            make_upload().run()

        assert drive.count("create_resumable_session") == 2
        assert checkpoints.list_pending() == []

    def test_empty_file_rejected(self, make_upload, tmp_path: Path) -> None:
        """Should refuse a file without content."""
        empty = write_file(tmp_path / "empty.bin", 0)
        with pytest.raises(ValueError):
            make_upload(entry=empty)
