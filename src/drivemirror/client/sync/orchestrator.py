"""Directory synchronization orchestrator.

This module provides:
- SyncOrchestrator: Mirrors one local directory tree into a remote folder

A run has two phases. The directory phase resolves the remote folder of
every local directory (see DirectoryIndexer). The file phase walks the
local files in a stable order and uploads each one through FileUploader.
A failing file is recorded and the run goes on; only a failure of the
directory phase, or a stop request, ends the run early.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from drivemirror.client.api import NotFoundError
from drivemirror.client.sync.checkpoint import CheckpointStore
from drivemirror.client.sync.domain.conflicts import UploadAction
from drivemirror.client.sync.indexer import DirectoryIndexer
from drivemirror.client.sync.local_tree import iter_files
from drivemirror.client.sync.retry import RetryCounter, call_with_retry
from drivemirror.client.sync.transfers.file_uploader import FileUploader
from drivemirror.client.sync.types import (
    MissingParentError,
    NeverStop,
    OperationResult,
    SafeReporter,
    UploadCancelledError,
    format_size,
)
from drivemirror.core.types import OperationStatus

if TYPE_CHECKING:
    from drivemirror.client.api import DriveFile, RemoteStore
    from drivemirror.client.auth import TokenProvider
    from drivemirror.client.sync.types import (
        RemoteDestination,
        StatusReporter,
        StopRequester,
    )
    from drivemirror.core.config import UploaderConfig

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Runs sync operations against one remote store.

    An orchestrator holds no per-run state and may serve several runs
    concurrently.
    """

    def __init__(
        self,
        client: RemoteStore,
        tokens: TokenProvider,
        config: UploaderConfig,
        checkpoints: CheckpointStore | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            client: Remote store client.
            tokens: Access token provider.
            config: Uploader configuration.
            checkpoints: Checkpoint store (defaults to one in config.tmp_dir).
            sleep: Sleep function used for chunk backoff.
        """
        self._client = client
        self._tokens = tokens
        self._config = config
        self._checkpoints = checkpoints if checkpoints is not None else CheckpointStore(config.tmp_dir)
        self._sleep = sleep

    @property
    def checkpoints(self) -> CheckpointStore:
        return self._checkpoints

    def resolve_destination(self, destination: RemoteDestination) -> DriveFile:
        """Get the remote folder a destination designates.

        Args:
            destination: Folder id, or title of a folder under the store root.

        Returns:
            The folder, created when only a title is given and none exists.

        Raises:
            ValueError: If the id is unknown or not a folder.
        """
        folder_id = destination.id
        if folder_id:
            try:
                folder = call_with_retry(
                    lambda: self._client.get_file(folder_id),
                    RetryCounter(self._config.max_retries),
                    description=f"fetching destination {folder_id}",
                )
            except NotFoundError as e:
                raise ValueError(f"Unknown destination folder: {folder_id}") from e
            if not folder.is_directory:
                raise ValueError(f"Destination is not a folder: {folder_id}")
            return folder

        title = destination.title or ""
        indexer = DirectoryIndexer(self._client, self._config.max_retries)
        return indexer.ensure_directory(title, None)

    def synchronize(
        self,
        destination: RemoteDestination,
        local_root: Path,
        overwrite: bool = False,
        stop_requester: StopRequester | None = None,
        reporter: StatusReporter | None = None,
    ) -> OperationResult:
        """Mirror a local directory tree into a remote folder.

        local_root is created as a child of the destination folder.

        Args:
            destination: Remote destination folder.
            local_root: Local directory to upload.
            overwrite: Whether differing remote files may be replaced.
            stop_requester: Polled before each directory, file and chunk.
            reporter: Progress receiver.

        Returns:
            Result of the run.

        Raises:
            ValueError: If local_root is not a directory or the destination
                is unknown.
        """
        local_root = Path(local_root).expanduser().resolve()
        if not local_root.is_dir():
            raise ValueError(f"Not a directory: {local_root}")
        if not local_root.name:
            raise ValueError(f"Cannot mirror a file system root: {local_root}")

        stop = stop_requester if stop_requester is not None else NeverStop()
        status = SafeReporter(reporter)
        result = OperationResult()

        logger.info(f"Synchronizing {local_root} to {destination}")
        try:
            remote_root = self.resolve_destination(destination)
        except ValueError:
            raise
        except Exception as e:
            logger.error(f"Cannot resolve destination {destination}: {e}")
            result.add_error(local_root, e)
            return self._finish(result, status)

        indexer = DirectoryIndexer(self._client, self._config.max_retries)
        mapping = indexer.ensure_directory_tree(local_root, remote_root, result, stop, status)
        if result.status in (OperationStatus.STOPPED, OperationStatus.ERROR):
            return self._finish(result, status)

        files = list(iter_files(local_root))
        uploader = FileUploader(
            self._client,
            self._tokens,
            self._checkpoints,
            self._config,
            cancel_check=stop.is_stop_requested,
            on_progress=status.set_current_progress,
            sleep=self._sleep,
        )

        for index, entry in enumerate(files):
            if stop.is_stop_requested():
                logger.info(f"Stop requested, {len(files) - index} files left")
                result.mark_stopped()
                break

            status.set_status(f"Transferring files ({entry.name} - {format_size(entry.size)})")
            status.set_current_progress(0.0)

            parent = mapping.get(entry.path.parent)
            if parent is None:
                result.add_error(entry.path, MissingParentError(entry.path))
            else:
                try:
                    outcome = uploader.upload(entry, parent, overwrite)
                except UploadCancelledError as e:
                    logger.info(str(e))
                    result.mark_stopped()
                    break
                except Exception as e:
                    logger.error(f"Failed to upload {entry.path}: {e}")
                    result.add_error(entry.path, e)
                else:
                    if outcome.warning:
                        result.add_warning(entry.path, outcome.warning)
                    if outcome.action is UploadAction.SKIP:
                        result.skipped += 1
                    else:
                        result.transferred += 1

            status.set_total_progress((index + 1) / len(files))

        return self._finish(result, status)

    def _finish(self, result: OperationResult, status: SafeReporter) -> OperationResult:
        result.complete()
        summary = result.summary()
        status.set_status(summary)
        logger.info(
            f"{summary} ({result.transferred} transferred, {result.skipped} skipped, "
            f"status {result.status.value})"
        )
        return result
