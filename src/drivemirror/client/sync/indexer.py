"""Remote directory indexer.

This module provides:
- DirectoryIndexer: Finds or creates the remote folder of every local
  directory, building the directory mapping of a sync run
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from drivemirror.client.sync.local_tree import iter_directories
from drivemirror.client.sync.retry import RetryCounter, call_with_retry
from drivemirror.client.sync.types import (
    AmbiguousDirectoryError,
    MissingParentError,
    NeverStop,
    SafeReporter,
)
from drivemirror.core.config import DEFAULT_MAX_RETRIES
from drivemirror.core.types import OperationStatus

if TYPE_CHECKING:
    from drivemirror.client.api import DriveFile, RemoteStore
    from drivemirror.client.sync.types import (
        DirectoryMapping,
        OperationResult,
        StatusReporter,
        StopRequester,
    )

logger = logging.getLogger(__name__)

INDEXING_STATUS = "Checking/creating directories structure..."


class DirectoryIndexer:
    """Mirrors the local directory structure on the remote store."""

    def __init__(self, client: RemoteStore, max_retries: int = DEFAULT_MAX_RETRIES) -> None:
        """Initialize the indexer.

        Args:
            client: Remote store client.
            max_retries: Retry ceiling of each folder resolution (lookup and creation).
        """
        self._client = client
        self._max_retries = max_retries

    def ensure_directory(
        self, title: str, parent_id: str | None, location: Path | None = None
    ) -> DriveFile:
        """Find the folder with a title under a parent, creating it if absent.

        Args:
            title: Folder title.
            parent_id: Parent folder id, or None for the store root.
            location: Local directory the folder stands for, for errors.

        Returns:
            The existing or created folder.

        Raises:
            AmbiguousDirectoryError: If several folders have this title.
        """
        counter = RetryCounter(self._max_retries)
        found = call_with_retry(
            lambda: self._client.find_directories(title, parent_id),
            counter,
            description=f"looking up directory {title}",
        )
        if len(found) > 1:
            raise AmbiguousDirectoryError(location or Path(title), len(found))
        if found:
            return found[0]

        created = call_with_retry(
            lambda: self._client.insert_directory(title, parent_id),
            counter,
            description=f"creating directory {title}",
        )
        logger.info(f"Created remote directory {title}")
        return created

    def ensure_directory_tree(
        self,
        local_root: Path,
        remote_parent: DriveFile,
        result: OperationResult,
        stop_requester: StopRequester | None = None,
        reporter: StatusReporter | None = None,
    ) -> DirectoryMapping:
        """Resolve the remote folder of every directory under local_root.

        local_root itself is mirrored as a child of remote_parent. Failures
        are recorded in result: an ambiguous folder aborts the walk with
        status ERROR, other failures set ERROR and the walk goes on, with
        the descendants of the failed directory recorded as missing their
        parent. A stop request leaves a partial mapping and status STOPPED.

        Args:
            local_root: Local directory to mirror.
            remote_parent: Remote folder receiving local_root.
            result: Result of the run, updated in place.
            stop_requester: Polled before each directory.
            reporter: Progress receiver.

        Returns:
            Mapping from local directories (and local_root's parent) to
            remote folders.
        """
        stop = stop_requester if stop_requester is not None else NeverStop()
        status = SafeReporter(reporter)
        status.set_status(INDEXING_STATUS)

        mapping: DirectoryMapping = {local_root.parent: remote_parent}
        for directory in iter_directories(local_root):
            if stop.is_stop_requested():
                logger.info("Stop requested while indexing directories")
                result.mark_stopped()
                return mapping

            parent = mapping.get(directory.parent)
            if parent is None:
                result.add_error(directory, MissingParentError(directory))
                continue

            try:
                mapping[directory] = self.ensure_directory(directory.name, parent.id, directory)
            except AmbiguousDirectoryError as e:
                logger.error(f"Cannot mirror {directory}: {e}")
                result.add_error(directory, e)
                result.status = OperationStatus.ERROR
                return mapping
            except Exception as e:
                logger.error(f"Cannot mirror {directory}: {e}")
                result.add_error(directory, e)
                result.status = OperationStatus.ERROR

        return mapping
