"""Walking a local directory tree in a stable order."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterator
from pathlib import Path

from drivemirror.client.sync.types import EntryKind, LocalEntry

logger = logging.getLogger(__name__)


def _sorted_children(directory: Path) -> list[Path]:
    try:
        return sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as e:
        logger.warning(f"Cannot list {directory}: {e}")
        return []


def iter_directories(root: Path) -> Iterator[Path]:
    """Yield root and all its subdirectories, breadth-first.

    Siblings come in name order, so a directory is always yielded after
    its parent. Symbolic links are not followed.
    """
    queue: deque[Path] = deque([root])
    while queue:
        directory = queue.popleft()
        yield directory
        queue.extend(
            child for child in _sorted_children(directory)
            if child.is_dir() and not child.is_symlink()
        )


def iter_files(root: Path) -> Iterator[LocalEntry]:
    """Yield every regular file under root.

    Files of a directory come in name order, directories in the order of
    iter_directories.
    """
    for directory in iter_directories(root):
        for child in _sorted_children(directory):
            if child.is_file() and not child.is_symlink():
                yield LocalEntry(path=child, kind=EntryKind.FILE, size=child.stat().st_size)
