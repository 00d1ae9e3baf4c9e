"""Persistent upload checkpoints.

A checkpoint lets a resumable upload continue after the process stops.
It is a two-line text file in the temp directory:

    <content fingerprint>
    <session URI>

The committed offset is never stored; it is always asked to the server.
New uploads use "<title>.tmp", content updates "<title>-update.tmp".
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

CHECKPOINT_SUFFIX = ".tmp"
UPDATE_SUFFIX = "-update"


@dataclass(frozen=True)
class Checkpoint:
    """Persisted state of a resumable upload."""

    fingerprint: str
    session_uri: str


class CheckpointStore:
    """Checkpoint files in a temp directory."""

    def __init__(self, tmp_dir: Path) -> None:
        self._dir = Path(tmp_dir)

    @property
    def directory(self) -> Path:
        return self._dir

    @staticmethod
    def key_for(title: str, update: bool = False) -> str:
        """Get the checkpoint key of an upload target.

        Args:
            title: Remote title of the uploaded file.
            update: True for a content update of an existing file.
        """
        return f"{title}{UPDATE_SUFFIX}" if update else title

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise ValueError(f"Invalid checkpoint key: {key!r}")
        return self._dir / f"{key}{CHECKPOINT_SUFFIX}"

    def load(self, key: str) -> Checkpoint | None:
        """Read a checkpoint.

        Returns:
            The checkpoint, or None if absent or unreadable.
        """
        path = self._path(key)
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Cannot read checkpoint {path}: {e}")
            return None

        if len(lines) < 2 or not lines[0].strip() or not lines[1].strip():
            logger.warning(f"Ignoring malformed checkpoint {path}")
            return None
        return Checkpoint(fingerprint=lines[0].strip(), session_uri=lines[1].strip())

    def save(self, key: str, checkpoint: Checkpoint) -> None:
        """Write a checkpoint atomically.

        Raises:
            OSError: If the file cannot be written.
        """
        path = self._path(key)
        self._dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".checkpoint-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(f"{checkpoint.fingerprint}\n{checkpoint.session_uri}\n")
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Saved checkpoint {path.name}")

    def discard(self, key: str) -> None:
        """Delete a checkpoint if it exists."""
        path = self._path(key)
        try:
            path.unlink()
            logger.debug(f"Discarded checkpoint {path.name}")
        except FileNotFoundError:
            pass

    def list_pending(self) -> list[str]:
        """Get the keys of all stored checkpoints, sorted."""
        if not self._dir.is_dir():
            return []
        return sorted(
            p.name[: -len(CHECKPOINT_SUFFIX)]
            for p in self._dir.iterdir()
            if p.is_file() and p.name.endswith(CHECKPOINT_SUFFIX)
        )

    def clear(self) -> int:
        """Delete all stored checkpoints.

        Returns:
            Number of checkpoints deleted.
        """
        keys = self.list_pending()
        for key in keys:
            self.discard(key)
        return len(keys)
