"""Decision table for uploading a file that may already exist remotely.

Given the remote files with the same title under the target folder, this
module decides what the uploader does with the local file.

Matrix:
| Remote copies          | overwrite | Action                                  |
|------------------------|-----------|-----------------------------------------|
| 0                      | *         | CREATE                                  |
| 1                      | false     | SKIP                                    |
| 1, same checksum       | true      | SKIP                                    |
| 1, other checksum      | true      | UPDATE                                  |
| >1, all same checksum  | true      | trash all but one, then as 1 copy; warn |
| >1, checksums differ   | true      | CREATE alongside, trash nothing; warn   |
| >1                     | false     | SKIP; warn                              |

A remote copy without a checksum is never identical to anything. The
copy kept is the first one listed by the server.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path

from drivemirror.client.api import DriveFile


class UploadAction(Enum):
    """What to do with a local file."""

    CREATE = auto()  # Upload as a new remote file
    SKIP = auto()  # Leave the remote file as it is
    UPDATE = auto()  # Replace the content of the target


@dataclass(frozen=True)
class UploadDecision:
    """Outcome of decide_upload.

    Attributes:
        action: What to do.
        target: Remote file to skip or update.
        to_trash: Duplicate copies to trash before acting.
        warning: Message to record for the file, if any.
    """

    action: UploadAction
    target: DriveFile | None = None
    to_trash: tuple[DriveFile, ...] = field(default_factory=tuple)
    warning: str | None = None


def all_identical(files: Sequence[DriveFile]) -> bool:
    """Check if all remote files carry the same checksum."""
    checksums = {f.md5_checksum for f in files}
    return len(checksums) == 1 and None not in checksums


def decide_upload(
    existing: Sequence[DriveFile],
    overwrite: bool,
    local_fingerprint: Callable[[], str],
    location: Path | str,
) -> UploadDecision:
    """Decide how to upload a local file.

    Args:
        existing: Remote files with the same title in the target folder.
        overwrite: Whether differing remote content may be replaced.
        local_fingerprint: Returns the local checksum. Only called when a
            comparison is needed.
        location: Local path, used in warning messages.

    Returns:
        The decision.
    """
    if not existing:
        return UploadDecision(UploadAction.CREATE)

    first = existing[0]
    count = len(existing)

    if count == 1:
        return _decide_single(first, overwrite, local_fingerprint)

    if not overwrite:
        return UploadDecision(
            UploadAction.SKIP,
            target=first,
            warning=f"{count} remote copies of {location} exist, none was replaced",
        )

    if all_identical(existing):
        decision = _decide_single(first, overwrite, local_fingerprint)
        return UploadDecision(
            decision.action,
            target=first,
            to_trash=tuple(existing[1:]),
            warning=f"{count} identical remote copies of {location}, {count - 1} moved to trash",
        )

    return UploadDecision(
        UploadAction.CREATE,
        warning=f"{count} differing remote copies of {location}, uploaded as a new copy",
    )


def _decide_single(
    remote: DriveFile, overwrite: bool, local_fingerprint: Callable[[], str]
) -> UploadDecision:
    if not overwrite:
        return UploadDecision(UploadAction.SKIP, target=remote)
    if remote.md5_checksum is not None and remote.md5_checksum == local_fingerprint():
        return UploadDecision(UploadAction.SKIP, target=remote)
    return UploadDecision(UploadAction.UPDATE, target=remote)
