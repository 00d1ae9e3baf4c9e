"""Content fingerprints for drivemirror.

The remote store reports an MD5 checksum for every binary file, so local
files are fingerprinted with the same digest.
"""

import hashlib
from pathlib import Path

HASH_BLOCK_SIZE = 1024 * 1024  # 1 MiB


def compute_file_hash(path: Path) -> str:
    """Compute the MD5 hash of a file.

    Reads the file in blocks to handle large files efficiently.

    Args:
        path: Path to the file to hash.

    Returns:
        Lower-case hexadecimal MD5 hash string.
    """
    hasher = hashlib.md5()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(HASH_BLOCK_SIZE), b""):
            hasher.update(block)
    return hasher.hexdigest()


def compute_bytes_hash(data: bytes) -> str:
    """Compute the MD5 hash of in-memory data."""
    return hashlib.md5(data).hexdigest()
