"""File hashing shared by the sync engine and device transports.

Remote content hashes are computed on the device with ``md5sum``, so local
artifacts are hashed with the same algorithm to keep the two comparable.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

HASH_ALGORITHM = "md5"
READ_BLOCK_SIZE = 65536


def compute_file_hash(path: Path | str, algorithm: str = HASH_ALGORITHM) -> str:
    """Compute the hash of a file.

    Reads the file in blocks to handle large files efficiently.

    Args:
        path: Path to the file to hash.
        algorithm: Any algorithm name accepted by ``hashlib.new``.

    Returns:
        Lowercase hexadecimal digest.
    """
    hasher = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(READ_BLOCK_SIZE), b""):
            hasher.update(block)
    return hasher.hexdigest()
