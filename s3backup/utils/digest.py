"""
Content digests for snapshot archives.
Snapshot names embed the SHA-1 of the archive, so unchanged data maps to the
same 40 character name suffix.
"""

import hashlib


CHUNK_SIZE = 1024 * 1024


class DigestError(Exception):
    """Raised when a file cannot be hashed."""
    pass


def file_sha1(path: str) -> str:
    """
    Compute the SHA-1 of a file's contents.

    Args:
        path: File to hash

    Returns:
        Lowercase hex digest (40 characters)

    Raises:
        DigestError: If the file cannot be read
    """
    sha1 = hashlib.sha1()
    try:
        with open(path, 'rb') as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b''):
                sha1.update(chunk)
    except OSError as e:
        raise DigestError(f"Failed to compute sha1 of {path}: {e}")
    return sha1.hexdigest()
