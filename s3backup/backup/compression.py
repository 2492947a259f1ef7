"""
Archive creation for snapshots.

The data directory is packed into a single zip. Entries are written in a
stable order so that an unchanged tree produces a byte-identical archive
and therefore the same digest.
"""

import os
import zipfile
from pathlib import Path


class CompressionError(Exception):
    """Raised when archive creation fails."""
    pass


def create_dir_archive(archive_path: str, source_dir: str) -> str:
    """
    Create a zip archive with the contents of a directory.

    Entries are stored relative to source_dir, so the directory itself is
    not part of the archived paths.

    Args:
        archive_path: Path of the zip file to create
        source_dir: Directory whose contents are archived

    Returns:
        archive_path

    Raises:
        CompressionError: If archive creation fails
    """
    source = Path(source_dir)
    if not source.is_dir():
        raise CompressionError(f"Directory to archive doesn't exist: {source_dir}")

    try:
        with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
            _add_directory_to_zip(zipf, source)
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        raise CompressionError(f"Failed to create archive: {e}")


def _add_directory_to_zip(zipf: zipfile.ZipFile, directory: Path):
    """
    Recursively add directory contents to zip archive.

    Args:
        zipf: ZipFile object
        directory: Directory to add
    """
    for item in sorted(directory.rglob('*')):
        if item.is_file():
            zipf.write(item, item.relative_to(directory).as_posix())


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except Exception as e:
        raise CompressionError(f"Failed to get archive size: {e}")
