"""
One-way, presence-only mirror of a local blob directory into S3.

A file is uploaded only when its key is missing from the remote listing;
content of keys already present is never compared or re-uploaded.
"""

import os
from typing import Optional, Set

from s3backup.models import BUCKET_DELIM, BackupContext, RetryPolicy, SyncResult, join_key
from .retry import put_with_retry
from .storage import ObjectStore, StorageError, list_all, sanitize_dir_for_list


class BlobMirrorError(Exception):
    """Raised when a blob directory cannot be mirrored."""
    pass


def _with_leading_delim(key: str) -> str:
    return key if key.startswith(BUCKET_DELIM) else BUCKET_DELIM + key


class BlobMirror:
    """
    Copies files of a local directory that are not yet in S3.
    """

    def __init__(self, storage: ObjectStore, context: BackupContext,
                 retry_policy: Optional[RetryPolicy] = None):
        self.storage = storage
        self.context = context
        self.logger = context.logger
        self.retry_policy = retry_policy or RetryPolicy()

    def sync(self, local_dir: str, s3_dir: str) -> SyncResult:
        """
        Upload every file under local_dir whose key under s3_dir is missing.

        The key of a file is s3_dir joined with the file's path relative to
        local_dir, e.g. <local_dir>/ab/cd.bin becomes <s3_dir>/ab/cd.bin.

        Args:
            local_dir: Local blob directory
            s3_dir: Remote directory mirroring local_dir

        Returns:
            SyncResult with the number of skipped and copied files

        Raises:
            BlobMirrorError: If listing, walking or uploading fails
        """
        result = SyncResult()
        local_root = os.path.abspath(local_dir)
        anchor = os.sep + os.path.basename(local_root) + os.sep
        self.logger.info(f"sync(): anchor: '{anchor}', {local_root} => {s3_dir}")

        if not os.path.isdir(local_root):
            self.logger.error(f"sync(): local directory '{local_root}' doesn't exist")
            raise BlobMirrorError(f"local directory '{local_root}' doesn't exist")

        existing = self._list_existing(s3_dir)

        try:
            for path in self._walk_files(local_root):
                idx = path.find(anchor, len(os.path.dirname(local_root)) - 1)
                if idx == -1:
                    self.logger.error(f"sync(): unknown file '{path}'")
                    raise BlobMirrorError(f"unknown file '{path}'")

                relative = path[idx + len(anchor):].replace(os.sep, BUCKET_DELIM)
                s3_path = join_key(s3_dir, relative)

                if _with_leading_delim(s3_path) in existing:
                    result.skipped += 1
                    continue

                try:
                    put_with_retry(
                        self.storage, path, s3_path, public=True,
                        policy=self.retry_policy, logger=self.logger
                    )
                except StorageError as e:
                    self.logger.error(f"put of '{path}' to '{s3_path}' failed with {e}")
                    raise BlobMirrorError(f"upload of '{path}' failed: {e}") from e

                self.logger.info(f"sync(): put '{path}' as '{s3_path}'")
                result.copied += 1
        finally:
            self.logger.info(
                f"sync(): skipped {result.skipped} existing files, copied {result.copied} files"
            )

        return result

    def _list_existing(self, s3_dir: str) -> Set[str]:
        """Complete set of keys under s3_dir, each with a leading delimiter."""
        try:
            keys = list_all(self.storage, sanitize_dir_for_list(s3_dir))
        except StorageError as e:
            self.logger.error(f"listing of '{s3_dir}' failed with {e}")
            raise BlobMirrorError(f"listing of '{s3_dir}' failed: {e}") from e
        return {_with_leading_delim(key) for key in keys}

    def _walk_files(self, root: str):
        """Yield regular files under root in sorted order; walk errors abort."""
        def on_error(err: OSError):
            self.logger.error(f"walk of '{root}' failed with {err}")
            raise BlobMirrorError(f"walk of '{root}' failed: {err}") from err

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            dirnames.sort()
            for name in sorted(filenames):
                path = os.path.join(dirpath, name)
                if os.path.isfile(path):
                    yield path
