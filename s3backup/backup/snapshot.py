"""
Content-addressed snapshots of the data directory.

Snapshot key format:
    <s3_dir><YYMMDD>_<HHMM>_<sha1>.zip
e.g.
    apptranslator/121011_1121_c7fedc06cf4b08fef66090eaa0ad7a68dc13a325.zip

The sha1 of the archive is part of the name, so a snapshot is only uploaded
when the content changed since the last one.
"""

import os
import time
from datetime import datetime
from typing import Optional

from s3backup.models import BUCKET_DELIM, BackupConfig, BackupContext, SnapshotRecord, join_key
from s3backup.utils.digest import DigestError, file_sha1
from .compression import CompressionError, create_dir_archive, get_archive_size
from .storage import ObjectStore, StorageError, list_bounded, sanitize_dir_for_list


SNAPSHOT_EXTENSION = '.zip'
TIMESTAMP_FORMAT = '%y%m%d_%H%M'
DIGEST_LENGTH = 40
TEMP_ARCHIVE_NAME = 's3backup-tmp-backup.zip'
DEFAULT_LIST_MAX_KEYS = 1024


class SnapshotError(Exception):
    """Raised when a snapshot cannot be created or uploaded."""
    pass


def build_snapshot_key(s3_dir: str, digest: str, when: datetime) -> str:
    """
    Build the key of a snapshot taken at `when` with content `digest`.

    Args:
        s3_dir: Remote root directory
        digest: 40 character hex sha1 of the archive
        when: Snapshot time (minutes precision)

    Returns:
        Snapshot key
    """
    name = f"{when.strftime(TIMESTAMP_FORMAT)}_{digest}{SNAPSHOT_EXTENSION}"
    return join_key(s3_dir, name).lstrip(BUCKET_DELIM)


def is_snapshot_key(key: str, delim: str = BUCKET_DELIM) -> bool:
    """
    Return True if key has the shape of a snapshot key.

    Only keys directly under a single top-level directory qualify, i.e.
    "<dir>/<YYMMDD>_<HHMM>_<sha1>.zip".
    """
    parts = key.split(delim)
    if len(parts) != 2:
        return False
    parts = parts[1].split('_')
    if len(parts) != 3 or len(parts[0]) != 6 or len(parts[1]) != 4:
        return False
    if len(parts[2]) != DIGEST_LENGTH + len(SNAPSHOT_EXTENSION):
        return False
    return parts[2].endswith(SNAPSHOT_EXTENSION)


def parse_snapshot_key(key: str) -> Optional[SnapshotRecord]:
    """Split a snapshot key into its timestamp and digest, None if it isn't one."""
    if not is_snapshot_key(key):
        return None
    name = key.split(BUCKET_DELIM)[1]
    date_part, time_part, rest = name.split('_')
    return SnapshotRecord(
        timestamp=f"{date_part}_{time_part}",
        digest=rest[:-len(SNAPSHOT_EXTENSION)],
        key=key
    )


class SnapshotDeduplicator:
    """
    Uploads a zip of the data directory unless identical content was
    already uploaded recently.
    """

    def __init__(self, storage: ObjectStore, context: BackupContext,
                 list_max_keys: int = DEFAULT_LIST_MAX_KEYS, strict: bool = False):
        self.storage = storage
        self.context = context
        self.logger = context.logger
        self.list_max_keys = list_max_keys
        self.strict = strict

    def already_uploaded(self, config: BackupConfig, digest: str) -> bool:
        """
        Return True if a snapshot with this digest is among the recent ones.

        Only one page of up to list_max_keys keys is inspected (unless strict),
        on the theory that if the content hasn't changed, one of the latest
        snapshots has the same digest. A failed listing counts as "not
        uploaded": uploading a duplicate beats skipping a backup.
        """
        prefix = sanitize_dir_for_list(config.s3_dir)
        try:
            keys = list_bounded(self.storage, prefix, self.list_max_keys, strict=self.strict)
        except StorageError as e:
            self.logger.error(f"already_uploaded(): listing of '{prefix}' failed with {e}")
            return False
        return any(digest in key for key in keys)

    def maybe_snapshot(self, config: BackupConfig) -> Optional[str]:
        """
        Archive the data directory and upload it if its content is new.

        Args:
            config: Validated backup configuration

        Returns:
            Key of the uploaded snapshot, or None if the content didn't change

        Raises:
            SnapshotError: If archiving, hashing or uploading fails
        """
        start_time = time.monotonic()
        archive_path = os.path.join(config.temp_dir, TEMP_ARCHIVE_NAME)

        try:
            os.makedirs(config.temp_dir, exist_ok=True)
        except OSError as e:
            self.logger.error(f"maybe_snapshot(): can't create temp dir '{config.temp_dir}': {e}")
            raise SnapshotError(f"can't create temp dir '{config.temp_dir}': {e}") from e

        # a leftover from an interrupted run must not be mistaken for fresh content
        self._remove(archive_path)
        try:
            try:
                create_dir_archive(archive_path, config.data_dir)
                archive_size = get_archive_size(archive_path)
                digest = file_sha1(archive_path)
            except (CompressionError, DigestError) as e:
                self.logger.error(f"maybe_snapshot(): archive of '{config.data_dir}' failed with {e}")
                raise SnapshotError(str(e)) from e

            if self.already_uploaded(config, digest):
                self.logger.info(
                    f"s3 backup not done because data ({digest}) didn't change, "
                    f"took {time.monotonic() - start_time:.2f} secs"
                )
                return None

            s3_path = build_snapshot_key(config.s3_dir, digest, self.context.now())
            try:
                self.storage.put(archive_path, s3_path, True)
            except StorageError as e:
                self.logger.error(f"put of '{archive_path}' to '{s3_path}' failed with {e}")
                raise SnapshotError(f"upload of snapshot '{s3_path}' failed: {e}") from e

            self.logger.info(
                f"s3 backup of '{archive_path}' ({archive_size} bytes) to '{s3_path}' "
                f"took {time.monotonic() - start_time:.2f} secs"
            )
            return s3_path
        finally:
            self._remove(archive_path)

    def _remove(self, path: str):
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Failed to remove temporary archive {path}: {e}")
