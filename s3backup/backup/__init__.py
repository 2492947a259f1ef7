"""
Backup module for s3backup.

This module handles the core backup functionality including:
- Object store access (S3)
- Blob directory mirroring
- Snapshot creation and deduplication
- Retention pruning
- Cycle orchestration
"""

from .executor import BackupExecutor
from .mirror import BlobMirror, BlobMirrorError
from .retention import RetentionPruner
from .retry import put_with_retry
from .snapshot import SnapshotDeduplicator, SnapshotError, build_snapshot_key, is_snapshot_key
from .storage import ObjectStore, S3Storage, StorageError

__all__ = [
    'BackupExecutor',
    'BlobMirror',
    'BlobMirrorError',
    'RetentionPruner',
    'put_with_retry',
    'SnapshotDeduplicator',
    'SnapshotError',
    'build_snapshot_key',
    'is_snapshot_key',
    'ObjectStore',
    'S3Storage',
    'StorageError'
]
