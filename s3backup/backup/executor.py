"""
Backup executor - runs one complete backup cycle.

Workflow:
1. Mirror the blobs directory
2. Mirror the blobs_crashes directory
3. Snapshot the data directory (skipped if content didn't change)
4. Prune old snapshots (only after a new snapshot was uploaded)

A failed blob mirror aborts the cycle: no snapshot is taken on top of
possibly incomplete blobs.
"""

from datetime import datetime, timezone
from typing import Optional

from s3backup.models import BackupConfig, BackupContext, CycleResult
from .mirror import BlobMirror, BlobMirrorError
from .retention import RetentionPruner
from .snapshot import SnapshotDeduplicator, SnapshotError
from .storage import ObjectStore


class BackupExecutor:
    """
    Orchestrates one backup cycle for a configuration.
    """

    def __init__(self, config: BackupConfig, storage: ObjectStore, context: BackupContext,
                 mirror: Optional[BlobMirror] = None,
                 deduplicator: Optional[SnapshotDeduplicator] = None,
                 pruner: Optional[RetentionPruner] = None):
        """
        Initialize backup executor.

        Args:
            config: Validated backup configuration
            storage: Object store to back up to
            context: Runtime context (logger, region, time zone)
        """
        self.config = config
        self.storage = storage
        self.context = context
        self.logger = context.logger

        self.mirror = mirror or BlobMirror(storage, context, config.retry_policy)
        self.deduplicator = deduplicator or SnapshotDeduplicator(
            storage, context, config.list_max_keys, strict=config.strict_listing
        )
        self.pruner = pruner or RetentionPruner(
            storage, context, config.list_max_keys, strict=config.strict_listing
        )

    def execute(self) -> CycleResult:
        """
        Run one backup cycle.

        Never raises for backup failures; the outcome is in the returned
        CycleResult.

        Returns:
            CycleResult with status 'success', 'unchanged' or 'failed'
        """
        result = CycleResult(started_at=datetime.now(timezone.utc))
        self.logger.info(f"Starting backup of '{self.config.local_dir}' to '{self.config.s3_dir}'")

        try:
            self._execute_workflow(result)
        except (BlobMirrorError, SnapshotError) as e:
            result.status = 'failed'
            result.error_message = str(e)
            self.logger.error(f"Backup failed: {e}")
        finally:
            result.completed_at = datetime.now(timezone.utc)

        self.logger.info(f"Backup finished with status {result.status}, took {result.duration:.2f} secs")
        return result

    def _execute_workflow(self, result: CycleResult):
        """Execute the backup cycle steps."""
        for local_dir, s3_dir in self.config.blob_dirs():
            try:
                result.sync_results[local_dir] = self.mirror.sync(local_dir, s3_dir)
            except BlobMirrorError as e:
                self.logger.error(f"sync of {local_dir} => {s3_dir} failed with {e}")
                raise

        snapshot_key = self.deduplicator.maybe_snapshot(self.config)
        if snapshot_key is None:
            result.status = 'unchanged'
            return

        result.snapshot_key = snapshot_key
        summary = self.pruner.prune(self.config, self.config.max_backups_to_keep)
        result.deleted = summary['deleted']
        result.status = 'success'
