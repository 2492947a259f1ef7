"""
Retention policy enforcement for snapshots.

Keeps the newest N snapshots under the remote root and deletes the rest.
Snapshot names start with a fixed-width, zero-padded YYMMDD_HHMM stamp, so
sorting the keys as strings sorts them chronologically.
"""

from typing import Any, Dict, List

from s3backup.models import BackupConfig, BackupContext
from .snapshot import DEFAULT_LIST_MAX_KEYS, is_snapshot_key
from .storage import ObjectStore, StorageError, list_bounded, sanitize_dir_for_list


class RetentionPruner:
    """
    Deletes the oldest snapshots beyond the retention window.

    Pruning is best effort: a failed listing skips the run and a failed
    deletion is logged and the remaining deletions still happen.
    """

    def __init__(self, storage: ObjectStore, context: BackupContext,
                 list_max_keys: int = DEFAULT_LIST_MAX_KEYS, strict: bool = False):
        """
        Initialize retention pruner.

        Args:
            storage: Object store holding the snapshots
            context: Runtime context (logger)
            list_max_keys: Size of the listing window
            strict: Paginate the listing to completion instead of one page
        """
        self.storage = storage
        self.logger = context.logger
        self.list_max_keys = list_max_keys
        self.strict = strict

    def prune(self, config: BackupConfig, max_to_keep: int) -> Dict[str, Any]:
        """
        Delete all but the newest max_to_keep snapshots.

        Args:
            config: Validated backup configuration
            max_to_keep: Number of snapshots to keep

        Returns:
            Dict with summary of cleanup operations:
            {
                'matched': int,
                'deleted': int,
                'failed': int,
                'errors': List[str]
            }

        Raises:
            ValueError: If max_to_keep is negative
        """
        if max_to_keep < 0:
            raise ValueError(f"max_to_keep must not be negative, got {max_to_keep}")

        summary = {
            'matched': 0,
            'deleted': 0,
            'failed': 0,
            'errors': []
        }

        prefix = sanitize_dir_for_list(config.s3_dir)
        try:
            keys = list_bounded(self.storage, prefix, self.list_max_keys, strict=self.strict)
        except StorageError as e:
            self.logger.error(f"prune(): listing of '{prefix}' failed with {e}")
            summary['errors'].append(str(e))
            return summary

        snapshots = sorted(key for key in keys if is_snapshot_key(key))
        summary['matched'] = len(snapshots)

        to_delete = self.select_for_deletion(snapshots, max_to_keep)
        for key in to_delete:
            try:
                self.storage.delete(key)
                summary['deleted'] += 1
                self.logger.info(f"prune(): deleted {key}")
            except StorageError as e:
                summary['failed'] += 1
                summary['errors'].append(f"{key}: {e}")
                self.logger.warning(f"prune(): failed to delete {key}, error: {e}")

        return summary

    @staticmethod
    def select_for_deletion(snapshots: List[str], max_to_keep: int) -> List[str]:
        """
        Oldest snapshots beyond the retention window.

        Args:
            snapshots: Snapshot keys
            max_to_keep: Number of snapshots to keep

        Returns:
            Keys to delete, oldest first
        """
        ordered = sorted(snapshots)
        excess = len(ordered) - max_to_keep
        if excess <= 0:
            return []
        return ordered[:excess]
