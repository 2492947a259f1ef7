"""
APScheduler driven backup loop for s3backup.

Manages:
- Startup validation of the configuration (local dir, S3 credentials)
- Backup cycles on a fixed interval, first one right away
- Cancellable shutdown
"""

import dataclasses
import os
import signal
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.date import DateTrigger

from s3backup.backup.executor import BackupExecutor
from s3backup.backup.storage import ObjectStore, S3Storage, StorageError, sanitize_dir_for_list
from s3backup.models import BUCKET_DELIM, BackupConfig, BackupContext, CycleResult, ValidationResult


BACKUP_JOB_ID = 'backup_cycle'
SMOKE_TEST_MAX_KEYS = 10


def validate_config(config: BackupConfig, storage: ObjectStore, context: BackupContext) -> ValidationResult:
    """
    Check that a backup can run at all.

    - the directory to back up exists
    - s3_dir ends with the bucket delimiter (normalized, not an error)
    - one small listing succeeds, which proves credentials and bucket

    Args:
        config: Configuration as loaded
        storage: Object store to test
        context: Runtime context

    Returns:
        ValidationResult holding the normalized configuration on success,
        or the name of the failed check
    """
    logger = context.logger

    if not os.path.isdir(config.local_dir):
        message = f"Invalid s3 backup: directory to backup '{config.local_dir}' doesn't exist"
        logger.error(message)
        return ValidationResult.failure('local_dir_missing', message)

    s3_dir = config.s3_dir
    if not s3_dir.endswith(BUCKET_DELIM):
        s3_dir += BUCKET_DELIM
    config = dataclasses.replace(config, s3_dir=s3_dir)

    if len(sanitize_dir_for_list(s3_dir).rstrip(BUCKET_DELIM).split(BUCKET_DELIM)) != 1:
        logger.warning(
            f"s3_dir '{s3_dir}' is nested; snapshots are only recognized for pruning "
            f"directly under a top-level directory"
        )

    try:
        storage.list_page(sanitize_dir_for_list(s3_dir), delimiter=BUCKET_DELIM, max_keys=SMOKE_TEST_MAX_KEYS)
    except StorageError as e:
        message = f"Invalid s3 backup: bucket list failed {e}"
        logger.error(message)
        return ValidationResult.failure('remote_unreachable', message)

    logger.info(
        f"Snapshot names use time zone '{context.timezone}' "
        f"(set S3BACKUP_TIMEZONE to change), e.g. {context.now().strftime('%y%m%d_%H%M')}"
    )
    return ValidationResult.success(config)


class BackupScheduler:
    """
    Runs backup cycles on a fixed interval until stopped.

    The interval is measured between cycle starts. Only one cycle runs at a
    time: after each cycle the next one is scheduled one interval after the
    previous start, or immediately if the cycle overran the interval.
    """

    def __init__(self, config: BackupConfig, context: BackupContext,
                 storage: Optional[ObjectStore] = None, blocking: bool = True):
        """
        Initialize backup scheduler.

        Args:
            config: Configuration as loaded (validated by validate())
            context: Runtime context
            storage: Object store (default: S3Storage built from config)
            blocking: Run in the calling thread (True) or in a background thread
        """
        self.config = config
        self.context = context
        self.logger = context.logger
        self.storage = storage or S3Storage(
            access_key=config.access_key,
            secret_key=config.secret_key,
            bucket_name=config.bucket_name,
            region=context.region or config.region
        )
        self.blocking = blocking
        self.validated = False
        self.scheduler = None
        self._cycle_count = 0

    def validate(self) -> ValidationResult:
        """Validate the configuration and keep the normalized version."""
        result = validate_config(self.config, self.storage, self.context)
        if result.ok:
            self.config = result.config
            self.validated = True
        return result

    def run_cycle(self) -> CycleResult:
        """Run a single backup cycle."""
        executor = BackupExecutor(self.config, self.storage, self.context)
        return executor.execute()

    def start(self):
        """
        Start the backup loop.

        The first cycle runs immediately. With blocking=True this only
        returns after stop() is called.

        Raises:
            RuntimeError: If the configuration wasn't validated successfully
        """
        if not self.validated:
            raise RuntimeError("Configuration not validated. Call validate() first.")

        if self.scheduler is not None and self.scheduler.running:
            self.logger.info("Scheduler already running")
            return

        scheduler_cls = BlockingScheduler if self.blocking else BackgroundScheduler
        self.scheduler = scheduler_cls(
            job_defaults={
                'coalesce': True,  # Combine multiple pending runs into one
                'max_instances': 1,  # Only one cycle at a time
                'misfire_grace_time': None  # A late cycle still runs
            },
            timezone=self.context.timezone
        )

        self._schedule_cycle(datetime.now(timezone.utc))

        self.logger.info(
            f"Starting backup loop every {self.config.backup_interval} for '{self.config.local_dir}'"
        )
        self.scheduler.start()

    def stop(self):
        """Stop the backup loop. A cycle in progress is not interrupted."""
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.logger.info("Backup loop stopped")

    @property
    def running(self) -> bool:
        return self.scheduler is not None and self.scheduler.running

    def next_run_time(self, started_at: datetime, finished_at: datetime) -> datetime:
        """
        When the cycle after one that ran from started_at to finished_at starts.

        One interval after the previous start, or right away if that cycle
        took longer than the interval.
        """
        return max(finished_at, started_at + self.config.backup_interval)

    def _run_scheduled(self) -> CycleResult:
        """Run a cycle, then schedule the next one."""
        started_at = datetime.now(timezone.utc)
        try:
            return self.run_cycle()
        finally:
            if self.running:
                self._schedule_cycle(self.next_run_time(started_at, datetime.now(timezone.utc)))

    def _schedule_cycle(self, run_date: datetime):
        # One-shot job per cycle; ids must differ from the finished job,
        # which the scheduler may still be removing
        self._cycle_count += 1
        self.scheduler.add_job(
            func=self._run_scheduled,
            trigger=DateTrigger(run_date=run_date, timezone=self.context.timezone),
            id=f"{BACKUP_JOB_ID}_{self._cycle_count}",
            name='Backup cycle',
            replace_existing=False
        )
        self.logger.debug(f"Next backup cycle at {run_date.isoformat()}")


def main(config_name: Optional[str] = None) -> int:
    """
    Load configuration, validate it and run the backup loop forever.

    Returns:
        Process exit code: 0 after a clean stop, 1 on invalid configuration
    """
    from s3backup import create_context
    from s3backup.config import ConfigError, config, load_backup_config

    if config_name is None:
        config_name = os.environ.get('S3BACKUP_ENV', 'production')
    config_cls = config[config_name]

    context = create_context(config_cls)
    logger = context.logger

    try:
        backup_config = load_backup_config(config_cls)
        backup_scheduler = BackupScheduler(backup_config, context)
    except (ConfigError, StorageError) as e:
        logger.error(f"Invalid s3 backup configuration: {e}")
        return 1

    result = backup_scheduler.validate()
    if not result.ok:
        return 1

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        backup_scheduler.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    backup_scheduler.start()
    return 0
