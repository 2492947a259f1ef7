import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo


BUCKET_DELIM = '/'
BACKOFF_STRATEGIES = ('fixed', 'exponential')


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times an upload is attempted and how long to wait in between.

    The default is a single retry after a fixed 100ms pause.
    """

    max_attempts: int = 2
    delay: float = 0.1
    backoff: str = 'fixed'
    multiplier: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.delay < 0:
            raise ValueError(f"delay must not be negative, got {self.delay}")
        if self.backoff not in BACKOFF_STRATEGIES:
            raise ValueError(
                f"Invalid backoff strategy: {self.backoff}. "
                f"Valid options: {list(BACKOFF_STRATEGIES)}"
            )

    def delays(self) -> List[float]:
        """Pause before each retry (one entry per attempt after the first)."""
        if self.backoff == 'exponential':
            return [self.delay * (self.multiplier ** i) for i in range(self.max_attempts - 1)]
        return [self.delay] * (self.max_attempts - 1)


@dataclass(frozen=True)
class BackupConfig:
    """Backup target configuration"""

    access_key: str
    secret_key: str = field(repr=False)
    bucket_name: str = ''
    s3_dir: str = ''
    local_dir: str = ''
    region: str = 'us-east-1'
    # twice a day for ~32 days
    max_backups_to_keep: int = 64
    list_max_keys: int = 1024
    strict_listing: bool = False
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    backup_interval: timedelta = timedelta(hours=12)
    temp_dir: str = field(default_factory=tempfile.gettempdir)

    @property
    def blobs_dir(self) -> str:
        return os.path.join(self.local_dir, 'blobs')

    @property
    def blobs_crashes_dir(self) -> str:
        return os.path.join(self.local_dir, 'blobs_crashes')

    @property
    def data_dir(self) -> str:
        return os.path.join(self.local_dir, 'data')

    @property
    def blobs_s3_dir(self) -> str:
        return join_key(self.s3_dir, 'blobs')

    @property
    def blobs_crashes_s3_dir(self) -> str:
        return join_key(self.s3_dir, 'blobs_crashes')

    def blob_dirs(self) -> List[Tuple[str, str]]:
        """(local, remote) pairs mirrored every cycle, in order."""
        return [
            (self.blobs_dir, self.blobs_s3_dir),
            (self.blobs_crashes_dir, self.blobs_crashes_s3_dir),
        ]


@dataclass
class BackupContext:
    """
    Runtime collaborators handed to every component.

    Holds the logging sink, the AWS region and the time zone used to stamp
    snapshot names.
    """

    logger: logging.Logger = field(default_factory=lambda: logging.getLogger('s3backup'))
    region: str = 'us-east-1'
    timezone: str = 'UTC'

    def now(self) -> datetime:
        return datetime.now(ZoneInfo(self.timezone))


@dataclass
class RemoteListing:
    """One page of an object listing"""

    keys: List[str] = field(default_factory=list)
    is_truncated: bool = False
    next_marker: str = ''


@dataclass(frozen=True)
class SnapshotRecord:
    """Parsed form of a snapshot key"""

    timestamp: str
    digest: str
    key: str


@dataclass
class SyncResult:
    skipped: int = 0
    copied: int = 0


@dataclass
class ValidationResult:
    """Outcome of the startup checks"""

    ok: bool
    config: Optional[BackupConfig] = None
    error: Optional[str] = None  # local_dir_missing, remote_unreachable
    message: str = ''

    @classmethod
    def success(cls, config: BackupConfig) -> 'ValidationResult':
        return cls(ok=True, config=config)

    @classmethod
    def failure(cls, error: str, message: str) -> 'ValidationResult':
        return cls(ok=False, error=error, message=message)


@dataclass
class CycleResult:
    """Outcome of one backup cycle"""

    status: str = 'running'  # running, success, unchanged, failed
    sync_results: dict = field(default_factory=dict)
    snapshot_key: Optional[str] = None
    deleted: int = 0
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration(self) -> float:
        if self.started_at is None or self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()


def join_key(*parts: str) -> str:
    """Join key segments with the bucket delimiter, like a posix path join."""
    cleaned = [p for p in parts if p]
    if not cleaned:
        return ''
    key = cleaned[0].rstrip(BUCKET_DELIM)
    for part in cleaned[1:]:
        key = f"{key}{BUCKET_DELIM}{part.strip(BUCKET_DELIM)}" if key else part.strip(BUCKET_DELIM)
    return key
