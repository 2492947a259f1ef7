"""
Retrying upload.

Sequential bulk uploads to S3 fail now and then; a single retry after a
short pause clears almost all of those failures.
"""

import logging
import time
from typing import Callable, Optional

from s3backup.models import RetryPolicy
from .storage import ObjectStore, StorageError


def put_with_retry(
    storage: ObjectStore,
    local_path: str,
    remote_key: str,
    public: bool = False,
    policy: Optional[RetryPolicy] = None,
    logger: Optional[logging.Logger] = None,
    sleep: Callable[[float], None] = time.sleep
):
    """
    Upload a file, retrying on failure according to policy.

    Args:
        storage: Object store to upload to
        local_path: Path to local file
        remote_key: Destination key
        public: Make the object publicly readable
        policy: Retry policy (default: one retry after 100ms)
        logger: Where failed attempts are reported
        sleep: Sleep function, replaceable in tests

    Raises:
        StorageError: The last attempt's error if every attempt failed
    """
    policy = policy or RetryPolicy()
    logger = logger or logging.getLogger(__name__)
    delays = policy.delays()

    for attempt in range(1, policy.max_attempts + 1):
        try:
            storage.put(local_path, remote_key, public)
            return
        except StorageError as e:
            if attempt == policy.max_attempts:
                raise
            logger.warning(
                f"put of '{local_path}' to '{remote_key}' failed "
                f"(attempt {attempt}/{policy.max_attempts}): {e}"
            )
            sleep(delays[attempt - 1])
