"""
Shared pytest fixtures for s3backup tests.

This module provides fixtures for:
- A local application root with blobs, blobs_crashes and data directories
- Backup configuration and runtime context
- An in-memory object store with failure injection
- Mock AWS S3 via moto
"""

import logging
from typing import Dict, List, Optional

import pytest
import boto3
from moto import mock_aws

from s3backup.backup.storage import S3Storage, StorageError
from s3backup.models import BackupConfig, BackupContext, RemoteListing, RetryPolicy


class FakeObjectStore:
    """
    In-memory object store.

    Keys are kept sorted like S3 listings. Failures can be injected per
    operation: `fail_puts` is a number of upcoming put calls to fail,
    `fail_list` / `fail_delete_keys` make listing / specific deletions fail.
    """

    def __init__(self, keys: Optional[List[str]] = None):
        self.objects: Dict[str, bytes] = {key: b'' for key in (keys or [])}
        self.puts: List[tuple] = []
        self.deleted: List[str] = []
        self.list_calls: List[dict] = []
        self.fail_puts = 0
        self.fail_list = False
        self.fail_delete_keys = set()

    def list_page(self, prefix, delimiter='', marker='', max_keys=1000):
        self.list_calls.append({
            'prefix': prefix, 'delimiter': delimiter, 'marker': marker, 'max_keys': max_keys
        })
        if self.fail_list:
            raise StorageError("list failed")

        keys = []
        for key in sorted(self.objects):
            if not key.startswith(prefix) or key <= marker:
                continue
            if delimiter and delimiter in key[len(prefix):]:
                continue
            keys.append(key)

        page = keys[:max_keys]
        truncated = len(keys) > max_keys
        return RemoteListing(keys=page, is_truncated=truncated, next_marker='')

    def put(self, local_path, remote_key, public=False):
        if self.fail_puts > 0:
            self.fail_puts -= 1
            raise StorageError(f"put of {remote_key} failed")
        with open(local_path, 'rb') as f:
            self.objects[remote_key.lstrip('/')] = f.read()
        self.puts.append((local_path, remote_key, public))

    def delete(self, remote_key):
        if remote_key in self.fail_delete_keys:
            raise StorageError(f"delete of {remote_key} failed")
        self.objects.pop(remote_key, None)
        self.deleted.append(remote_key)


@pytest.fixture
def fake_store():
    """Empty in-memory object store."""
    return FakeObjectStore()


@pytest.fixture
def context():
    """Runtime context with a test logger."""
    return BackupContext(logger=logging.getLogger('s3backup.tests'), region='us-east-1', timezone='UTC')


@pytest.fixture
def local_root(tmp_path):
    """
    Create an application root directory.

    Creates:
    - blobs/a.txt
    - blobs/sub/b.txt
    - blobs_crashes/crash1.txt
    - data/app.db
    - data/nested/settings.json
    """
    root = tmp_path / 'app_root'
    blobs = root / 'blobs'
    (blobs / 'sub').mkdir(parents=True)
    (blobs / 'a.txt').write_text('blob a')
    (blobs / 'sub' / 'b.txt').write_text('blob b')

    crashes = root / 'blobs_crashes'
    crashes.mkdir()
    (crashes / 'crash1.txt').write_text('crash report')

    data = root / 'data'
    (data / 'nested').mkdir(parents=True)
    (data / 'app.db').write_bytes(b'database contents')
    (data / 'nested' / 'settings.json').write_text('{"a": 1}')

    return root


@pytest.fixture
def backup_config(local_root, tmp_path):
    """Validated-looking backup configuration pointing at local_root."""
    temp_dir = tmp_path / 'temp'
    temp_dir.mkdir()
    return BackupConfig(
        access_key='test_access_key',
        secret_key='test_secret_key',
        bucket_name='test-bucket',
        s3_dir='apptranslator/',
        local_dir=str(local_root),
        max_backups_to_keep=64,
        retry_policy=RetryPolicy(delay=0),
        temp_dir=str(temp_dir)
    )


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def s3_storage(mock_s3):
    """S3Storage bound to the moto bucket."""
    return S3Storage(
        access_key='test_access_key',
        secret_key='test_secret_key',
        bucket_name='test-bucket',
        region='us-east-1'
    )


@pytest.fixture
def make_snapshot_key():
    """Build a snapshot key whose 40 character digest is made of `digit`."""
    def _make(stamp: str, digit: str = 'a', prefix: str = 'apptranslator') -> str:
        return f"{prefix}/{stamp}_{digit * 40}.zip"
    return _make
