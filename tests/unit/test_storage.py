"""
Unit tests for the object store gateway (s3backup/backup/storage.py).

Tests S3Storage against moto and the listing helpers.
"""

from unittest.mock import MagicMock

import pytest
import boto3
from botocore.exceptions import ClientError
from moto import mock_aws

from s3backup.backup.storage import (
    S3Storage,
    StorageError,
    list_all,
    list_bounded,
    sanitize_dir_for_list
)
from s3backup.models import RemoteListing


class TestSanitizeDirForList:
    """Test listing prefix normalization."""

    @pytest.mark.parametrize("dir,expected", [
        ("apptranslator", "apptranslator/"),
        ("apptranslator/", "apptranslator/"),
        ("/apptranslator", "apptranslator/"),
        ("/apptranslator/blobs", "apptranslator/blobs/"),
    ])
    def test_sanitize_dir_for_list(self, dir, expected):
        """Test leading slash is removed and trailing delimiter added."""
        assert sanitize_dir_for_list(dir) == expected


class TestS3StorageListing:
    """Test S3Storage listing operations."""

    def test_list_page_flat(self, mock_s3, s3_storage):
        """Test a flat listing returns nested keys."""
        bucket = mock_s3.Bucket('test-bucket')
        bucket.put_object(Key='apptranslator/blobs/a.txt', Body=b'a')
        bucket.put_object(Key='apptranslator/blobs/sub/b.txt', Body=b'b')
        bucket.put_object(Key='other/c.txt', Body=b'c')

        page = s3_storage.list_page('apptranslator/blobs/')

        assert page.keys == ['apptranslator/blobs/a.txt', 'apptranslator/blobs/sub/b.txt']
        assert page.is_truncated is False

    def test_list_page_with_delimiter_skips_nested(self, mock_s3, s3_storage):
        """Test a delimited listing only returns direct children."""
        bucket = mock_s3.Bucket('test-bucket')
        bucket.put_object(Key='apptranslator/121011_1121_' + 'a' * 40 + '.zip', Body=b'zip')
        bucket.put_object(Key='apptranslator/blobs/a.txt', Body=b'a')

        page = s3_storage.list_page('apptranslator/', delimiter='/')

        assert page.keys == ['apptranslator/121011_1121_' + 'a' * 40 + '.zip']

    def test_list_page_truncated_has_marker(self, mock_s3, s3_storage):
        """Test truncated page reports a marker to continue from."""
        bucket = mock_s3.Bucket('test-bucket')
        for i in range(5):
            bucket.put_object(Key=f'dir/file{i}.txt', Body=b'x')

        page = s3_storage.list_page('dir/', max_keys=2)

        assert len(page.keys) == 2
        assert page.is_truncated is True
        assert page.next_marker == 'dir/file1.txt'

    def test_list_all_paginates_to_completion(self, mock_s3, s3_storage):
        """Test list_all follows markers until the listing is complete."""
        bucket = mock_s3.Bucket('test-bucket')
        for i in range(7):
            bucket.put_object(Key=f'dir/file{i}.txt', Body=b'x')

        keys = list_all(s3_storage, 'dir/', page_size=3)

        assert keys == [f'dir/file{i}.txt' for i in range(7)]

    def test_list_page_error_raises_storage_error(self, mock_s3):
        """Test listing a missing bucket raises StorageError."""
        storage = S3Storage(
            access_key='test_key',
            secret_key='test_secret',
            bucket_name='missing-bucket'
        )

        with pytest.raises(StorageError) as exc_info:
            storage.list_page('dir/')

        assert exc_info.value.code == 'NoSuchBucket'


class TestListHelpers:
    """Test list_all and list_bounded with stub stores."""

    def test_list_bounded_reads_single_page(self):
        """Test bounded listing only asks for one page."""
        storage = MagicMock()
        storage.list_page.return_value = RemoteListing(keys=['a', 'b'], is_truncated=True)

        keys = list_bounded(storage, 'dir/', 2)

        assert keys == ['a', 'b']
        storage.list_page.assert_called_once_with('dir/', delimiter='/', max_keys=2)

    def test_list_bounded_strict_paginates(self):
        """Test strict mode reads every page."""
        storage = MagicMock()
        storage.list_page.side_effect = [
            RemoteListing(keys=['a', 'b'], is_truncated=True, next_marker='b'),
            RemoteListing(keys=['c'], is_truncated=False),
        ]

        keys = list_bounded(storage, 'dir/', 2, strict=True)

        assert keys == ['a', 'b', 'c']
        assert storage.list_page.call_args_list[1].kwargs['marker'] == 'b'

    def test_list_all_falls_back_to_last_key_as_marker(self):
        """Test a truncated page without NextMarker continues after its last key."""
        storage = MagicMock()
        storage.list_page.side_effect = [
            RemoteListing(keys=['a', 'b'], is_truncated=True),
            RemoteListing(keys=['c'], is_truncated=False),
        ]

        assert list_all(storage, 'dir/') == ['a', 'b', 'c']
        assert storage.list_page.call_args_list[1].kwargs['marker'] == 'b'

    def test_list_all_truncated_without_keys_raises(self):
        """Test an empty truncated page doesn't loop forever."""
        storage = MagicMock()
        storage.list_page.return_value = RemoteListing(keys=[], is_truncated=True)

        with pytest.raises(StorageError):
            list_all(storage, 'dir/')


class TestS3StoragePut:
    """Test S3Storage uploads."""

    def test_put_uploads_with_content_type(self, mock_s3, s3_storage, tmp_path):
        """Test content type is derived from the extension."""
        test_file = tmp_path / 'notes.txt'
        test_file.write_text('hello')

        s3_storage.put(str(test_file), 'apptranslator/blobs/notes.txt', public=True)

        obj = mock_s3.Object('test-bucket', 'apptranslator/blobs/notes.txt')
        assert obj.get()['Body'].read() == b'hello'
        assert obj.content_type == 'text/plain'

    def test_put_unknown_extension_uses_binary_type(self, mock_s3, s3_storage, tmp_path):
        """Test fallback content type for unknown extensions."""
        test_file = tmp_path / 'blob.unknownext'
        test_file.write_bytes(b'\x00\x01')

        s3_storage.put(str(test_file), 'dir/blob.unknownext')

        obj = mock_s3.Object('test-bucket', 'dir/blob.unknownext')
        assert obj.content_type == 'binary/octet-stream'

    def test_put_public_sets_public_read_acl(self, mock_s3, s3_storage, tmp_path):
        """Test public uploads grant read to everyone."""
        test_file = tmp_path / 'snap.zip'
        test_file.write_bytes(b'zip')

        s3_storage.put(str(test_file), 'dir/snap.zip', public=True)

        client = boto3.client('s3', region_name='us-east-1')
        acl = client.get_object_acl(Bucket='test-bucket', Key='dir/snap.zip')
        uris = [grant['Grantee'].get('URI', '') for grant in acl['Grants']]
        assert any(uri.endswith('/global/AllUsers') for uri in uris)

    def test_put_strips_leading_delimiter(self, mock_s3, s3_storage, tmp_path):
        """Test a leading "/" doesn't end up in the object key."""
        test_file = tmp_path / 'a.txt'
        test_file.write_text('a')

        s3_storage.put(str(test_file), '/apptranslator/blobs/a.txt')

        assert s3_storage.list_page('apptranslator/').keys == ['apptranslator/blobs/a.txt']

    def test_put_nonexistent_file_raises(self, mock_s3, s3_storage):
        """Test uploading nonexistent file raises error."""
        with pytest.raises(StorageError):
            s3_storage.put('/nonexistent/file.zip', 'dir/file.zip')

    @mock_aws
    def test_put_creates_missing_bucket(self, tmp_path):
        """Test the bucket is created before the first write."""
        test_file = tmp_path / 'a.txt'
        test_file.write_text('a')

        storage = S3Storage(
            access_key='test_key',
            secret_key='test_secret',
            bucket_name='fresh-bucket'
        )
        storage.put(str(test_file), 'dir/a.txt')

        client = boto3.client('s3', region_name='us-east-1')
        names = [b['Name'] for b in client.list_buckets()['Buckets']]
        assert 'fresh-bucket' in names

    def test_bucket_checked_once(self, tmp_path):
        """Test the bucket check only happens before the first write."""
        test_file = tmp_path / 'a.txt'
        test_file.write_text('a')

        storage = S3Storage('key', 'secret', 'test-bucket')
        storage.s3_client = MagicMock()

        storage.put(str(test_file), 'dir/a.txt')
        storage.put(str(test_file), 'dir/b.txt')

        storage.s3_client.head_bucket.assert_called_once_with(Bucket='test-bucket')
        assert storage.s3_client.put_object.call_count == 2

    def test_put_client_error_raises_storage_error(self, tmp_path):
        """Test S3 errors are wrapped."""
        test_file = tmp_path / 'a.txt'
        test_file.write_text('a')

        storage = S3Storage('key', 'secret', 'test-bucket')
        storage.s3_client = MagicMock()
        storage.s3_client.put_object.side_effect = ClientError(
            {'Error': {'Code': 'SlowDown', 'Message': 'Reduce your request rate'}}, 'PutObject'
        )

        with pytest.raises(StorageError) as exc_info:
            storage.put(str(test_file), 'dir/a.txt')

        assert exc_info.value.code == 'SlowDown'


class TestS3StorageDelete:
    """Test S3Storage deletions."""

    def test_delete(self, mock_s3, s3_storage):
        """Test deleting an object."""
        mock_s3.Bucket('test-bucket').put_object(Key='dir/a.txt', Body=b'a')

        s3_storage.delete('dir/a.txt')

        assert s3_storage.list_page('dir/').keys == []

    def test_delete_missing_key_is_not_an_error(self, mock_s3, s3_storage):
        """Test deleting an already deleted key succeeds."""
        s3_storage.delete('dir/never-existed.txt')

    def test_delete_no_such_key_error_ignored(self):
        """Test NoSuchKey from the store is treated as success."""
        storage = S3Storage('key', 'secret', 'test-bucket')
        storage.s3_client = MagicMock()
        storage.s3_client.delete_object.side_effect = ClientError(
            {'Error': {'Code': 'NoSuchKey', 'Message': 'gone'}}, 'DeleteObject'
        )

        storage.delete('dir/a.txt')

    def test_delete_access_denied_raises(self):
        """Test other delete errors are raised."""
        storage = S3Storage('key', 'secret', 'test-bucket')
        storage.s3_client = MagicMock()
        storage.s3_client.delete_object.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied', 'Message': 'nope'}}, 'DeleteObject'
        )

        with pytest.raises(StorageError, match='AccessDenied'):
            storage.delete('dir/a.txt')
