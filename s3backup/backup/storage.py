"""
Object store gateway for backups.

Supports:
- ObjectStore: the operations the backup pipeline consumes
- S3Storage: AWS S3 implementation on top of boto3
"""

import mimetypes
import os
from typing import List, Optional, Protocol

import boto3
from botocore.exceptions import ClientError, BotoCoreError

from s3backup.models import BUCKET_DELIM, RemoteListing


DEFAULT_CONTENT_TYPE = 'binary/octet-stream'

# S3 never returns more than this many keys per page
MAX_PAGE_SIZE = 1000


class StorageError(Exception):
    """Raised when storage operation fails."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class ObjectStore(Protocol):
    """Operations the backup pipeline needs from a remote object store."""

    def list_page(self, prefix: str, delimiter: str = '', marker: str = '',
                  max_keys: int = MAX_PAGE_SIZE) -> RemoteListing:
        ...

    def put(self, local_path: str, remote_key: str, public: bool = False) -> None:
        ...

    def delete(self, remote_key: str) -> None:
        ...


def sanitize_dir_for_list(dir: str, delim: str = BUCKET_DELIM) -> str:
    """
    Turn a remote directory into a listing prefix.

    Removes a leading "/" and adds the delimiter if missing.
    """
    if dir.startswith('/'):
        dir = dir[1:]
    if not dir.endswith(delim):
        dir = dir + delim
    return dir


def list_all(storage: ObjectStore, prefix: str, delimiter: str = '',
             page_size: int = MAX_PAGE_SIZE) -> List[str]:
    """
    List every key under prefix, following markers until the listing
    is no longer truncated.

    Raises:
        StorageError: If any page fails
    """
    keys = []
    marker = ''
    while True:
        page = storage.list_page(prefix, delimiter=delimiter, marker=marker, max_keys=page_size)
        keys.extend(page.keys)
        if not page.is_truncated:
            break
        next_marker = page.next_marker or (page.keys[-1] if page.keys else '')
        if not next_marker or next_marker == marker:
            raise StorageError(f"Listing of '{prefix}' is truncated but has no usable marker")
        marker = next_marker
    return keys


def list_bounded(storage: ObjectStore, prefix: str, max_keys: int,
                 delimiter: str = BUCKET_DELIM, strict: bool = False) -> List[str]:
    """
    List recent keys under prefix.

    By default this is a single page of at most max_keys entries, which is
    enough to see the latest snapshots. With strict=True the listing is
    paginated to completion instead.

    Raises:
        StorageError: If listing fails
    """
    if strict:
        return list_all(storage, prefix, delimiter=delimiter, page_size=min(max_keys, MAX_PAGE_SIZE))
    return storage.list_page(prefix, delimiter=delimiter, max_keys=max_keys).keys


class S3Storage:
    """
    Handler for reading and writing backup objects in AWS S3.

    Object keys never start with "/"; a leading delimiter passed by the
    caller is dropped.
    """

    def __init__(self, access_key: str, secret_key: str, bucket_name: str, region: str = 'us-east-1'):
        """
        Initialize S3 storage handler.

        Args:
            access_key: AWS access key ID
            secret_key: AWS secret access key
            bucket_name: S3 bucket name
            region: AWS region (default: us-east-1)
        """
        self.bucket_name = bucket_name
        self.region = region
        self._bucket_ready = False

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def list_page(self, prefix: str, delimiter: str = '', marker: str = '',
                  max_keys: int = MAX_PAGE_SIZE) -> RemoteListing:
        """
        List one page of objects under prefix.

        Args:
            prefix: S3 key prefix to filter by
            delimiter: Group keys by this delimiter; empty for a flat listing
            marker: Key to start listing after
            max_keys: Maximum number of keys to return

        Returns:
            RemoteListing with the page's keys, truncation flag and next marker

        Raises:
            StorageError: If listing fails
        """
        params = {
            'Bucket': self.bucket_name,
            'Prefix': prefix,
            'MaxKeys': max_keys,
        }
        if delimiter:
            params['Delimiter'] = delimiter
        if marker:
            params['Marker'] = marker

        try:
            response = self.s3_client.list_objects(**params)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}", code=error_code)
        except BotoCoreError as e:
            raise StorageError(f"S3 list failed: {e}")

        keys = [obj['Key'] for obj in response.get('Contents', [])]
        is_truncated = bool(response.get('IsTruncated', False))

        # NextMarker is only returned when a delimiter is used
        next_marker = response.get('NextMarker', '')
        if is_truncated and not next_marker and keys:
            next_marker = keys[-1]

        return RemoteListing(keys=keys, is_truncated=is_truncated, next_marker=next_marker)

    def put(self, local_path: str, remote_key: str, public: bool = False):
        """
        Upload a local file.

        Args:
            local_path: Path to local file
            remote_key: Destination S3 key
            public: Make the object publicly readable

        Raises:
            StorageError: If upload fails
        """
        if not os.path.isfile(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        remote_key = remote_key.lstrip('/')
        content_type = mimetypes.guess_type(local_path)[0] or DEFAULT_CONTENT_TYPE
        acl = 'public-read' if public else 'private'

        try:
            self._ensure_bucket()
            with open(local_path, 'rb') as f:
                self.s3_client.put_object(
                    Bucket=self.bucket_name,
                    Key=remote_key,
                    Body=f,
                    ContentType=content_type,
                    ACL=acl
                )
        except StorageError:
            raise
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 upload failed ({error_code}): {e}", code=error_code)
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")
        except OSError as e:
            raise StorageError(f"Failed to read {local_path}: {e}")

    def delete(self, remote_key: str):
        """
        Delete an object from S3.

        Deleting a key that no longer exists is not an error.

        Args:
            remote_key: S3 object key to delete

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=remote_key.lstrip('/')
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in ('NoSuchKey', '404'):
                return
            raise StorageError(f"S3 delete failed ({error_code}): {e}", code=error_code)
        except BotoCoreError as e:
            raise StorageError(f"S3 delete failed: {e}")

    def _ensure_bucket(self):
        """
        Make sure the bucket exists before the first write.

        Raises:
            StorageError: If the bucket cannot be checked or created
        """
        if self._bucket_ready:
            return

        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code not in ('404', 'NoSuchBucket'):
                raise StorageError(f"S3 bucket check failed ({error_code}): {e}", code=error_code)
            self._create_bucket()

        self._bucket_ready = True

    def _create_bucket(self):
        params = {'Bucket': self.bucket_name}
        if self.region != 'us-east-1':
            params['CreateBucketConfiguration'] = {'LocationConstraint': self.region}
        try:
            self.s3_client.create_bucket(**params)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in ('BucketAlreadyOwnedByYou',):
                return
            raise StorageError(f"S3 bucket creation failed ({error_code}): {e}", code=error_code)
