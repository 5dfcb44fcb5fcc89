"""
Primary object store (S3-compatible R2 bucket).

Holds the dated backup artifacts:
- backups/db/{YYYY-MM-DD}.sql.gz
- backups/kv/whitelist-{YYYY-MM-DD}.json
- backups/files/{YYYY-MM-DD}/...
and is also the source of the live objects that get mirrored.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, List, Iterable

import boto3
from botocore.exceptions import ClientError, BotoCoreError


logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


@dataclass(frozen=True)
class StoredObject:
    key: str
    size: int
    last_modified: datetime
    etag: str


def _error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', 'Unknown')


class ObjectStore:
    """
    Handler for the S3-compatible primary bucket.
    """

    def __init__(self, bucket_name: str, access_key: str, secret_key: str,
                 endpoint_url: Optional[str] = None, region: str = 'auto'):
        """
        Initialize object store handler.

        Args:
            bucket_name: Bucket name
            access_key: Access key ID
            secret_key: Secret access key
            endpoint_url: S3 endpoint (R2 account endpoint); None for AWS default
            region: Region name (R2 uses 'auto')
        """
        self.bucket_name = bucket_name

        try:
            self.s3_client = boto3.client(
                's3',
                endpoint_url=endpoint_url or None,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize object store client: {e}")

    def put_bytes(self, key: str, data: bytes, content_type: str = 'application/octet-stream',
                  metadata: Optional[Dict[str, str]] = None):
        """
        Write an object, replacing any existing object under the key.

        Raises:
            StorageError: If the write fails
        """
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=metadata or {}
            )
        except ClientError as e:
            raise StorageError(f"Write of {key} failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Write of {key} failed: {e}")

    def get_bytes(self, key: str) -> Optional[bytes]:
        """
        Read a whole object.

        Returns:
            Object content, or None if the key does not exist

        Raises:
            StorageError: If the read fails for another reason
        """
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            return response['Body'].read()
        except ClientError as e:
            if _error_code(e) in ('NoSuchKey', '404'):
                return None
            raise StorageError(f"Read of {key} failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Read of {key} failed: {e}")

    def open_stream(self, key: str):
        """
        Open an object for streaming reads.

        Returns:
            Tuple of (file-like body, content length)

        Raises:
            StorageError: If the object cannot be opened
        """
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            return response['Body'], response['ContentLength']
        except ClientError as e:
            raise StorageError(f"Read of {key} failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Read of {key} failed: {e}")

    def copy(self, source_key: str, dest_key: str):
        """
        Server-side copy within the bucket (content never passes through us).

        Raises:
            StorageError: If the copy fails
        """
        try:
            self.s3_client.copy_object(
                Bucket=self.bucket_name,
                Key=dest_key,
                CopySource={'Bucket': self.bucket_name, 'Key': source_key}
            )
        except ClientError as e:
            raise StorageError(f"Copy {source_key} -> {dest_key} failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Copy {source_key} -> {dest_key} failed: {e}")

    def delete(self, key: str):
        """
        Delete an object.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            raise StorageError(f"Delete of {key} failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Delete of {key} failed: {e}")

    def delete_many(self, keys: Iterable[str]) -> int:
        """
        Delete objects in batches.

        Returns:
            Number of keys deleted

        Raises:
            StorageError: If any batch reports errors
        """
        keys = list(keys)
        deleted = 0

        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start:start + DELETE_BATCH_SIZE]
            try:
                response = self.s3_client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={'Objects': [{'Key': key} for key in batch], 'Quiet': True}
                )
            except ClientError as e:
                raise StorageError(f"Batch delete failed ({_error_code(e)}): {e}")
            except BotoCoreError as e:
                raise StorageError(f"Batch delete failed: {e}")

            errors = response.get('Errors') or []
            if errors:
                raise StorageError(f"Batch delete failed for {len(errors)} keys: {errors[0].get('Message')}")
            deleted += len(batch)

        return deleted

    def list_objects(self, prefix: str = '') -> List[StoredObject]:
        """
        List objects with given prefix.

        Args:
            prefix: Key prefix to filter by

        Returns:
            List of StoredObject

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    objects.append(StoredObject(
                        key=obj['Key'],
                        size=obj['Size'],
                        last_modified=obj['LastModified'],
                        etag=obj.get('ETag', '').strip('"')
                    ))

            return objects

        except ClientError as e:
            raise StorageError(f"List of {prefix!r} failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"List of {prefix!r} failed: {e}")

    def list_prefixes(self, prefix: str, delimiter: str = '/') -> List[str]:
        """
        List the immediate "directories" under a prefix.

        Returns:
            Common prefixes, each ending with the delimiter

        Raises:
            StorageError: If listing fails
        """
        try:
            prefixes = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix, Delimiter=delimiter):
                for common in page.get('CommonPrefixes', []):
                    prefixes.append(common['Prefix'])

            return prefixes

        except ClientError as e:
            raise StorageError(f"List of {prefix!r} failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"List of {prefix!r} failed: {e}")
