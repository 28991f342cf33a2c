"""
S3-compatible storage provider.

One boto3 implementation serves Cloudflare R2, Backblaze B2 (through its S3
API), AWS S3 and any other S3-compatible service; only the endpoint differs.
"""

import logging
from typing import Optional, Dict, Any, List, Tuple
from urllib.parse import urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from shared.constants import DEFAULT_CONNECT_TIMEOUT, DEFAULT_LARGE_TIMEOUT
from shared.errors import (
    BackendUnavailable,
    NetworkUnavailable,
    SizeExceeded,
    StorageError,
    StorageTimeout,
)
from .storage_provider import S3StorageProvider

logger = logging.getLogger(__name__)

MISSING_KEY_CODES = {'NoSuchKey', '404', 'NotFound'}
TOO_LARGE_CODES = {'EntityTooLarge', 'RequestEntityTooLarge'}


def translate_error(error: Exception, key: Optional[str] = None) -> StorageError:
    """Map a botocore exception onto the desk's storage errors."""
    if isinstance(error, ReadTimeoutError):
        return StorageTimeout(f"Storage request timed out: {error}", key)
    if isinstance(error, BotoConnectionError):
        return NetworkUnavailable(f"Cannot reach storage endpoint: {error}", key)
    if isinstance(error, ClientError):
        code = error.response.get('Error', {}).get('Code', '')
        if code in TOO_LARGE_CODES:
            return SizeExceeded(f"Payload rejected as too large: {code}", key)
        return BackendUnavailable(f"Storage backend error ({code}): {error}", key)
    if isinstance(error, NoCredentialsError):
        return BackendUnavailable("Storage credentials are missing", key)
    return BackendUnavailable(f"Storage backend error: {error}", key)


class S3CompatibleProvider(S3StorageProvider):
    """
    Storage implementation using the boto3 S3 client.
    """

    def __init__(self, region_name: str = 'auto'):
        self.s3_client = None
        self.bucket_name: Optional[str] = None
        self.endpoint_url: Optional[str] = None
        self.region_name = region_name

    def authenticate(self, credentials: Dict[str, str]) -> bool:
        """
        Build the S3 client and check bucket access.

        Args:
            credentials: Must contain:
                - access_key_id / secret_access_key
                - endpoint: Full endpoint URL (None for AWS default)
                - bucket: Bucket name
                - region: Optional region
        """
        try:
            self.endpoint_url = credentials.get('endpoint') or None
            self.bucket_name = credentials.get('bucket')
            region = credentials.get('region') or self.region_name

            self.s3_client = boto3.client(
                's3',
                endpoint_url=self.endpoint_url,
                aws_access_key_id=credentials['access_key_id'],
                aws_secret_access_key=credentials['secret_access_key'],
                region_name=region,
                config=Config(
                    connect_timeout=DEFAULT_CONNECT_TIMEOUT,
                    read_timeout=DEFAULT_LARGE_TIMEOUT,
                    retries={'max_attempts': 1},
                ),
            )

            if self.bucket_name:
                self.s3_client.head_bucket(Bucket=self.bucket_name)
            else:
                self.s3_client.list_buckets()
            return True

        except (ClientError, BotoCoreError, KeyError) as e:
            logger.error(f"S3 authentication failed: {e}")
            return False

    def bucket_exists(self, bucket_name: str) -> bool:
        try:
            self.s3_client.head_bucket(Bucket=bucket_name)
            return True
        except ClientError:
            return False
        except BotoCoreError as e:
            raise translate_error(e) from e

    def upload_bytes(self, data: bytes, remote_key: str,
                     content_type: Optional[str] = None,
                     metadata: Optional[Dict[str, str]] = None) -> None:
        kwargs = {'Bucket': self.bucket_name, 'Key': remote_key, 'Body': data}
        if content_type:
            kwargs['ContentType'] = content_type
        if metadata:
            kwargs['Metadata'] = metadata
        try:
            self.s3_client.put_object(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, remote_key) from e

    def download_bytes(self, remote_key: str) -> Optional[bytes]:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=remote_key)
            return response['Body'].read()
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in MISSING_KEY_CODES:
                return None
            raise translate_error(e, remote_key) from e
        except BotoCoreError as e:
            raise translate_error(e, remote_key) from e

    def delete_file(self, remote_key: str) -> None:
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=remote_key)
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, remote_key) from e

    def list_files(self, prefix: Optional[str] = None) -> List[Dict[str, Any]]:
        kwargs = {'Bucket': self.bucket_name}
        if prefix:
            kwargs['Prefix'] = prefix

        files = []
        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')
            for page in paginator.paginate(**kwargs):
                for obj in page.get('Contents', []):
                    files.append({
                        'key': obj['Key'],
                        'size': obj['Size'],
                        'modified': obj['LastModified'].isoformat(),
                    })
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, prefix) from e

        return files

    def get_file_url(self, remote_key: str, expires_in: int = 3600) -> str:
        """Generate presigned URL for file access."""
        try:
            return self.s3_client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket_name, 'Key': remote_key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, remote_key) from e

    def endpoint_address(self) -> Optional[Tuple[str, int]]:
        url = self.endpoint_url or f"https://s3.{self.region_name}.amazonaws.com"
        parsed = urlparse(url)
        if not parsed.hostname:
            return None
        port = parsed.port or (80 if parsed.scheme == 'http' else 443)
        return parsed.hostname, port
