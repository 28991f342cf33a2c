"""
Document and blob stores on top of a storage provider.

Documents are StorageRecord envelopes kept as JSON under records/<key>.json.
Blobs are raw payloads kept under shared/<kind>/<key>.
"""

import logging
from typing import Dict, List, Optional

from shared.constants import BLOB_ROOT, PRESIGNED_URL_EXPIRY, RECORDS_PREFIX
from shared.errors import BackendUnavailable
from shared.models import StorageRecord
from .storage_provider import S3StorageProvider

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"


class DocumentStore:
    """Small JSON records, one object per key."""

    def __init__(self, provider: S3StorageProvider):
        self.provider = provider

    @staticmethod
    def record_path(key: str) -> str:
        return f"{RECORDS_PREFIX}{key}{RECORD_SUFFIX}"

    def put(self, record: StorageRecord) -> None:
        self.provider.upload_json(record.to_json(), self.record_path(record.key))

    def get(self, key: str) -> Optional[StorageRecord]:
        """
        Raises:
            BackendUnavailable: If the stored record is corrupt
        """
        json_str = self.provider.download_json(self.record_path(key))
        if json_str is None:
            return None
        try:
            return StorageRecord.from_json(key, json_str)
        except ValueError as e:
            raise BackendUnavailable(str(e), key) from e

    def delete(self, key: str) -> None:
        self.provider.delete_file(self.record_path(key))

    def list_keys(self, prefix: str = "") -> List[str]:
        """Keys of every record whose key starts with prefix."""
        keys = []
        for entry in self.provider.list_files(RECORDS_PREFIX + prefix):
            path = entry['key']
            if not path.startswith(RECORDS_PREFIX) or not path.endswith(RECORD_SUFFIX):
                continue
            keys.append(path[len(RECORDS_PREFIX):-len(RECORD_SUFFIX)])
        return sorted(keys)


class BlobStore:
    """Binary payloads addressed by kind and key."""

    def __init__(self, provider: S3StorageProvider, url_expiry: int = PRESIGNED_URL_EXPIRY):
        self.provider = provider
        self.url_expiry = url_expiry

    @staticmethod
    def blob_path(kind: str, key: str) -> str:
        return f"{BLOB_ROOT}/{kind}/{key}"

    def put(self, path: str, data: bytes, content_type: Optional[str] = None,
            metadata: Optional[Dict[str, str]] = None) -> str:
        """Store a payload and return a fetchable URL for it."""
        self.provider.upload_bytes(data, path, content_type=content_type, metadata=metadata)
        return self.url_for(path)

    def get(self, path: str) -> Optional[bytes]:
        return self.provider.download_bytes(path)

    def delete(self, path: str) -> None:
        self.provider.delete_file(path)

    def url_for(self, path: str) -> str:
        return self.provider.get_file_url(path, self.url_expiry)
