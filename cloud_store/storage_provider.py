"""
Abstract base class for storage providers.

This module defines the interface that every backend must implement,
allowing the desk to work with Cloudflare R2, Backblaze B2, AWS S3, any
other S3-compatible service, or a local directory.

Providers are synchronous; the gateway runs them in worker threads. They
raise StorageError subclasses instead of returning status flags, and return
None for keys that do not exist.
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Tuple


class S3StorageProvider(ABC):
    """
    Abstract base class for S3-compatible storage providers.
    """

    @abstractmethod
    def authenticate(self, credentials: Dict[str, str]) -> bool:
        """
        Authenticate with the storage provider.

        Args:
            credentials: access_key_id, secret_access_key, endpoint, bucket,
                         region (provider-specific subset)

        Returns:
            True if authentication successful, False otherwise
        """
        pass

    @abstractmethod
    def bucket_exists(self, bucket_name: str) -> bool:
        pass

    @abstractmethod
    def upload_bytes(self, data: bytes, remote_key: str,
                     content_type: Optional[str] = None,
                     metadata: Optional[Dict[str, str]] = None) -> None:
        """
        Store a binary payload under a key, replacing any previous value.

        Raises:
            StorageError: On any backend failure
        """
        pass

    @abstractmethod
    def download_bytes(self, remote_key: str) -> Optional[bytes]:
        """
        Returns:
            Payload, or None if the key does not exist
        """
        pass

    @abstractmethod
    def delete_file(self, remote_key: str) -> None:
        """
        Delete a key. Deleting a missing key is not an error.
        """
        pass

    @abstractmethod
    def list_files(self, prefix: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        List keys under a prefix.

        Returns:
            List of dicts with key, size and modified
        """
        pass

    @abstractmethod
    def get_file_url(self, remote_key: str, expires_in: int = 3600) -> str:
        """Fetchable URL for a stored key."""
        pass

    @abstractmethod
    def endpoint_address(self) -> Optional[Tuple[str, int]]:
        """
        Host and port the provider talks to, or None for local storage.
        Used by the connectivity probe.
        """
        pass

    def upload_json(self, data: str, remote_key: str) -> None:
        self.upload_bytes(data.encode('utf-8'), remote_key, content_type='application/json')

    def download_json(self, remote_key: str) -> Optional[str]:
        data = self.download_bytes(remote_key)
        return data.decode('utf-8') if data is not None else None
