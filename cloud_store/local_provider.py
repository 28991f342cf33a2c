"""
Local filesystem storage provider.
Implements the S3StorageProvider interface on a directory tree.
"""

import os
import logging
from typing import Optional, Dict, Any, List, Tuple
from pathlib import Path

from shared.errors import BackendUnavailable
from .storage_provider import S3StorageProvider

logger = logging.getLogger(__name__)


class LocalStorageProvider(S3StorageProvider):
    """
    Storage provider that uses the local filesystem.
    Useful for a single machine, a NAS mount, or tests.
    """

    def __init__(self):
        self.base_path: Optional[Path] = None
        self.bucket_name: Optional[str] = None

    def authenticate(self, credentials: Dict[str, str]) -> bool:
        """
        'Authenticate' by setting the base path.
        In local mode the 'endpoint' is the root directory.
        """
        path = credentials.get('base_path') or credentials.get('endpoint')
        if not path:
            return False

        self.base_path = Path(path).expanduser().absolute()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.bucket_name = credentials.get('bucket') or 'default'
        return True

    def bucket_exists(self, bucket_name: str) -> bool:
        if bucket_name in [".", "", "default", None]:
            return self.base_path.exists()
        return (self.base_path / bucket_name).exists()

    def _bucket_root(self) -> Path:
        if self.base_path is None:
            raise BackendUnavailable("Local storage not initialised")
        if self.bucket_name in [".", "", "default", None]:
            return self.base_path
        return self.base_path / self.bucket_name

    def _get_path(self, remote_key: str) -> Path:
        """Get absolute local path for a remote key."""
        root = self._bucket_root()
        path = (root / remote_key).resolve()
        if root.resolve() not in path.parents:
            raise BackendUnavailable(f"Key escapes storage root: {remote_key}", remote_key)
        return path

    def upload_bytes(self, data: bytes, remote_key: str,
                     content_type: Optional[str] = None,
                     metadata: Optional[Dict[str, str]] = None) -> None:
        dest_path = self._get_path(remote_key)
        tmp_path = dest_path.with_name(dest_path.name + '.part')
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_bytes(data)
            os.replace(tmp_path, dest_path)
        except OSError as e:
            raise BackendUnavailable(f"Local write failed: {e}", remote_key) from e

    def download_bytes(self, remote_key: str) -> Optional[bytes]:
        path = self._get_path(remote_key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise BackendUnavailable(f"Local read failed: {e}", remote_key) from e

    def delete_file(self, remote_key: str) -> None:
        path = self._get_path(remote_key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise BackendUnavailable(f"Local delete failed: {e}", remote_key) from e

    def list_files(self, prefix: Optional[str] = None) -> List[Dict[str, Any]]:
        bucket_root = self._bucket_root()
        if not bucket_root.exists():
            return []

        files = []
        for root, _, filenames in os.walk(bucket_root):
            for filename in filenames:
                if filename.endswith('.part'):
                    continue
                full_path = Path(root) / filename
                rel_key = full_path.relative_to(bucket_root).as_posix()
                if prefix and not rel_key.startswith(prefix):
                    continue
                stat = full_path.stat()
                files.append({
                    'key': rel_key,
                    'size': stat.st_size,
                    'modified': stat.st_mtime,
                })
        return sorted(files, key=lambda f: f['key'])

    def get_file_url(self, remote_key: str, expires_in: int = 3600) -> str:
        """Return a file:// URL."""
        return self._get_path(remote_key).as_uri()

    def endpoint_address(self) -> Optional[Tuple[str, int]]:
        return None
