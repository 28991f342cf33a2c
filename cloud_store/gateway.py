"""
Storage gateway.

Single entry point for persisting desk data. Media keys are split into a
blob (the binary payload) and a metadata record; every other key is stored
as an inline record unless its serialized form is too large, in which case
the payload goes to the blob store and the record keeps a reference.

All operations are async. Blocking provider calls run in worker threads
under a timeout; a timeout abandons the wait, not the call.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from shared.constants import (
    BLOB_KIND_AUDIO,
    BLOB_KIND_MEDIA,
    BLOB_KIND_PHOTOS,
    INLINE_SIZE_THRESHOLD,
    LARGE_PAYLOAD_THRESHOLD,
    MAX_BLOB_SIZE,
    MUSIC_KEY_PREFIX,
    PHOTO_KEY_PREFIX,
    SELF_TEST_KEY_PREFIX,
)
from shared.errors import (
    BackendUnavailable,
    NetworkUnavailable,
    SizeExceeded,
    StorageError,
    StorageTimeout,
)
from shared.models import DeskConfig, StorageRecord, decode_data_url
from shared.validators import sanitize_filename
from .connectivity import ConnectionStatus, ConnectivityProbe
from .identity import load_or_create_user_id
from .provider_factory import StorageProviderFactory
from .storage_provider import S3StorageProvider
from .stores import BlobStore, DocumentStore

logger = logging.getLogger(__name__)

MEDIA_KINDS = {
    PHOTO_KEY_PREFIX: BLOB_KIND_PHOTOS,
    MUSIC_KEY_PREFIX: BLOB_KIND_AUDIO,
}


def media_kind(key: str) -> Optional[str]:
    """Blob kind for media keys, None for everything else."""
    for prefix, kind in MEDIA_KINDS.items():
        if key.startswith(prefix):
            return kind
    return None


def blob_metadata(record: dict) -> Optional[Dict[str, str]]:
    """Object metadata for a media blob. S3 metadata values must be ASCII."""
    name = sanitize_filename(record.get('original_name') or record.get('filename') or '')
    name = name.encode('ascii', 'ignore').decode('ascii')
    return {'original-name': name} if name else None


class StorageGateway:
    """
    Routes save/load/delete between the document and blob stores.

    Args:
        provider: Authenticated storage provider
        origin_id: Identity stamped on every record written
        small_timeout: Seconds allowed for small documents
        large_timeout: Seconds allowed for blobs and large documents
        probe: Connectivity probe, one is built for the provider if None
    """

    def __init__(self, provider: S3StorageProvider, origin_id: str,
                 small_timeout: float = 10, large_timeout: float = 30,
                 probe: Optional[ConnectivityProbe] = None):
        self.provider = provider
        self.origin_id = origin_id
        self.small_timeout = small_timeout
        self.large_timeout = large_timeout
        self.documents = DocumentStore(provider)
        self.blobs = BlobStore(provider)
        self.probe = probe or ConnectivityProbe(provider)

        self._online = True
        self._backend_reachable = False
        self._started = False
        self._closed = False

    @classmethod
    async def from_config(cls, config: DeskConfig, config_dir: Path) -> 'StorageGateway':
        """
        Build a gateway for a config. Not started yet.

        Provider authentication talks to the backend, so it runs in a worker
        thread.

        Raises:
            BackendUnavailable: If the provider rejects the credentials
        """
        provider = await asyncio.to_thread(StorageProviderFactory.from_config, config)
        origin_id = await asyncio.to_thread(load_or_create_user_id, config_dir)
        return cls(
            provider,
            origin_id=origin_id,
            small_timeout=config.small_timeout,
            large_timeout=config.large_timeout,
        )

    async def start(self) -> ConnectionStatus:
        """Probe connectivity and backend access. Safe to call twice."""
        self._closed = False
        status = await self.refresh_status()
        self._started = True
        if status.ready:
            logger.info(f"Storage gateway ready (origin {self.origin_id})")
        else:
            logger.warning(f"Storage gateway started degraded: online={status.online} "
                           f"backend_reachable={status.backend_reachable}")
        return status

    async def close(self) -> None:
        self._closed = True
        self._started = False
        logger.debug("Storage gateway closed")

    async def __aenter__(self) -> 'StorageGateway':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def set_online(self, online: Optional[bool]) -> None:
        """Force the online flag (True/False) or return to probing (None)."""
        self.probe.set_online(online)
        if online is not None:
            self._online = online

    def connection_status(self) -> ConnectionStatus:
        return ConnectionStatus(
            online=self._online,
            backend_reachable=self._backend_reachable,
            user_id=self.origin_id,
        )

    async def refresh_status(self) -> ConnectionStatus:
        self._online = await asyncio.to_thread(self.probe.check)
        if not self._online:
            self._backend_reachable = False
            return self.connection_status()

        bucket = getattr(self.provider, 'bucket_name', None)
        try:
            self._backend_reachable = await asyncio.wait_for(
                asyncio.to_thread(self.provider.bucket_exists, bucket), self.small_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Backend check timed out")
            self._backend_reachable = False
        except StorageError as e:
            logger.warning(f"Backend check failed: {e}")
            self._backend_reachable = False
        return self.connection_status()

    async def _ensure_online(self, key: Optional[str]) -> None:
        if self.probe.override is False:
            self._online = False
        elif not self._online:
            # Re-probe so a recovered network is noticed without a restart
            self._online = await asyncio.to_thread(self.probe.check)
        if not self._online:
            raise NetworkUnavailable("No network connection", key)

    async def _call(self, func: Callable, *args, timeout: float, key: Optional[str]) -> Any:
        if self._closed:
            raise BackendUnavailable("Storage gateway is closed", key)
        await self._ensure_online(key)

        try:
            result = await asyncio.wait_for(asyncio.to_thread(func, *args), timeout)
        except asyncio.TimeoutError:
            raise StorageTimeout(f"Operation timed out after {timeout}s", key) from None
        except NetworkUnavailable:
            self._online = False
            raise
        except BackendUnavailable:
            self._backend_reachable = False
            raise

        self._backend_reachable = True
        return result

    def _document_timeout(self, size: int) -> float:
        return self.large_timeout if size > LARGE_PAYLOAD_THRESHOLD else self.small_timeout

    def _new_record(self, key: str, size: int, data: Any = None,
                    reference: Optional[str] = None) -> StorageRecord:
        return StorageRecord(
            key=key,
            data=data,
            reference=reference,
            write_timestamp=time.time(),
            origin_id=self.origin_id,
            payload_size_bytes=size,
        )

    async def save(self, key: str, data: Any) -> bool:
        """
        Persist data under key.

        Returns:
            True on success

        Raises:
            ValueError: data is None, nothing was sent
            NetworkUnavailable: Offline, nothing was sent
            SizeExceeded: Payload larger than the blob ceiling
            BackendUnavailable: Backend rejected the write
            StorageTimeout: No answer in time; the write may still land
        """
        # load() returns None for absent keys, so None cannot be stored
        if data is None:
            raise ValueError(f"Cannot save None under {key}")

        kind = media_kind(key)
        if kind is not None:
            return await self._save_media(key, kind, data)

        serialized = json.dumps(data, ensure_ascii=False).encode('utf-8')
        size = len(serialized)

        if size > INLINE_SIZE_THRESHOLD:
            if size > MAX_BLOB_SIZE:
                raise SizeExceeded(f"Document is {size} bytes, limit is {MAX_BLOB_SIZE}", key)
            logger.info(f"Document {key} is {size} bytes, storing out of band")
            path = self.blobs.blob_path(BLOB_KIND_MEDIA, key)
            await self._call(self.blobs.put, path, serialized, 'application/json',
                             timeout=self.large_timeout, key=key)
            record = self._new_record(key, size, reference=path)
        else:
            record = self._new_record(key, size, data=data)

        await self._call(self.documents.put, record, timeout=self._document_timeout(size), key=key)
        logger.debug(f"Saved {key} ({size} bytes)")
        return True

    async def _save_media(self, key: str, kind: str, data: Any) -> bool:
        if not isinstance(data, dict):
            raise TypeError(f"Media record for {key} must be a dict")

        metadata = dict(data)
        path = self.blobs.blob_path(kind, key)

        uploaded = False
        if metadata.get('is_storage_ref'):
            size = int(metadata.get('size') or 0)
        else:
            try:
                mime_type, payload = decode_data_url(metadata.get('data_url', ''))
            except ValueError as e:
                raise TypeError(f"Media record for {key} has no inline payload: {e}") from e

            size = len(payload)
            if size > MAX_BLOB_SIZE:
                raise SizeExceeded(f"Media payload is {size} bytes, limit is {MAX_BLOB_SIZE}", key)

            url = await self._call(self.blobs.put, path, payload, mime_type,
                                   blob_metadata(metadata), timeout=self.large_timeout, key=key)
            metadata['data_url'] = url
            metadata['is_storage_ref'] = True
            uploaded = True

        record = self._new_record(key, size, data=metadata)
        try:
            await self._call(self.documents.put, record, timeout=self.small_timeout, key=key)
        except StorageError:
            if uploaded:
                await self._discard_blob(path, key)
            raise
        logger.debug(f"Saved media {key} ({size} bytes) to {path}")
        return True

    async def _discard_blob(self, path: str, key: str) -> None:
        """Best-effort removal of a blob whose record was never written."""
        try:
            await self._call(self.blobs.delete, path, timeout=self.large_timeout, key=key)
        except StorageError as e:
            logger.warning(f"Could not remove orphaned blob {path}: {e}")
        else:
            logger.info(f"Removed orphaned blob {path}")

    async def load(self, key: str) -> Any:
        """
        Fetch the value stored under key, or None if there is none.

        Media records come back with a freshly issued blob URL in data_url.

        Raises:
            NetworkUnavailable, BackendUnavailable, StorageTimeout
        """
        record = await self._call(self.documents.get, key, timeout=self.small_timeout, key=key)
        if record is None:
            return None

        kind = media_kind(key)
        if kind is not None and isinstance(record.data, dict):
            data = dict(record.data)
            if data.get('is_storage_ref'):
                path = self.blobs.blob_path(kind, key)
                data['data_url'] = await self._call(self.blobs.url_for, path,
                                                    timeout=self.small_timeout, key=key)
            return data

        if record.is_reference:
            payload = await self._call(self.blobs.get, record.reference,
                                       timeout=self.large_timeout, key=key)
            if payload is None:
                raise BackendUnavailable(f"Record {key} points at a missing blob", key)
            try:
                return json.loads(payload.decode('utf-8'))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise BackendUnavailable(f"Corrupt out-of-band payload for {key}: {e}", key) from e

        return record.data

    async def delete(self, key: str) -> bool:
        """
        Remove a key and its blob.

        A failed blob delete is logged and does not stop the record delete;
        a failed record delete is raised.
        """
        kind = media_kind(key) or BLOB_KIND_MEDIA
        path = self.blobs.blob_path(kind, key)
        try:
            await self._call(self.blobs.delete, path, timeout=self.large_timeout, key=key)
        except NetworkUnavailable:
            raise
        except StorageError as e:
            logger.warning(f"Could not delete blob {path}, continuing with record: {e}")

        await self._call(self.documents.delete, key, timeout=self.small_timeout, key=key)
        logger.debug(f"Deleted {key}")
        return True

    async def list_keys(self, prefix: str = "") -> List[str]:
        """Every stored key starting with prefix, via a prefix listing."""
        return await self._call(self.documents.list_keys, prefix,
                                timeout=self.large_timeout, key=prefix or None)

    async def self_test(self) -> Tuple[bool, str]:
        """
        Write, read back and delete a probe record.

        Returns:
            (passed, human-readable message)
        """
        key = f"{SELF_TEST_KEY_PREFIX}{int(time.time() * 1000)}"
        payload = {'test': True, 'origin': self.origin_id, 'timestamp': time.time()}

        try:
            await self.save(key, payload)
            loaded = await self.load(key)
            if loaded != payload:
                return False, "Sync test failed: data read back does not match"
            await self.delete(key)
        except StorageError as e:
            return False, f"Sync test failed: {e}"

        return True, "Sync test passed: write, read and delete all succeeded"
