"""
Data models for photos, tracks, note entries and persisted records.

This module defines the core data structures used throughout the desk.
Every model validates itself on construction, including when rebuilt from
a stored dictionary, so a malformed record never becomes a live object.
"""

from dataclasses import dataclass, asdict, field
from typing import List, Dict, Optional, Any, Tuple, Iterator
from enum import Enum
from collections import OrderedDict
import asyncio
import base64
import binascii
import dataclasses
import hashlib
import json
import logging
import re
import time
import uuid
from datetime import datetime, timezone

from shared.audio import AudioProcessor
from shared.constants import (
    AUDIO_EXTENSIONS,
    COMPRESS_DIMENSION_THRESHOLD,
    COMPRESS_SIZE_THRESHOLD,
    DEFAULT_LARGE_TIMEOUT,
    DEFAULT_MAX_HEIGHT,
    DEFAULT_MAX_WIDTH,
    DEFAULT_QUALITY,
    DEFAULT_SMALL_TIMEOUT,
    MAX_AUDIO_SIZE,
    MAX_IMAGE_SIZE,
    MAX_SAVE_ATTEMPTS,
    NOTE_MAX_LENGTH,
    NOTE_PREVIEW_LENGTH,
    RETRY_BACKOFF_SECONDS,
)
from shared.errors import ValidationError
from shared.imaging import read_dimensions, reencode
from shared.validators import (
    UploadedFile,
    file_extension,
    is_allowed_audio_type,
    is_allowed_image_type,
    resolve_image_type,
    validate_data_url,
)

logger = logging.getLogger(__name__)


class StorageProvider(Enum):
    """Supported storage backends."""
    CLOUDFLARE_R2 = "r2"
    BACKBLAZE_B2 = "b2"
    AWS_S3 = "s3"
    GENERIC_S3 = "generic"
    LOCAL = "local"


def generate_id() -> str:
    """Generate a unique item ID."""
    return uuid.uuid4().hex


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def encode_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_url(data_url: str) -> Tuple[str, bytes]:
    """
    Split a base64 data URL into its MIME type and raw bytes.

    Raises:
        ValueError: If the string is not a base64 data URL
    """
    if not data_url or not data_url.startswith("data:") or "," not in data_url:
        raise ValueError("Not a valid data URL")
    header, encoded = data_url[5:].split(",", 1)
    if not header.endswith(";base64"):
        raise ValueError("Only base64 data URLs are supported")
    mime_type = header[:-len(";base64")] or "application/octet-stream"
    try:
        return mime_type, base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Corrupt data URL payload: {e}") from e


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def count_words(text: str) -> int:
    """Whitespace-separated word count; empty or blank text counts 0."""
    if not text or not text.strip():
        return 0
    return len(text.split())


def extract_title(filename: str) -> str:
    """Derive a track title: drop extension, leading track number and separators."""
    name = re.sub(r'\.[^/.]+$', '', filename or '')
    name = re.sub(r'^\d+[\s\-.]*', '', name)
    name = re.sub(r'[\-_]', ' ', name)
    return name.strip()


def _filter_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    field_names = {f.name for f in dataclasses.fields(cls)}
    return {k: v for k, v in data.items() if k in field_names}


@dataclass
class ImageMetadata:
    """Derived image facts, filled in by dimension probing and compression."""
    width: Optional[int] = None
    height: Optional[int] = None
    compressed: bool = False
    original_size: int = 0
    original_width: Optional[int] = None
    original_height: Optional[int] = None
    compression_ratio: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ImageMetadata':
        return cls(**_filter_fields(cls, data or {}))


@dataclass
class PhotoModel:
    """
    A photo in the gallery.

    Attributes:
        id: Unique identifier
        filename: Current file name
        original_name: Name at upload time
        data_url: Inline base64 data URL, or a blob reference once persisted
        size: Payload size in bytes
        mime_type: Image MIME type
        upload_date: ISO timestamp of the upload
        last_modified: ISO timestamp of the last mutation
        metadata: Dimensions and compression facts
        is_storage_ref: True when data_url points at the blob store
    """
    id: str
    filename: str
    original_name: str
    data_url: str
    size: int
    mime_type: str
    upload_date: str = field(default_factory=utc_now)
    last_modified: str = field(default_factory=utc_now)
    metadata: ImageMetadata = field(default_factory=ImageMetadata)
    is_storage_ref: bool = False

    def __post_init__(self):
        if isinstance(self.metadata, dict):
            self.metadata = ImageMetadata.from_dict(self.metadata)
        self.validate()

    @classmethod
    def from_upload(cls, file: UploadedFile, data_url: Optional[str] = None) -> 'PhotoModel':
        """
        Build a photo from a user upload.

        Raises:
            ValidationError: With every violation found
        """
        mime_type = resolve_image_type(file.mime_type, file.name) or (file.mime_type or "")
        if data_url is None:
            data_url = encode_data_url(file.data, mime_type or "image/jpeg")
        return cls(
            id=generate_id(),
            filename=file.name,
            original_name=file.name,
            data_url=data_url,
            size=file.size,
            mime_type=mime_type,
            metadata=ImageMetadata(original_size=file.size),
        )

    def validate(self) -> bool:
        errors = []

        if self.is_storage_ref:
            if not self.data_url:
                errors.append('Missing storage reference')
        else:
            try:
                validate_data_url(self.data_url, 'image/')
            except ValidationError:
                errors.append('Invalid image data URL')

        if not self.filename or not self.filename.strip():
            errors.append('Filename is required')

        if self.size > MAX_IMAGE_SIZE:
            errors.append('File size exceeds 10MB limit')

        if not is_allowed_image_type(self.mime_type, self.filename or ''):
            errors.append('Unsupported image format. Allowed: JPEG, PNG, GIF, WebP')

        if errors:
            raise ValidationError('Photo validation failed: ' + ', '.join(errors), errors)
        return True

    def payload_bytes(self) -> bytes:
        if self.is_storage_ref:
            raise ValueError(f"Photo {self.id} payload lives in the blob store")
        return decode_data_url(self.data_url)[1]

    async def extract_dimensions(self) -> 'PhotoModel':
        """Probe width/height. Undecodable images keep unknown dimensions."""
        dims = await asyncio.to_thread(read_dimensions, self.payload_bytes())
        if dims:
            self.metadata.width, self.metadata.height = dims
        return self

    def should_compress(self) -> bool:
        # GIFs may be animated; re-encoding would drop frames
        if self.mime_type == 'image/gif':
            return False
        if self.size > COMPRESS_SIZE_THRESHOLD:
            return True
        width = self.metadata.width or 0
        height = self.metadata.height or 0
        return width > COMPRESS_DIMENSION_THRESHOLD or height > COMPRESS_DIMENSION_THRESHOLD

    def compression_settings(self) -> Dict[str, Any]:
        """Compression profile: aggressive for large originals, gentle for small ones."""
        settings = {
            'max_width': DEFAULT_MAX_WIDTH,
            'max_height': DEFAULT_MAX_HEIGHT,
            'quality': DEFAULT_QUALITY,
        }

        if self.size > 8 * 1024 * 1024:
            settings.update(max_width=1600, max_height=900, quality=0.7)
        elif self.size > 5 * 1024 * 1024:
            settings.update(max_width=1920, max_height=1080, quality=0.75)

        if (self.metadata.width or 0) > 4000 or (self.metadata.height or 0) > 4000:
            settings.update(max_width=2560, max_height=1440, quality=0.8)

        if self.size < 1024 * 1024:
            settings['quality'] = 0.9

        return settings

    async def compress(self, max_width: int = DEFAULT_MAX_WIDTH,
                       max_height: int = DEFAULT_MAX_HEIGHT,
                       quality: float = DEFAULT_QUALITY) -> 'PhotoModel':
        """
        Resize and re-encode the payload.

        The result replaces the payload only when it is smaller in bytes;
        otherwise the original is kept and just the measured dimensions are
        recorded.

        Raises:
            ValueError: If the image cannot be decoded
        """
        original = self.payload_bytes()
        encoded, out_type, (width, height), (orig_width, orig_height) = await asyncio.to_thread(
            reencode, original, self.mime_type, max_width, max_height, quality
        )

        if len(encoded) < self.size:
            previous_size = self.size
            self.data_url = encode_data_url(encoded, out_type)
            self.mime_type = out_type
            self.metadata.width = width
            self.metadata.height = height
            self.metadata.compressed = True
            self.metadata.original_size = previous_size
            self.metadata.original_width = orig_width
            self.metadata.original_height = orig_height
            self.metadata.compression_ratio = round((previous_size - len(encoded)) / previous_size * 100, 1)
            self.size = len(encoded)
            self.last_modified = utc_now()
            logger.debug(f"Compressed photo {self.id}: {previous_size} -> {self.size} bytes")
        else:
            self.metadata.width = orig_width
            self.metadata.height = orig_height
            self.metadata.compressed = False

        return self

    def format_size(self) -> str:
        return format_size(self.size)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PhotoModel':
        """
        Rebuild a photo from a stored dictionary, validating on the way in.

        Raises:
            ValidationError: If required fields are missing or invalid
        """
        filtered = _filter_fields(cls, data)
        missing = [name for name in ('id', 'filename', 'original_name', 'data_url', 'size', 'mime_type')
                   if name not in filtered]
        if missing:
            raise ValidationError(f"Photo record missing fields: {', '.join(missing)}", missing)
        filtered['metadata'] = ImageMetadata.from_dict(filtered.get('metadata'))
        return cls(**filtered)


@dataclass
class AudioMetadata:
    """Derived audio facts; duration stays None when probing fails."""
    duration: Optional[float] = None
    title: str = ""
    artist: Optional[str] = None
    album: Optional[str] = None
    bitrate: Optional[int] = None
    sample_rate: Optional[int] = None
    file_hash: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'AudioMetadata':
        return cls(**_filter_fields(cls, data or {}))


@dataclass
class MusicModel:
    """
    A track in the music player.

    Attributes mirror PhotoModel; metadata holds duration and tags.
    """
    id: str
    filename: str
    original_name: str
    data_url: str
    size: int
    mime_type: str
    upload_date: str = field(default_factory=utc_now)
    last_modified: str = field(default_factory=utc_now)
    metadata: AudioMetadata = field(default_factory=AudioMetadata)
    is_storage_ref: bool = False

    def __post_init__(self):
        if isinstance(self.metadata, dict):
            self.metadata = AudioMetadata.from_dict(self.metadata)
        self.validate()

    @classmethod
    def from_upload(cls, file: UploadedFile, data_url: Optional[str] = None) -> 'MusicModel':
        """
        Build a track from a user upload. Title comes from the filename.

        Raises:
            ValidationError: With every violation found
        """
        mime_type = (file.mime_type or "").strip().lower()
        if data_url is None:
            data_url = encode_data_url(file.data, mime_type or "application/octet-stream")
        return cls(
            id=generate_id(),
            filename=file.name,
            original_name=file.name,
            data_url=data_url,
            size=file.size,
            mime_type=mime_type,
            metadata=AudioMetadata(
                title=extract_title(file.name),
                file_hash=AudioProcessor.calculate_hash(file.data) if file.data else None,
            ),
        )

    def validate(self) -> bool:
        errors = []

        if self.is_storage_ref:
            if not self.data_url:
                errors.append('Missing storage reference')
        else:
            try:
                validate_data_url(self.data_url)
            except ValidationError:
                errors.append('Invalid audio data URL')
            else:
                # Some audio files are reported with an unrelated type
                if (not re.match(r'^data:(audio/|application/octet-stream)', self.data_url)
                        and file_extension(self.filename or '') not in AUDIO_EXTENSIONS):
                    errors.append('Invalid audio data URL format')

        if not self.filename or not self.filename.strip():
            errors.append('Filename is required')

        if self.size > MAX_AUDIO_SIZE:
            errors.append('File size exceeds 15MB limit')

        if not is_allowed_audio_type(self.mime_type, self.filename or ''):
            errors.append('Unsupported audio format. Allowed: MP3, WAV, OGG, AAC, M4A, FLAC, WebM')

        if errors:
            raise ValidationError('Music validation failed: ' + ', '.join(errors), errors)
        return True

    def payload_bytes(self) -> bytes:
        if self.is_storage_ref:
            raise ValueError(f"Track {self.id} payload lives in the blob store")
        return decode_data_url(self.data_url)[1]

    async def load_metadata(self) -> 'MusicModel':
        """
        Probe duration and tags. Failure is not fatal: the track keeps an
        unknown duration.
        """
        try:
            info = await asyncio.to_thread(AudioProcessor.extract_metadata, self.payload_bytes())
        except Exception as e:
            logger.warning(f"Could not load audio metadata for {self.filename}: {e}")
            return self

        self.metadata.duration = info.get('duration')
        self.metadata.bitrate = info.get('bitrate')
        self.metadata.sample_rate = info.get('sample_rate')
        if info.get('artist'):
            self.metadata.artist = info['artist']
        if info.get('album'):
            self.metadata.album = info['album']
        if not self.metadata.title and info.get('title'):
            self.metadata.title = info['title']
        self.last_modified = utc_now()
        return self

    def display_title(self) -> str:
        return self.metadata.title or self.filename

    def format_duration(self) -> str:
        if not self.metadata.duration:
            return 'Unknown'
        minutes = int(self.metadata.duration // 60)
        seconds = int(self.metadata.duration % 60)
        return f"{minutes}:{seconds:02d}"

    def format_size(self) -> str:
        return format_size(self.size)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MusicModel':
        """
        Rebuild a track from a stored dictionary, validating on the way in.

        Raises:
            ValidationError: If required fields are missing or invalid
        """
        filtered = _filter_fields(cls, data)
        missing = [name for name in ('id', 'filename', 'original_name', 'data_url', 'size', 'mime_type')
                   if name not in filtered]
        if missing:
            raise ValidationError(f"Track record missing fields: {', '.join(missing)}", missing)
        filtered['metadata'] = AudioMetadata.from_dict(filtered.get('metadata'))
        return cls(**filtered)


def content_digest(content: str) -> str:
    return hashlib.sha256(content.encode('utf-8')).hexdigest()[:16]


@dataclass
class NoteEntry:
    """
    A single date-idea item.

    Word/character counts and the content hash are derived from content and
    recomputed on every mutation; version is bumped on every edit.
    """
    id: str
    content: str
    created_date: str = field(default_factory=utc_now)
    last_modified: str = field(default_factory=utc_now)
    completed: bool = False
    version: int = 1
    content_hash: str = ""
    word_count: int = 0
    character_count: int = 0

    def __post_init__(self):
        if not isinstance(self.content, str):
            raise ValidationError('Note validation failed: Content must be a string')
        self.content = self.content.strip()
        self.validate()
        self._refresh_derived()

    @classmethod
    def create(cls, content: str) -> 'NoteEntry':
        return cls(id=generate_id(), content=content)

    def validate(self) -> bool:
        errors = []
        if not self.content:
            errors.append('Content cannot be empty')
        if len(self.content) > NOTE_MAX_LENGTH:
            errors.append(f'Content is too long (max {NOTE_MAX_LENGTH} characters)')
        if errors:
            raise ValidationError('Note validation failed: ' + ', '.join(errors), errors)
        return True

    def _refresh_derived(self) -> None:
        self.word_count = count_words(self.content)
        self.character_count = len(self.content)
        self.content_hash = content_digest(self.content)

    def update_content(self, new_content: str) -> 'NoteEntry':
        if not isinstance(new_content, str):
            raise ValidationError('Note validation failed: Content must be a string')
        candidate = new_content.strip()
        previous = self.content
        self.content = candidate
        try:
            self.validate()
        except ValidationError:
            self.content = previous
            raise
        self.version += 1
        self.last_modified = utc_now()
        self._refresh_derived()
        return self

    def toggle_completed(self) -> 'NoteEntry':
        self.completed = not self.completed
        self.version += 1
        self.last_modified = utc_now()
        return self

    def preview(self, max_length: int = NOTE_PREVIEW_LENGTH) -> str:
        if len(self.content) <= max_length:
            return self.content
        return self.content[:max_length].strip() + '...'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NoteEntry':
        filtered = _filter_fields(cls, data)
        if 'id' not in filtered or 'content' not in filtered:
            raise ValidationError('Note record missing id or content')
        return cls(**filtered)


class NoteCollection:
    """
    The note list, persisted as one array-valued document.
    """

    def __init__(self, entries: Optional[List[NoteEntry]] = None):
        self._entries: 'OrderedDict[str, NoteEntry]' = OrderedDict()
        for entry in entries or []:
            self._entries[entry.id] = entry

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[NoteEntry]:
        return iter(list(self._entries.values()))

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._entries

    def get(self, entry_id: str) -> Optional[NoteEntry]:
        return self._entries.get(entry_id)

    def _require(self, entry_id: str) -> NoteEntry:
        entry = self._entries.get(entry_id)
        if entry is None:
            raise KeyError(f"Entry not found: {entry_id}")
        return entry

    def add(self, content: str) -> NoteEntry:
        entry = NoteEntry.create(content)
        self._entries[entry.id] = entry
        return entry

    def edit(self, entry_id: str, content: str) -> NoteEntry:
        return self._require(entry_id).update_content(content)

    def toggle(self, entry_id: str) -> NoteEntry:
        return self._require(entry_id).toggle_completed()

    def remove(self, entry_id: str) -> NoteEntry:
        self._require(entry_id)
        return self._entries.pop(entry_id)

    def restore(self, entry: NoteEntry, index: Optional[int] = None) -> None:
        """Put an entry back. An existing entry is replaced in place."""
        if entry.id in self._entries or index is None:
            self._entries[entry.id] = entry
            return
        items = list(self._entries.items())
        items.insert(min(index, len(items)), (entry.id, entry))
        self._entries = OrderedDict(items)

    def clear_completed(self) -> List[NoteEntry]:
        done = [e for e in self._entries.values() if e.completed]
        for entry in done:
            del self._entries[entry.id]
        return done

    def clear_all(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    def sorted_entries(self, newest_first: bool = True) -> List[NoteEntry]:
        return sorted(self._entries.values(), key=lambda e: e.created_date, reverse=newest_first)

    def stats(self) -> Dict[str, int]:
        completed = sum(1 for e in self._entries.values() if e.completed)
        return {
            'total': len(self._entries),
            'completed': completed,
            'active': len(self._entries) - completed,
        }

    def export_text(self, exported_at: Optional[datetime] = None) -> str:
        """Plain-text export with active and completed sections, oldest first."""
        ordered = self.sorted_entries(newest_first=False)
        active = [e for e in ordered if not e.completed]
        completed = [e for e in ordered if e.completed]

        lines = ['Date Ideas', '==========', '']
        if active:
            lines += ['Active Ideas:', '-------------']
            lines += [f"{i}. {e.content}" for i, e in enumerate(active, 1)]
            lines.append('')
        if completed:
            lines += ['Completed Ideas:', '----------------']
            lines += [f"{i}. {e.content}" for i, e in enumerate(completed, 1)]
            lines.append('')

        stamp = (exported_at or datetime.now()).strftime('%Y-%m-%d %H:%M:%S')
        lines += [
            '',
            f"Exported on: {stamp}",
            f"Total ideas: {len(self._entries)}",
            f"Completed: {len(completed)}",
            f"Active: {len(active)}",
        ]
        return '\n'.join(lines) + '\n'

    def to_list(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries.values()]

    @classmethod
    def from_list(cls, data: Optional[List[Dict[str, Any]]]) -> 'NoteCollection':
        """
        Raises:
            ValidationError: If the stored value is not a list of valid entries
        """
        if data is None:
            return cls()
        if not isinstance(data, list):
            raise ValidationError('Note collection must be a list')
        return cls([NoteEntry.from_dict(item) for item in data])


@dataclass
class StorageRecord:
    """
    Envelope persisted in the document store for every key.

    Exactly one of data / reference is set: small payloads live inline, large
    ones are kept in the blob store and only referenced here.
    """
    key: str
    data: Any = None
    reference: Optional[str] = None
    write_timestamp: float = field(default_factory=time.time)
    origin_id: str = ""
    payload_size_bytes: int = 0

    @property
    def is_reference(self) -> bool:
        return self.reference is not None

    def to_json(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)

    @classmethod
    def from_json(cls, key: str, json_str: str) -> 'StorageRecord':
        """
        Raises:
            ValueError: If the stored document is not a valid record
        """
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ValueError(f"Corrupt record for {key}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Corrupt record for {key}: not an object")
        filtered = _filter_fields(cls, data)
        filtered['key'] = key
        return cls(**filtered)


@dataclass
class DeskConfig:
    """
    Desk configuration stored locally on each device.

    Contains credentials for the storage backend and gateway tuning.
    """
    provider: StorageProvider
    endpoint: str
    bucket: str
    access_key_id: str = ""
    secret_access_key: str = ""
    region: Optional[str] = None
    small_timeout: float = DEFAULT_SMALL_TIMEOUT
    large_timeout: float = DEFAULT_LARGE_TIMEOUT
    max_save_attempts: int = MAX_SAVE_ATTEMPTS
    retry_backoff: float = RETRY_BACKOFF_SECONDS
    is_encrypted: bool = False

    def to_dict(self, encrypt: bool = True) -> Dict[str, Any]:
        """Convert config to dictionary, optionally encrypting credentials."""
        from shared.crypto import CredentialManager

        data = asdict(self)
        data['provider'] = self.provider.value

        if encrypt and not self.is_encrypted and (self.access_key_id or self.secret_access_key):
            data['access_key_id'] = CredentialManager.encrypt(self.access_key_id)
            data['secret_access_key'] = CredentialManager.encrypt(self.secret_access_key)
            data['is_encrypted'] = True

        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeskConfig':
        """Create DeskConfig from dictionary, decrypting if necessary."""
        from shared.crypto import CredentialManager

        filtered_data = _filter_fields(cls, data)
        filtered_data['provider'] = StorageProvider(filtered_data['provider'])

        if filtered_data.get('is_encrypted', False):
            dec_id = CredentialManager.decrypt(filtered_data['access_key_id'])
            dec_key = CredentialManager.decrypt(filtered_data['secret_access_key'])

            # On another machine decryption fails; keep the ciphertext so auth
            # fails later instead of crashing here
            if dec_id is not None and dec_key is not None:
                filtered_data['access_key_id'] = dec_id
                filtered_data['secret_access_key'] = dec_key
                filtered_data['is_encrypted'] = False

        return cls(**filtered_data)

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, json_str: str) -> 'DeskConfig':
        return cls.from_dict(json.loads(json_str))
