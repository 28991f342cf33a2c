"""
Input validation for uploaded photos and audio.

All checks are pure: they look at the declared name, MIME type, size and
(for signatures) the leading bytes of the payload, and raise a
ValidationError subclass on the first problem found.
"""

import mimetypes
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from shared.constants import (
    AUDIO_EXTENSIONS,
    AUDIO_MIME_TYPES,
    GENERIC_MIME_TYPES,
    IMAGE_EXTENSIONS,
    IMAGE_MIME_TYPES,
    MAX_AUDIO_SIZE,
    MAX_IMAGE_SIZE,
    MIN_IMAGE_SIZE,
    UNSAFE_EXTENSIONS,
)
from shared.errors import (
    InvalidFormat,
    SignatureMismatch,
    TooLarge,
    TooSmall,
    UnsafeName,
    ValidationError,
)

# Magic numbers per declared type
IMAGE_SIGNATURES = {
    "image/jpeg": [b"\xff\xd8\xff"],
    "image/jpg": [b"\xff\xd8\xff"],
    "image/png": [b"\x89PNG\r\n\x1a\n"],
    "image/gif": [b"GIF87a", b"GIF89a"],
    "image/webp": [b"RIFF"],  # RIFF container header
}

EXTENSION_TO_IMAGE_TYPE = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}


@dataclass
class UploadedFile:
    """
    A file handed to the desk by the user.

    Attributes:
        name: File name as chosen by the user
        mime_type: Declared MIME type, may be empty
        size: Declared size in bytes
        data: Raw file content
    """
    name: str
    mime_type: str
    size: int
    data: bytes = b""

    @classmethod
    def from_path(cls, path: Union[str, Path], mime_type: Optional[str] = None) -> 'UploadedFile':
        """Read a file from disk once and guess its type from the extension."""
        path_obj = Path(path).expanduser()
        data = path_obj.read_bytes()
        if mime_type is None:
            mime_type = mimetypes.guess_type(path_obj.name)[0] or ""
        return cls(name=path_obj.name, mime_type=mime_type, size=len(data), data=data)

    @classmethod
    def from_bytes(cls, name: str, data: bytes, mime_type: str = "") -> 'UploadedFile':
        return cls(name=name, mime_type=mime_type, size=len(data), data=data)


def file_extension(filename: str) -> str:
    """Lower-cased extension without the dot, '' if there is none."""
    if not filename or "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower()


def is_generic_type(mime_type: Optional[str]) -> bool:
    return (mime_type or "").strip().lower() in GENERIC_MIME_TYPES


def is_allowed_image_type(mime_type: Optional[str], filename: str) -> bool:
    """Declared type check, falling back to the extension when the type is unset."""
    if is_generic_type(mime_type):
        return file_extension(filename) in IMAGE_EXTENSIONS
    return mime_type.strip().lower() in IMAGE_MIME_TYPES


def is_allowed_audio_type(mime_type: Optional[str], filename: str) -> bool:
    if is_generic_type(mime_type):
        return file_extension(filename) in AUDIO_EXTENSIONS
    return mime_type.strip().lower() in AUDIO_MIME_TYPES


def resolve_image_type(mime_type: Optional[str], filename: str) -> str:
    """Declared image type, or the one implied by the extension when unset."""
    if is_generic_type(mime_type):
        return EXTENSION_TO_IMAGE_TYPE.get(file_extension(filename), "")
    return mime_type.strip().lower()


def validate_image(file: UploadedFile) -> None:
    """
    Check name, type and size of an image upload.

    Raises:
        InvalidFormat: Type not allowed or file has no name
        TooSmall: Below 100 bytes
        TooLarge: Above 10MB
        UnsafeName: Executable-looking file name
    """
    if file is None:
        raise InvalidFormat("No file provided")

    if not is_allowed_image_type(file.mime_type, file.name):
        raise InvalidFormat("Invalid image format. Allowed: JPEG, PNG, GIF, WebP")

    if file.size < MIN_IMAGE_SIZE:
        raise TooSmall(f"File is too small (minimum {MIN_IMAGE_SIZE} bytes)")

    if file.size > MAX_IMAGE_SIZE:
        raise TooLarge("Image file size exceeds 10MB limit")

    if not file.name or not file.name.strip():
        raise InvalidFormat("File must have a valid name")

    lowered = file.name.lower()
    if any(lowered.endswith(ext) for ext in UNSAFE_EXTENSIONS):
        raise UnsafeName("File type not allowed for security reasons")


def validate_audio(file: UploadedFile) -> None:
    """
    Check type and size of an audio upload.

    Raises:
        InvalidFormat: Type (or extension, when the type is unset) not allowed
        TooLarge: Above 15MB
    """
    if file is None:
        raise InvalidFormat("No file provided")

    if not is_allowed_audio_type(file.mime_type, file.name):
        raise InvalidFormat("Invalid audio format. Allowed: MP3, WAV, OGG, AAC, M4A, FLAC, WebM")

    if file.size > MAX_AUDIO_SIZE:
        raise TooLarge("Audio file size exceeds 15MB limit. Please use a smaller file.")


def has_image_signature(data: bytes, declared_type: str) -> bool:
    expected = IMAGE_SIGNATURES.get((declared_type or "").lower())
    if not expected:
        return False
    return any(data[:len(sig)] == sig for sig in expected)


def validate_image_signature(data: bytes, declared_type: str, filename: str = "") -> None:
    """
    Compare the leading bytes of the payload with the declared type.

    Raises:
        SignatureMismatch: Content does not look like the declared type
    """
    resolved = resolve_image_type(declared_type, filename)
    if not has_image_signature(data or b"", resolved):
        raise SignatureMismatch("File content does not match the declared image type")


def sanitize_filename(filename: str) -> str:
    cleaned = re.sub(r'[<>:"/\\|?*]', "_", filename)
    cleaned = re.sub(r"\s+", "_", cleaned)
    cleaned = re.sub(r"_{2,}", "_", cleaned)
    return cleaned.strip()


def validate_data_url(data_url: str, expected_prefix: Optional[str] = None) -> None:
    if not data_url or not isinstance(data_url, str):
        raise ValidationError("Invalid data URL")
    if not data_url.startswith("data:"):
        raise ValidationError("Not a valid data URL")
    if expected_prefix and not data_url.startswith(f"data:{expected_prefix}"):
        raise ValidationError(f"Expected {expected_prefix} data URL")
