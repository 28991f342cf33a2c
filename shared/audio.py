"""
Audio payload inspection.

Reads duration, stream info and the common tags out of an in-memory audio
payload with mutagen.
"""

import hashlib
import io
import logging
from typing import Any, Dict, Optional

from mutagen import File as MutagenFile

logger = logging.getLogger(__name__)


class AudioProcessor:
    """Handler for audio payload operations."""

    @staticmethod
    def calculate_hash(data: bytes) -> str:
        """
        Calculate SHA256 hash of a payload for deduplication.

        Args:
            data: Raw audio bytes

        Returns:
            Hexadecimal SHA256 hash string
        """
        return hashlib.sha256(data).hexdigest()

    @staticmethod
    def _first_tag(tags: Any, name: str) -> Optional[str]:
        if not tags or name not in tags:
            return None
        value = tags[name]
        if isinstance(value, list):
            value = value[0] if value else None
        return str(value) if value else None

    @staticmethod
    def extract_metadata(data: bytes) -> Dict[str, Any]:
        """
        Extract stream info and tags from an audio payload.

        Args:
            data: Raw audio bytes

        Returns:
            Dictionary with metadata:
                - duration: Duration in seconds (float)
                - bitrate: Bitrate in kbps, or None
                - sample_rate: Sample rate in Hz, or None
                - title / artist / album: Tag values, or None

        Raises:
            ValueError: If mutagen does not recognise the payload
        """
        audio = MutagenFile(io.BytesIO(data), easy=True)
        if audio is None or getattr(audio, 'info', None) is None:
            raise ValueError("Unrecognised audio payload")

        info = audio.info
        length = getattr(info, 'length', None)
        bitrate = getattr(info, 'bitrate', None)
        sample_rate = getattr(info, 'sample_rate', None)

        return {
            'duration': float(length) if length else None,
            'bitrate': int(bitrate / 1000) if bitrate else None,
            'sample_rate': int(sample_rate) if sample_rate else None,
            'title': AudioProcessor._first_tag(audio.tags, 'title'),
            'artist': AudioProcessor._first_tag(audio.tags, 'artist'),
            'album': AudioProcessor._first_tag(audio.tags, 'album'),
        }
