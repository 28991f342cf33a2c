"""
Music player controller.
"""

from typing import Any, Dict

from shared.constants import MUSIC_KEY_PREFIX
from shared.models import MusicModel
from shared.validators import UploadedFile, validate_audio
from .optimistic import MediaController


class MusicController(MediaController):
    app_name = "music"
    key_prefix = MUSIC_KEY_PREFIX
    model_class = MusicModel
    noun = "track"

    async def prepare(self, file: UploadedFile) -> MusicModel:
        validate_audio(file)
        track = MusicModel.from_upload(file)
        return await track.load_metadata()

    def describe(self, item: MusicModel) -> Dict[str, Any]:
        description = super().describe(item)
        description['title'] = item.display_title()
        description['artist'] = item.metadata.artist
        description['duration'] = item.format_duration()
        return description

    def stats(self) -> Dict[str, Any]:
        stats = super().stats()
        stats['total_duration'] = sum(item.metadata.duration or 0 for item in self.items)
        return stats
