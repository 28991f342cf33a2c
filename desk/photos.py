"""
Photo gallery controller.
"""

import logging
from typing import Any, Dict

from shared.constants import MAX_PHOTO_FINAL_SIZE, PHOTO_KEY_PREFIX
from shared.errors import TooLarge
from shared.models import PhotoModel, format_size
from shared.validators import UploadedFile, validate_image, validate_image_signature
from .optimistic import MediaController

logger = logging.getLogger(__name__)


class PhotosController(MediaController):
    app_name = "photos"
    key_prefix = PHOTO_KEY_PREFIX
    model_class = PhotoModel
    noun = "photo"

    async def prepare(self, file: UploadedFile) -> PhotoModel:
        validate_image(file)
        validate_image_signature(file.data, file.mime_type, file.name)

        photo = PhotoModel.from_upload(file)
        await photo.extract_dimensions()

        if photo.should_compress():
            settings = photo.compression_settings()
            try:
                await photo.compress(**settings)
            except ValueError as e:
                logger.warning(f"Compression of {file.name} failed, keeping original: {e}")
            else:
                if photo.metadata.compressed:
                    logger.info(f"{file.name}: {format_size(photo.metadata.original_size)} -> "
                                f"{photo.format_size()} ({photo.metadata.compression_ratio}% smaller)")

        if photo.size > MAX_PHOTO_FINAL_SIZE:
            raise TooLarge("Image is too large even after compression")

        return photo

    def describe(self, item: PhotoModel) -> Dict[str, Any]:
        description = super().describe(item)
        if item.metadata.width and item.metadata.height:
            description['dimensions'] = f"{item.metadata.width}x{item.metadata.height}"
        description['compressed'] = item.metadata.compressed
        description['uploaded'] = item.upload_date
        return description
