"""
Image decoding and re-encoding helpers for photo compression.
"""
import io
import logging
from typing import Optional, Tuple

from PIL import Image

logger = logging.getLogger(__name__)

# Pillow format name per MIME type
PIL_FORMATS = {
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/png": "PNG",
    "image/gif": "GIF",
    "image/webp": "WEBP",
}


def read_dimensions(image_data: bytes) -> Optional[Tuple[int, int]]:
    """
    Read width and height from the image header.

    Returns:
        (width, height) or None if the data cannot be decoded
    """
    try:
        with Image.open(io.BytesIO(image_data)) as img:
            return img.size
    except Exception as ex:
        logger.warning(f"Could not read image dimensions: {ex}")
        return None


def fit_dimensions(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Scale down to fit the bounding box, preserving aspect ratio. Never upscales."""
    new_width = float(width)
    new_height = float(height)

    if new_width > max_width:
        new_height = new_height * max_width / new_width
        new_width = max_width

    if new_height > max_height:
        new_width = new_width * max_height / new_height
        new_height = max_height

    return max(1, round(new_width)), max(1, round(new_height))


def _flatten_to_rgb(img: Image.Image) -> Image.Image:
    # White background for transparency
    if img.mode in ('RGBA', 'P', 'LA'):
        if img.mode == 'P':
            img = img.convert('RGBA')
        background = Image.new('RGB', img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1] if img.mode in ('RGBA', 'LA') else None)
        return background
    if img.mode != 'RGB':
        return img.convert('RGB')
    return img


def reencode(image_data: bytes, mime_type: str, max_width: int, max_height: int,
             quality: float) -> Tuple[bytes, str, Tuple[int, int], Tuple[int, int]]:
    """
    Resize to fit and re-encode an image.

    PNG input is converted to JPEG when quality < 1.0; every other format
    keeps its own encoder.

    Args:
        image_data: Original image bytes
        mime_type: Declared type of the original
        max_width: Bounding box width
        max_height: Bounding box height
        quality: Encoder quality between 0 and 1

    Returns:
        (encoded bytes, output MIME type, new (w, h), original (w, h))

    Raises:
        ValueError: If the image cannot be decoded
    """
    try:
        img = Image.open(io.BytesIO(image_data))
        img.load()
    except Exception as ex:
        raise ValueError(f"Failed to load image for compression: {ex}") from ex

    original_size = img.size
    new_size = fit_dimensions(img.width, img.height, max_width, max_height)
    if new_size != original_size:
        img = img.resize(new_size, Image.Resampling.LANCZOS)

    mime_type = (mime_type or "image/jpeg").lower()
    out_type = "image/jpeg" if mime_type == "image/jpg" else mime_type
    pil_quality = max(1, min(100, int(round(quality * 100))))

    buf = io.BytesIO()
    if mime_type == "image/png" and quality < 1.0:
        out_type = "image/jpeg"
        _flatten_to_rgb(img).save(buf, format="JPEG", quality=pil_quality, optimize=True)
    elif out_type == "image/png":
        img.save(buf, format="PNG", optimize=True)
    elif out_type == "image/webp":
        img.save(buf, format="WEBP", quality=pil_quality)
    elif out_type == "image/gif":
        img.save(buf, format="GIF", optimize=True)
    else:
        out_type = "image/jpeg"
        _flatten_to_rgb(img).save(buf, format="JPEG", quality=pil_quality, optimize=True, progressive=True)

    return buf.getvalue(), out_type, new_size, original_size
