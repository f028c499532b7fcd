"""Image utilities for meter photographs."""

from __future__ import annotations

import base64
import io

from PIL import Image, ImageOps, UnidentifiedImageError
from pillow_heif import register_heif_opener

register_heif_opener()

MAX_PHOTO_DIMENSION = 2048


def normalize_meter_photo(image_bytes: bytes, max_dimension: int = MAX_PHOTO_DIMENSION) -> bytes:
    """Upright, RGB, downscaled JPEG of a phone photo (JPEG, PNG, WebP or HEIC).

    Raises ``ValueError`` when Pillow cannot decode the image.
    """
    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ValueError("Unsupported or corrupt image") from exc
    img = ImageOps.exif_transpose(img)
    if img.mode != "RGB":
        img = img.convert("RGB")
    img.thumbnail((max_dimension, max_dimension))
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=90)
    return buf.getvalue()


def image_to_base64(image_bytes: bytes) -> str:
    """Encode raw image bytes to a Base64 string."""
    return base64.b64encode(image_bytes).decode("utf-8")


def get_image_dimensions(image_bytes: bytes) -> tuple[int, int]:
    """Return the ``(width, height)`` of an image."""
    img = Image.open(io.BytesIO(image_bytes))
    return img.size
