"""
media.py
--------
Image handling for advertisement uploads: validates the upload with
Pillow, normalizes it to an RGB JPEG within a bounded size, and removes
stored images when an advertisement is replaced or deleted.
"""

import logging
import os
from datetime import datetime, timezone

from PIL import Image, ImageOps, UnidentifiedImageError
from werkzeug.utils import secure_filename

log = logging.getLogger(__name__)


class InvalidImageError(ValueError):
    """Raised when an uploaded file cannot be read as an image."""


def save_advertisement_image(file_storage, image_dir, max_size=(1200, 800), quality=85):
    """Store an uploaded image as JPEG under image_dir; returns the stored filename."""
    try:
        img = Image.open(file_storage.stream)
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidImageError("Uploaded file is not a valid image") from e

    img = ImageOps.exif_transpose(img)
    if img.mode != 'RGB':
        img = img.convert('RGB')
    img.thumbnail(max_size)

    ts = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H-%M-%S-%fZ')
    filename = secure_filename(f"ad-{ts}.jpg")
    os.makedirs(image_dir, exist_ok=True)
    img.save(os.path.join(image_dir, filename), 'JPEG', quality=quality)
    log.info(f"Saved advertisement image {filename} ({img.width}x{img.height})")
    return filename


def remove_advertisement_image(image_url, image_dir):
    """Delete a stored image referenced by image_url, if it lives in image_dir."""
    if not image_url:
        return False
    filename = secure_filename(os.path.basename(image_url))
    path = os.path.join(image_dir, filename)
    if not filename.startswith('ad-') or not os.path.isfile(path):
        return False
    try:
        os.remove(path)
        return True
    except OSError as e:
        log.warning(f"Failed to remove advertisement image {filename}: {e}")
        return False
