"""
Tests for advertisement image handling
"""
import io
import os

import pytest
from PIL import Image
from werkzeug.datastructures import FileStorage

from ppswz_portal.media import InvalidImageError, remove_advertisement_image, save_advertisement_image


def upload(size=(640, 480), mode="RGB", fmt="PNG", filename="poster.png"):
    buffer = io.BytesIO()
    Image.new(mode, size, color="teal" if mode == "RGB" else 128).save(buffer, fmt)
    buffer.seek(0)
    return FileStorage(stream=buffer, filename=filename)


def test_saves_jpeg_within_bounds(tmp_path):
    filename = save_advertisement_image(upload(size=(3000, 1000)), str(tmp_path), max_size=(1200, 800))

    assert filename.startswith("ad-") and filename.endswith(".jpg")
    with Image.open(tmp_path / filename) as img:
        assert img.format == "JPEG"
        assert img.mode == "RGB"
        assert img.size == (1200, 400)


def test_small_images_are_not_enlarged(tmp_path):
    filename = save_advertisement_image(upload(size=(300, 200)), str(tmp_path))

    with Image.open(tmp_path / filename) as img:
        assert img.size == (300, 200)


def test_grayscale_is_converted(tmp_path):
    filename = save_advertisement_image(upload(mode="L"), str(tmp_path))

    with Image.open(tmp_path / filename) as img:
        assert img.mode == "RGB"


def test_rejects_non_image(tmp_path):
    bogus = FileStorage(stream=io.BytesIO(b"%PDF-1.4 not an image"), filename="flyer.png")

    with pytest.raises(InvalidImageError):
        save_advertisement_image(bogus, str(tmp_path))
    assert os.listdir(tmp_path) == []


def test_remove_only_touches_stored_ads(tmp_path):
    filename = save_advertisement_image(upload(), str(tmp_path))
    other = tmp_path / "logo.jpg"
    other.write_bytes(b"x")

    assert remove_advertisement_image(f"/static/advertisements/{filename}", str(tmp_path))
    assert not (tmp_path / filename).exists()
    assert not remove_advertisement_image("/static/advertisements/logo.jpg", str(tmp_path))
    assert other.exists()
    assert not remove_advertisement_image(None, str(tmp_path))
    assert not remove_advertisement_image("https://cdn.example.com/ad-banner.jpg", str(tmp_path))
