"""Shared pytest fixtures: generated images, public/cache directories, clean global state."""

import io
import logging
from pathlib import Path
from typing import Dict, Iterator

import pytest
from PIL import Image

from nocojs.store import close_all_stores

RED = (200, 30, 40)


def _gradient(width: int, height: int) -> Image.Image:
    img = Image.new("RGB", (width, height))
    img.putdata([
        (x * 255 // max(1, width - 1), y * 255 // max(1, height - 1), (x + y) * 7 % 256)
        for y in range(height)
        for x in range(width)
    ])
    return img


def png_bytes(img: Image.Image) -> bytes:
    """Encode a Pillow image as PNG bytes."""
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def public_dir(tmp_path: Path) -> Path:
    """Create a public directory with a handful of test images.

    Returns:
        Path: Directory containing ``images/`` with PNG, JPEG, GIF and WebP files.
    """
    root = tmp_path / "public"
    images = root / "images"
    images.mkdir(parents=True)

    Image.new("RGB", (30, 20), RED).save(images / "red.png")
    _gradient(40, 50).save(images / "photo.jpg", quality=90)
    _gradient(4, 5).save(images / "small.png")
    _gradient(10, 100).save(images / "tall.png")

    alpha = Image.new("RGBA", (20, 20), (0, 120, 255, 255))
    for x in range(10):
        for y in range(20):
            alpha.putpixel((x, y), (0, 120, 255, 0))
    alpha.save(images / "alpha.png")

    frames = [Image.new("RGB", (12, 6), (0, 255, 0)), Image.new("RGB", (12, 6), (0, 0, 255))]
    frames[0].save(images / "anim.gif", save_all=True, append_images=frames[1:])

    _gradient(32, 16).save(images / "pic.webp")
    (images / "my pic.png").write_bytes(png_bytes(Image.new("RGB", (8, 8), RED)))
    (images / "broken.png").write_bytes(b"this is not an image at all")
    return root


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Location of the cache directory (created lazily by the store)."""
    return tmp_path / ".nocojs"


@pytest.fixture
def options(public_dir: Path, cache_dir: Path) -> Dict[str, object]:
    """Transform options pointing at the temporary directories, keeping every log entry."""
    return {
        "publicDir": str(public_dir),
        "cacheFileDir": str(cache_dir),
        "logLevel": "verbose",
    }


@pytest.fixture(autouse=True)
def clean_global_state() -> Iterator[None]:
    """Close cached stores and undo CLI logging configuration after each test."""
    yield
    close_all_stores()
    nocojs_logger = logging.getLogger("nocojs")
    for handler in nocojs_logger.handlers[:]:
        nocojs_logger.removeHandler(handler)
        handler.close()
    nocojs_logger.propagate = True
    nocojs_logger.setLevel(logging.NOTSET)
