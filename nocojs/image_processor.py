"""
Image decoding, resizing and data URI encoding for nocojs placeholders.
"""

import base64
import io
import logging
import math
import urllib.parse
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from .errors import EncodingError

logger = logging.getLogger(__name__)

# Width used when neither width nor height is requested
DEFAULT_WIDTH = 16

# ISO BMFF brands that are still images rather than video
_IMAGE_BRANDS = {b'avif', b'avis', b'mif1', b'msf1', b'heic', b'heix', b'heif'}

_DATA_TOKEN = "___DATA___"

_SVG_TEMPLATE = (
    "<svg xmlns='http://www.w3.org/2000/svg' viewBox='0 0 {w} {h}' width='{w}' height='{h}'>"
    "<image width='100%' height='100%' x='0' y='0' preserveAspectRatio='none' href='" + _DATA_TOKEN + "'/>"
    "</svg>"
)


@dataclass(frozen=True)
class RasterImage:
    """A decoded image plus the dimensions of the image it was derived from."""
    image: Image.Image
    original_size: Tuple[int, int]

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def has_alpha(self) -> bool:
        return self.image.mode in ('RGBA', 'LA', 'PA')

    def with_image(self, image: Image.Image) -> "RasterImage":
        return replace(self, image=image)


def is_video_file(data: bytes) -> bool:
    """
    Check if the file data appears to be a video.

    Args:
        data: The file data to check

    Returns:
        bool: True if the file appears to be a video, False otherwise
    """
    if len(data) < 12:
        return False
    # MPEG Program Stream
    if data[0:4] == b'\x00\x00\x01\xBA':
        return True
    # Matroska/WebM
    if data[0:4] == b'\x1A\x45\xDF\xA3':
        return True
    # MP4/QuickTime, unless the major brand is an image format (AVIF/HEIF)
    if data[4:8] == b'ftyp':
        return data[8:12] not in _IMAGE_BRANDS
    # AVI
    if data[0:4] == b'RIFF' and data[8:12] == b'AVI ':
        return True
    # Flash Video
    if data[0:3] == b'FLV':
        return True
    return False


def _has_transparency(img: Image.Image) -> bool:
    return img.mode in ('RGBA', 'LA', 'PA') or (img.mode in ('P', 'L', 'RGB') and 'transparency' in img.info)


def decode(data: bytes) -> RasterImage:
    """
    Decode raw image bytes (JPEG, PNG, GIF, WebP, AVIF, ...).

    The result is always RGB or RGBA; animated images use their first frame and
    EXIF orientation is applied.

    Raises:
        EncodingError: If the bytes are empty, a video, or not a decodable image
    """
    if not data:
        raise EncodingError("Image data is empty")
    if is_video_file(data):
        raise EncodingError("Data looks like a video file, not an image")

    try:
        img = Image.open(io.BytesIO(data))
        img.seek(0)
        img.load()
        img = ImageOps.exif_transpose(img)
        mode = 'RGBA' if _has_transparency(img) else 'RGB'
        img = img.convert(mode)
    except (UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise EncodingError(f"Unsupported image format: {e}") from e
    except (OSError, ValueError, SyntaxError, EOFError) as e:
        raise EncodingError(f"Corrupt image data: {e}") from e

    if img.width < 1 or img.height < 1:
        raise EncodingError(f"Image has invalid dimensions {img.width}x{img.height}")

    logger.debug(f"Decoded {img.width}x{img.height} image ({mode})")
    return RasterImage(img, (img.width, img.height))


def target_size(original_size: Tuple[int, int], width: Optional[int] = None,
                height: Optional[int] = None) -> Tuple[int, int]:
    """
    Work out the output dimensions for an image.

    Neither given: DEFAULT_WIDTH wide, height follows the aspect ratio.
    One given: the other is floor(given * other / given_original).
    Both given: exactly those dimensions.
    """
    original_width, original_height = original_size
    if width and height:
        return width, height
    if height:
        return max(1, math.floor(height * original_width / original_height)), height
    width = width or DEFAULT_WIDTH
    return width, max(1, math.floor(width * original_height / original_width))


def resize(raster: RasterImage, width: Optional[int] = None, height: Optional[int] = None,
           resample: int = Image.LANCZOS) -> RasterImage:
    """Resize following the target_size policy; the original size is kept."""
    size = target_size((raster.width, raster.height), width, height)
    if size == raster.image.size:
        return raster
    logger.debug(f"Resizing image from {raster.width}x{raster.height} to {size[0]}x{size[1]}")
    return raster.with_image(raster.image.resize(size, resample))


def encode_png(img: Image.Image) -> bytes:
    """Encode an image as PNG bytes."""
    output_buffer = io.BytesIO()
    try:
        img.save(output_buffer, format='PNG', optimize=True)
    except (OSError, ValueError) as e:
        raise EncodingError(f"Failed to encode PNG: {e}") from e
    return output_buffer.getvalue()


def png_data_uri(png_bytes: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes).decode('ascii')


def wrap_with_svg(data_uri: str, width: int, height: int) -> str:
    """
    Embed a raster data URI in an SVG whose viewBox has the given dimensions.

    The SVG is percent-encoded; the raster data URI is spliced in afterwards
    because base64 text is already safe inside a data URI.
    """
    svg = _SVG_TEMPLATE.format(w=width, h=height)
    encoded = "data:image/svg+xml," + urllib.parse.quote(svg, safe='')
    return encoded.replace(_DATA_TOKEN, data_uri)


def encode_data_uri(raster: RasterImage, wrap: bool) -> str:
    """
    Encode a raster image as a data URI.

    Args:
        raster: The image to encode
        wrap: Wrap the PNG in an SVG carrying the original aspect ratio

    Returns:
        str: ``data:image/svg+xml,...`` when wrapped, else ``data:image/png;base64,...``
    """
    data_uri = png_data_uri(encode_png(raster.image))
    if not wrap:
        return data_uri
    original_width, original_height = raster.original_size
    return wrap_with_svg(data_uri, original_width, original_height)


def unwrap_data_uri(data_uri: str) -> bytes:
    """
    Return the raster bytes inside a placeholder data URI.

    Accepts both plain ``data:image/...;base64,`` URIs and SVG wrapped ones.
    """
    if data_uri.startswith("data:image/svg+xml,"):
        svg = urllib.parse.unquote(data_uri[len("data:image/svg+xml,"):])
        start = svg.find("href='")
        if start == -1:
            raise EncodingError("SVG placeholder does not embed an image")
        start += len("href='")
        end = svg.find("'", start)
        data_uri = svg[start:end]
    header, sep, payload = data_uri.partition(",")
    if not sep or not header.startswith("data:image/") or not header.endswith(";base64"):
        raise EncodingError(f"Not a base64 image data URI: {header[:40]}")
    return base64.b64decode(payload)

