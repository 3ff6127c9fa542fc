"""
Placeholder generation algorithms.
"""

import logging
from typing import Callable, Dict, Optional, Tuple

from PIL import Image, ImageChops, ImageFilter, ImageStat

from .image_processor import RasterImage, encode_data_uri, resize, target_size
from .options import PlaceholderType

logger = logging.getLogger(__name__)

# Longest side of the intermediate image used for blurring
BLUR_BOX = 8

# Luma threshold for black-and-white output
BW_THRESHOLD = 128

# Bits kept per channel when bucketing colours for dominant-color
DOMINANT_BITS = 5

Color = Tuple[int, int, int]


def _normal(raster: RasterImage, width: Optional[int], height: Optional[int]) -> RasterImage:
    return resize(raster, width, height)


def _blurred(raster: RasterImage, width: Optional[int], height: Optional[int]) -> RasterImage:
    size = target_size(raster.image.size, width, height)
    small = raster.image.copy()
    small.thumbnail((BLUR_BOX, BLUR_BOX), Image.BOX)
    soft = small.resize(size, Image.BILINEAR)
    radius = max(1, round(max(size) * 0.05))
    return raster.with_image(soft.filter(ImageFilter.GaussianBlur(radius)))


def _grayscale(raster: RasterImage, width: Optional[int], height: Optional[int]) -> RasterImage:
    # Desaturate first so resampling never reintroduces colour
    mode = 'LA' if raster.has_alpha else 'L'
    return resize(raster.with_image(raster.image.convert(mode)), width, height)


def _black_and_white(raster: RasterImage, width: Optional[int], height: Optional[int]) -> RasterImage:
    # Threshold after resizing; resampling would otherwise create mid-tones
    gray = resize(raster.with_image(raster.image.convert('L')), width, height)
    lut = [0 if value < BW_THRESHOLD else 255 for value in range(256)]
    return gray.with_image(gray.image.point(lut))


def average_color(img: Image.Image) -> Color:
    """Arithmetic mean of every pixel's RGB channels."""
    stat = ImageStat.Stat(img.convert('RGB'))
    r, g, b = (int(total // stat.count[0]) for total in stat.sum)
    return r, g, b


def dominant_color(img: Image.Image) -> Color:
    """
    Most common colour after quantising each channel to DOMINANT_BITS bits.

    The winning bucket is reported as the mean of the pixels that fall in it,
    so a solid image keeps its exact colour. Ties are broken by the lowest
    bucket so the result is deterministic.
    """
    rgb = img.convert('RGB')
    shift = 8 - DOMINANT_BITS
    quantized = rgb.point([(value >> shift) << shift for value in range(256)] * 3)
    colors = quantized.getcolors(maxcolors=quantized.width * quantized.height)
    count, bucket = min(colors, key=lambda item: (-item[0], item[1]))

    masks = [band.point([255 if value == level else 0 for value in range(256)])
             for band, level in zip(quantized.split(), bucket)]
    mask = ImageChops.multiply(ImageChops.multiply(masks[0], masks[1]), masks[2])
    stat = ImageStat.Stat(rgb, mask)
    r, g, b = (int(total // stat.count[0]) for total in stat.sum)
    logger.debug(f"Dominant colour {(r, g, b)} covers {count} pixels")
    return r, g, b


def _solid(raster: RasterImage, width: Optional[int], height: Optional[int], color: Tuple[int, ...]) -> RasterImage:
    size = target_size(raster.image.size, width, height)
    mode = 'RGBA' if len(color) == 4 else 'RGB'
    return raster.with_image(Image.new(mode, size, color))


def _average(raster: RasterImage, width: Optional[int], height: Optional[int]) -> RasterImage:
    return _solid(raster, width, height, average_color(raster.image))


def _dominant(raster: RasterImage, width: Optional[int], height: Optional[int]) -> RasterImage:
    return _solid(raster, width, height, dominant_color(raster.image))


def _transparent(raster: RasterImage, width: Optional[int], height: Optional[int]) -> RasterImage:
    return _solid(raster, width, height, (0, 0, 0, 0))


_ALGORITHMS: Dict[PlaceholderType, Callable[[RasterImage, Optional[int], Optional[int]], RasterImage]] = {
    PlaceholderType.NORMAL: _normal,
    PlaceholderType.BLURRED: _blurred,
    PlaceholderType.GRAYSCALE: _grayscale,
    PlaceholderType.BLACK_AND_WHITE: _black_and_white,
    PlaceholderType.AVERAGE_COLOR: _average,
    PlaceholderType.DOMINANT_COLOR: _dominant,
    PlaceholderType.TRANSPARENT: _transparent,
}


def render(raster: RasterImage, placeholder_type: PlaceholderType,
           width: Optional[int] = None, height: Optional[int] = None) -> RasterImage:
    """Apply a placeholder algorithm without encoding the result."""
    return _ALGORITHMS[PlaceholderType.parse(placeholder_type)](raster, width, height)


def generate(raster: RasterImage, placeholder_type: PlaceholderType, width: Optional[int] = None,
             height: Optional[int] = None, wrap_with_svg: bool = True) -> str:
    """
    Generate a placeholder data URI.

    Args:
        raster: The decoded source image
        placeholder_type: Algorithm to apply
        width: Requested output width
        height: Requested output height
        wrap_with_svg: Wrap the PNG in an aspect-ratio preserving SVG

    Returns:
        str: The placeholder data URI
    """
    output = render(raster, placeholder_type, width, height)
    logger.debug(f"Rendered {PlaceholderType.parse(placeholder_type).value} placeholder at {output.width}x{output.height}")
    return encode_data_uri(output, wrap_with_svg)
