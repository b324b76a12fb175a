"""Header-only image inspection."""

import io

from PIL import Image, UnidentifiedImageError

from ..errors import UnsupportedFormat
from ..models.image import ImageMetadata

DEFAULT_DENSITY = 72

# 0x3FFF * 0x3FFF, the input limit sharp/libvips applies by default
DEFAULT_PIXEL_LIMIT = 0x3FFF * 0x3FFF


def set_pixel_limit(limit: int | None) -> None:
    """Set the largest pixel count Pillow will open. None removes the limit."""
    Image.MAX_IMAGE_PIXELS = limit


set_pixel_limit(DEFAULT_PIXEL_LIMIT)


def _density(info: dict) -> int:
    """Horizontal DPI from Pillow's info dict, 72 when absent or zero."""
    dpi = info.get("dpi")
    if not dpi:
        return DEFAULT_DENSITY
    # PNG stores pixels per metre, so 144 dpi reads back as 143.99
    value = round(float(dpi[0]))
    return value if value > 0 else DEFAULT_DENSITY


def read_metadata(data: bytes) -> ImageMetadata:
    """Read width, height, density and format without decoding pixels.

    Raises:
        UnsupportedFormat: if the bytes are not a recognizable image, or the
            image has more pixels than ``Image.MAX_IMAGE_PIXELS``
    """
    if not data:
        raise UnsupportedFormat("Empty image buffer")
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            fmt = (img.format or "").lower()
            density = _density(img.info)
            bands = img.getbands()
            has_alpha = "A" in bands or "transparency" in img.info
    except Image.DecompressionBombError as e:
        raise UnsupportedFormat(f"Image exceeds pixel limit: {e}") from e
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise UnsupportedFormat(f"Cannot parse image: {e}") from e

    # Pillow only refuses at twice the limit; reject everything above it
    limit = Image.MAX_IMAGE_PIXELS
    if limit and width * height > limit:
        raise UnsupportedFormat(f"Image exceeds pixel limit: {width * height} > {limit} pixels")

    return ImageMetadata(
        width=width,
        height=height,
        density=density,
        format=fmt,
        byte_size=len(data),
        channels=len(bands),
        has_alpha=has_alpha,
    )
