"""Resize and re-encode images with Pillow, preserving density when asked."""

import io
import logging

from PIL import Image, UnidentifiedImageError

from ..errors import EncodeError
from .metadata import DEFAULT_DENSITY, read_metadata
from .planner import plan_dimensions

logger = logging.getLogger(__name__)

PIL_FORMATS = {
    "jpeg": "JPEG",
    "jpg": "JPEG",
    "png": "PNG",
    "webp": "WEBP",
}

MIME_TYPES = {
    "jpeg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}


def format_from_mime(mime_type: str) -> str | None:
    """Map ``image/jpeg`` style MIME types to an encoder key, or None."""
    subtype = mime_type.split("/", 1)[-1].split(";", 1)[0].strip().lower()
    if subtype == "jpg":
        subtype = "jpeg"
    return subtype if subtype in MIME_TYPES else None


def _save_options(output_format: str, quality: int) -> dict:
    if output_format == "jpeg":
        return {"quality": quality, "progressive": True, "optimize": True}
    if output_format == "png":
        return {"optimize": True, "compress_level": 9}
    if output_format == "webp":
        return {"quality": quality, "method": 6}
    raise EncodeError(f"Unsupported output format: {output_format}")


def _prepare_mode(img: Image.Image, output_format: str) -> Image.Image:
    if output_format == "jpeg" and img.mode not in ("RGB", "L", "CMYK"):
        return img.convert("RGB")
    if output_format == "webp" and img.mode not in ("RGB", "RGBA"):
        return img.convert("RGBA" if "A" in img.getbands() or "transparency" in img.info else "RGB")
    if output_format == "png" and img.mode not in ("1", "L", "LA", "P", "RGB", "RGBA", "I"):
        return img.convert("RGBA")
    return img


def _source_metadata(img: Image.Image, keep_icc: bool) -> dict:
    """EXIF and ICC save options copied from the source image."""
    options = {}
    exif = img.getexif()
    if exif:
        options["exif"] = exif.tobytes()
    # A profile only describes the pixels it came with
    icc_profile = img.info.get("icc_profile")
    if icc_profile and keep_icc:
        options["icc_profile"] = icc_profile
    return options


def resize_and_encode(
    data: bytes,
    width: int,
    height: int,
    *,
    output_format: str = "jpeg",
    quality: int = 90,
    dpi: int | None = None,
    keep_metadata: bool = False,
) -> bytes:
    """Resize to ``width`` x ``height`` (never enlarging) and encode.

    Args:
        data: Source image bytes
        width: Target width in pixels
        height: Target height in pixels
        output_format: One of ``jpeg``, ``png``, ``webp``
        quality: Encoder quality, 1-100
        dpi: Density to write into the output, or None to omit it
        keep_metadata: Copy the source EXIF block (including Orientation)
            and ICC profile into the output

    Returns:
        Encoded image bytes

    Raises:
        EncodeError: on invalid parameters, an image Pillow cannot decode/encode,
            or one above the pixel limit
    """
    if width <= 0 or height <= 0:
        raise EncodeError(f"Invalid target size {width}x{height}")
    pil_format = PIL_FORMATS.get(output_format)
    if pil_format is None:
        raise EncodeError(f"Unsupported output format: {output_format}")
    options = _save_options(output_format, quality)
    if dpi:
        options["dpi"] = (dpi, dpi)

    try:
        with Image.open(io.BytesIO(data)) as img:
            # Fit inside: clamp to the source instead of upscaling
            if width > img.width or height > img.height:
                width, height = img.width, img.height
            img.load()
            out = img if (width, height) == img.size else img.resize((width, height), Image.Resampling.LANCZOS)
            converted = _prepare_mode(out, output_format)
            if keep_metadata:
                options.update(_source_metadata(img, keep_icc=converted.mode == img.mode))
            buffer = io.BytesIO()
            converted.save(buffer, format=pil_format, **options)
    except Image.DecompressionBombError as e:
        raise EncodeError(f"Image exceeds pixel limit: {e}") from e
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise EncodeError(f"Failed to encode image: {e}") from e

    return buffer.getvalue()


def process_image(
    data: bytes,
    *,
    max_dimension: int = 1024,
    quality: int = 90,
    output_format: str = "jpeg",
    preserve_metadata: bool = True,
    dpi: int | None = None,
) -> bytes:
    """Plan dimensions on the smaller side and re-encode.

    With ``preserve_metadata`` the output density is ``dpi`` if given, else the
    source density, else 72. EXIF and ICC data are carried over too.
    """
    metadata = read_metadata(data)
    logger.info(
        "Original image metadata: %s, density=%s, format=%s, size=%d",
        metadata.dimensions, metadata.density, metadata.format, metadata.byte_size,
    )

    new_width, new_height = plan_dimensions(metadata.width, metadata.height, max_dimension)
    logger.info("Resizing from %s to %dx%d", metadata.dimensions, new_width, new_height)

    density = None
    if preserve_metadata:
        density = dpi or metadata.density or DEFAULT_DENSITY

    return resize_and_encode(
        data,
        new_width,
        new_height,
        output_format=output_format,
        quality=quality,
        dpi=density,
        keep_metadata=preserve_metadata,
    )
