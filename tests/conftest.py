# Test fixtures and configuration
import io
import pytest
import sys
from pathlib import Path

from PIL import Image

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from mirrify.models import ImageAsset


def encode_image(
    width: int,
    height: int,
    fmt: str = "JPEG",
    dpi: int | None = None,
    color=(200, 40, 90),
) -> bytes:
    """Encode a solid-color test image."""
    mode = "RGBA" if fmt == "PNG" else "RGB"
    fill = color + (255,) if mode == "RGBA" else color
    img = Image.new(mode, (width, height), fill)
    buffer = io.BytesIO()
    options = {"dpi": (dpi, dpi)} if dpi else {}
    img.save(buffer, format=fmt, **options)
    return buffer.getvalue()


def decoded_size(data: bytes) -> tuple[int, int]:
    with Image.open(io.BytesIO(data)) as img:
        return img.size


ORIENTATION = 0x0112


def encode_with_exif(
    width: int,
    height: int,
    orientation: int = 6,
    icc_profile: bytes | None = None,
) -> bytes:
    """Encode a JPEG carrying an EXIF Orientation tag and optional ICC profile."""
    img = Image.new("RGB", (width, height), (10, 120, 200))
    exif = Image.Exif()
    exif[ORIENTATION] = orientation
    options = {"exif": exif.tobytes()}
    if icc_profile:
        options["icc_profile"] = icc_profile
    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", **options)
    return buffer.getvalue()


def orientation_of(data: bytes) -> int | None:
    with Image.open(io.BytesIO(data)) as img:
        return img.getexif().get(ORIENTATION)


@pytest.fixture
def small_pixel_limit(monkeypatch):
    """Lower Pillow's pixel limit to 1000 for the test, restoring it afterwards."""
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    return 1000


@pytest.fixture
def make_image():
    """Factory for encoded test images."""
    return encode_image


@pytest.fixture
def make_asset():
    """Factory for ImageAsset test inputs."""
    def _make(width: int, height: int, fmt: str = "JPEG", dpi: int | None = None) -> ImageAsset:
        mime = {"JPEG": "image/jpeg", "PNG": "image/png", "WEBP": "image/webp"}[fmt]
        return ImageAsset(
            data=encode_image(width, height, fmt, dpi),
            mime_type=mime,
            filename=f"test.{fmt.lower()}",
        )
    return _make


@pytest.fixture
def minimal_png_bytes():
    """Minimal valid PNG image bytes."""
    return bytes([
        0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A,  # PNG signature
        0x00, 0x00, 0x00, 0x0D, 0x49, 0x48, 0x44, 0x52,  # IHDR chunk
        0x00, 0x00, 0x00, 0x01, 0x00, 0x00, 0x00, 0x01,  # 1x1 dimensions
        0x08, 0x02, 0x00, 0x00, 0x00, 0x90, 0x77, 0x53,
        0xDE, 0x00, 0x00, 0x00, 0x0C, 0x49, 0x44, 0x41,  # IDAT chunk
        0x54, 0x08, 0xD7, 0x63, 0xF8, 0xCF, 0xC0, 0x00,
        0x00, 0x00, 0x03, 0x00, 0x01, 0x00, 0x05, 0xFE,
        0xD4, 0xAA, 0x00, 0x00, 0x00, 0x00, 0x49, 0x45,  # IEND chunk
        0x4E, 0x44, 0xAE, 0x42, 0x60, 0x82
    ])


@pytest.fixture
def not_an_image():
    return b"this is definitely not an image"
