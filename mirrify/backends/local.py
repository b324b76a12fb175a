"""Local tier: in-memory bitmap redraw, no network."""

import asyncio
import io

from PIL import Image, UnidentifiedImageError

from ..errors import EncodeError
from ..imaging import fit_within, resize_and_encode
from ..imaging.processor import MIME_TYPES, format_from_mime
from ..models import BackendUsed, ImageAsset, NormalizationRequest
from .base import EncoderBackend


def _source_format(asset: ImageAsset) -> str:
    """Encoder key for the asset's MIME type, falling back to the decoded format."""
    fmt = format_from_mime(asset.mime_type)
    if fmt is not None:
        return fmt
    try:
        with Image.open(io.BytesIO(asset.data)) as img:
            fmt = (img.format or "").lower()
    except (Image.DecompressionBombError, UnidentifiedImageError, OSError) as e:
        raise EncodeError(f"Cannot decode image: {e}") from e
    return fmt if fmt in MIME_TYPES else "jpeg"


def _size(data: bytes) -> tuple[int, int]:
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (Image.DecompressionBombError, UnidentifiedImageError, OSError) as e:
        raise EncodeError(f"Cannot decode image: {e}") from e


def redraw(
    asset: ImageAsset,
    width: int,
    height: int,
    quality: int,
    dpi: int | None = None,
    keep_metadata: bool = False,
) -> ImageAsset:
    """Redraw at an explicit size in the source format."""
    fmt = _source_format(asset)
    data = resize_and_encode(
        asset.data, width, height, output_format=fmt, quality=quality, dpi=dpi, keep_metadata=keep_metadata,
    )
    return asset.replace_data(data, MIME_TYPES[fmt])


class LocalCanvasBackend(EncoderBackend):
    """Scales on the larger side and re-encodes in the source MIME type."""

    name = BackendUsed.LOCAL

    async def encode(
        self,
        asset: ImageAsset,
        target: tuple[int, int],
        request: NormalizationRequest,
    ) -> ImageAsset:
        return await asyncio.to_thread(self._encode_sync, asset, request)

    def _encode_sync(self, asset: ImageAsset, request: NormalizationRequest) -> ImageAsset:
        width, height = fit_within(*_size(asset.data), request.max_dimension)
        return redraw(asset, width, height, request.quality, keep_metadata=request.preserve_metadata)
