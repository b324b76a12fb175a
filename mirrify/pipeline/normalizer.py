"""Image normalization with tiered fallback."""

import asyncio
import logging
from collections.abc import Sequence

from ..backends import (
    CloudCompressionBackend,
    EncoderBackend,
    LocalCanvasBackend,
    NativeResizeBackend,
    RemoteResizeBackend,
)
from ..backends.local import redraw
from ..config import ServerConfig
from ..errors import BackendError, EncodeError, UnsupportedFormat
from ..imaging import plan_dimensions, read_metadata
from ..imaging.metadata import set_pixel_limit
from ..models import (
    BackendUsed,
    ImageAsset,
    ImageMetadata,
    NormalizationRequest,
    NormalizationResult,
    TierAttempt,
)
from ..utils.data_urls import format_file_size

logger = logging.getLogger(__name__)


class ImageNormalizer:
    """Resize/re-encode an image through an ordered list of backends.

    Flow:
    1. Read metadata (unparseable bytes raise ``UnsupportedFormat``)
    2. Optionally pre-shrink oversized uploads locally
    3. Try each backend in order; the first success wins
    4. If every backend fails, pass the original bytes through

    Only step 1 can raise. Backend failures are logged and recorded in
    ``NormalizationResult.attempts``.
    """

    def __init__(
        self,
        backends: Sequence[EncoderBackend],
        pre_shrink_threshold_bytes: int | None = None,
    ):
        self.backends = list(backends)
        self.pre_shrink_threshold_bytes = pre_shrink_threshold_bytes

    async def normalize(
        self,
        asset: ImageAsset,
        request: NormalizationRequest | None = None,
    ) -> NormalizationResult:
        """Normalize one image. Never fails past the format pre-check."""
        request = request or NormalizationRequest()
        source = read_metadata(asset.data)
        target = plan_dimensions(source.width, source.height, request.max_dimension)

        logger.info(
            "Normalizing %s: %s, %s -> target %dx%d",
            asset.filename, source.dimensions, format_file_size(source.byte_size), *target,
        )

        working = await self._pre_shrink(asset, source, target, request)
        attempts: list[TierAttempt] = []

        for backend in self.backends:
            try:
                produced = await backend.encode(working, target, request)
                metadata = self._verify(produced)
            except BackendError as e:
                logger.warning("Backend %s failed: %s", backend.name.value, e)
                attempts.append(TierAttempt(backend=backend.name, succeeded=False, error=str(e)))
                continue
            except Exception as e:
                logger.exception("Backend %s raised unexpectedly", backend.name.value)
                attempts.append(TierAttempt(backend=backend.name, succeeded=False, error=repr(e)))
                continue

            attempts.append(TierAttempt(backend=backend.name, succeeded=True))
            logger.info(
                "Backend %s succeeded: %s, %s -> %s",
                backend.name.value, metadata.dimensions,
                format_file_size(source.byte_size), format_file_size(metadata.byte_size),
            )
            return NormalizationResult(
                asset=produced,
                metadata=metadata,
                backend_used=backend.name,
                attempts=attempts,
            )

        logger.warning("All backends failed for %s; passing original through", asset.filename)
        return NormalizationResult(
            asset=asset,
            metadata=source,
            backend_used=BackendUsed.PASSTHROUGH,
            attempts=attempts,
        )

    async def normalize_many(
        self,
        assets: Sequence[ImageAsset],
        request: NormalizationRequest | None = None,
    ) -> list[NormalizationResult]:
        """Normalize independent images concurrently."""
        return list(await asyncio.gather(*(self.normalize(a, request) for a in assets)))

    async def _pre_shrink(
        self,
        asset: ImageAsset,
        source: ImageMetadata,
        target: tuple[int, int],
        request: NormalizationRequest,
    ) -> ImageAsset:
        threshold = self.pre_shrink_threshold_bytes
        if threshold is None or source.byte_size <= threshold:
            return asset
        if target == (source.width, source.height):
            return asset
        try:
            shrunk = await asyncio.to_thread(
                redraw, asset, target[0], target[1], request.quality, source.density,
                keep_metadata=True,
            )
        except BackendError as e:
            logger.warning("Pre-shrink failed, continuing with original: %s", e)
            return asset
        logger.info(
            "Pre-shrunk %s from %s to %s",
            asset.filename, format_file_size(source.byte_size), format_file_size(shrunk.byte_size),
        )
        return shrunk

    @staticmethod
    def _verify(produced: ImageAsset) -> ImageMetadata:
        try:
            return read_metadata(produced.data)
        except UnsupportedFormat as e:
            raise EncodeError(f"Backend produced unreadable output: {e}") from e

    async def close(self):
        for backend in self.backends:
            await backend.close()


def build_normalizer(config: ServerConfig) -> ImageNormalizer:
    """Create the default native -> cloud -> local chain from configuration."""
    settings = config.normalization
    set_pixel_limit(settings.max_image_pixels)
    if settings.native_endpoint:
        native: EncoderBackend = RemoteResizeBackend(settings.native_endpoint, timeout=settings.native_timeout)
    else:
        native = NativeResizeBackend(timeout=settings.native_timeout)

    return ImageNormalizer(
        backends=[
            native,
            CloudCompressionBackend(config.compression_endpoint, timeout=config.compression.timeout),
            LocalCanvasBackend(),
        ],
        pre_shrink_threshold_bytes=settings.pre_shrink_threshold_bytes,
    )


def default_request(config: ServerConfig) -> NormalizationRequest:
    settings = config.normalization
    return NormalizationRequest(
        max_dimension=settings.max_dimension,
        quality=settings.quality,
        output_format=settings.output_format,
        preserve_metadata=settings.preserve_metadata,
    )
