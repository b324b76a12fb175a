"""Native resize tier: high-fidelity resize with density preservation."""

import asyncio
import logging

import httpx

from ..errors import BackendUnavailable, EncodeError, UnsupportedFormat
from ..imaging import read_metadata, resize_and_encode
from ..imaging.metadata import DEFAULT_DENSITY
from ..imaging.processor import MIME_TYPES
from ..models import BackendUsed, ImageAsset, NormalizationRequest
from .base import EncoderBackend

logger = logging.getLogger(__name__)


def _output_density(source_density: int, request: NormalizationRequest) -> int | None:
    if not request.preserve_metadata:
        return None
    return request.dpi or source_density or DEFAULT_DENSITY


class NativeResizeBackend(EncoderBackend):
    """Runs the Pillow processor in a worker thread with a bounded wait."""

    name = BackendUsed.NATIVE

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    async def encode(
        self,
        asset: ImageAsset,
        target: tuple[int, int],
        request: NormalizationRequest,
    ) -> ImageAsset:
        try:
            source = read_metadata(asset.data)
        except UnsupportedFormat as e:
            raise EncodeError(str(e)) from e

        width, height = target
        try:
            data = await asyncio.wait_for(
                asyncio.to_thread(
                    resize_and_encode,
                    asset.data,
                    width,
                    height,
                    output_format=request.output_format,
                    quality=request.quality,
                    dpi=_output_density(source.density, request),
                    keep_metadata=request.preserve_metadata,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise BackendUnavailable(f"Native resize timed out after {self.timeout}s") from e

        return asset.replace_data(data, MIME_TYPES[request.output_format])


class RemoteResizeBackend(EncoderBackend):
    """Calls a remote ``/api/process-image`` endpoint over multipart HTTP."""

    name = BackendUsed.NATIVE

    def __init__(self, endpoint: str, timeout: float = 30.0, client: httpx.AsyncClient | None = None):
        self.endpoint = endpoint
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def encode(
        self,
        asset: ImageAsset,
        target: tuple[int, int],
        request: NormalizationRequest,
    ) -> ImageAsset:
        # The remote service plans its own dimensions from maxDimension
        form = {
            "maxDimension": str(request.max_dimension),
            "quality": str(request.quality),
            "format": request.output_format,
            "preserveMetadata": "true" if request.preserve_metadata else "false",
        }
        if request.dpi:
            form["dpi"] = str(request.dpi)
        files = {"image": (asset.filename, asset.data, asset.mime_type)}

        try:
            response = await self.client.post(self.endpoint, data=form, files=files)
        except httpx.HTTPError as e:
            raise BackendUnavailable(f"Remote resize request failed: {e}") from e

        if response.status_code >= 500:
            raise BackendUnavailable(f"Remote resize service error {response.status_code}")
        if response.status_code != 200:
            raise EncodeError(f"Remote resize rejected image: {response.text[:200]}")

        logger.debug(
            "Remote resize: dimensions=%s dpi=%s",
            response.headers.get("X-Dimensions"),
            response.headers.get("X-DPI"),
        )
        mime_type = response.headers.get("Content-Type", MIME_TYPES[request.output_format])
        return asset.replace_data(response.content, mime_type.split(";", 1)[0])

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
