"""Cloud compression tier: remote smart-compression API over JSON/base64."""

import logging
from typing import Any

import httpx

from ..errors import BackendUnavailable, EncodeError
from ..models import BackendUsed, ImageAsset, NormalizationRequest
from ..utils.data_urls import decode_data_url, encode_data_url
from .base import EncoderBackend

logger = logging.getLogger(__name__)


class CloudCompressionBackend(EncoderBackend):
    """Client for a ``/api/compress-image`` style endpoint.

    The service takes only a max dimension and resizes on the *larger* side;
    the planner's target and the request quality are not sent.
    """

    name = BackendUsed.CLOUD

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
        payload = {
            "imageData": encode_data_url(asset.data, asset.mime_type),
            "maxDimension": request.max_dimension,
        }
        try:
            response = await self.client.post(self.endpoint, json=payload)
        except httpx.HTTPError as e:
            raise BackendUnavailable(f"Compression request failed: {e}") from e

        try:
            result: dict[str, Any] = response.json()
        except ValueError as e:
            raise BackendUnavailable(
                f"Compression service returned non-JSON response ({response.status_code})"
            ) from e

        if result.get("fallback"):
            raise BackendUnavailable(result.get("error") or "Compression service requested fallback")
        if not result.get("success"):
            raise BackendUnavailable(result.get("error") or f"Compression failed ({response.status_code})")

        try:
            data, mime_type = decode_data_url(result["compressedImage"], default_mime=asset.mime_type)
        except (KeyError, TypeError, ValueError) as e:
            raise EncodeError(f"Malformed compressed image payload: {e}") from e

        original = result.get("originalDimensions") or {}
        processed = result.get("processedDimensions") or {}
        logger.info(
            "Cloud compression: %sx%s -> %sx%s, saved %s%% (%s -> %s bytes), resized=%s",
            original.get("width"), original.get("height"),
            processed.get("width"), processed.get("height"),
            result.get("compressionRatio"), result.get("originalSize"), result.get("compressedSize"),
            result.get("wasResized"),
        )
        return asset.replace_data(data, mime_type)

    async def close(self):
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
