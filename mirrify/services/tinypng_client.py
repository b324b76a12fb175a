"""TinyPNG smart compression API client."""

import logging

import httpx
from pydantic import BaseModel

from ..errors import CompressionError, UnsupportedFormat
from ..imaging import fit_within, read_metadata
from ..utils.data_urls import compression_ratio

logger = logging.getLogger(__name__)

TINIFY_API_URL = "https://api.tinify.com"


class Dimensions(BaseModel):
    width: int
    height: int


class CompressionResult(BaseModel):
    """Compressed image plus before/after statistics."""

    data: bytes
    mime_type: str
    original_size: int
    compressed_size: int
    original_dimensions: Dimensions
    processed_dimensions: Dimensions
    was_resized: bool

    @property
    def compression_ratio(self) -> float:
        return compression_ratio(self.original_size, self.compressed_size)


class TinyPNGClient:
    """Shrinks images with TinyPNG, resizing only when the largest side exceeds the bound."""

    def __init__(self, api_key: str, base_url: str = TINIFY_API_URL, timeout: float = 60.0):
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, auth=("api", self.api_key))
        return self._client

    async def compress(self, data: bytes, max_dimension: int = 1024) -> CompressionResult:
        """Compress an image, scaling it down on the larger side if needed.

        Raises:
            UnsupportedFormat: if ``data`` is not an image
            CompressionError: if the API call fails
        """
        source = read_metadata(data)
        final_width, final_height = fit_within(source.width, source.height, max_dimension)
        was_resized = (final_width, final_height) != (source.width, source.height)

        try:
            response = await self.client.post(f"{self.base_url}/shrink", content=data)
            if response.status_code != 201:
                raise CompressionError(f"TinyPNG rejected image: {self._error_message(response)}")
            output_url = response.headers.get("Location")
            if not output_url:
                raise CompressionError("TinyPNG response is missing the output location")

            if was_resized:
                # "scale" takes exactly one side; the other follows the aspect ratio
                resize = {"method": "scale"}
                if source.width > source.height:
                    resize["width"] = final_width
                else:
                    resize["height"] = final_height
                result = await self.client.post(output_url, json={"resize": resize})
            else:
                result = await self.client.get(output_url)
        except httpx.HTTPError as e:
            raise CompressionError(f"TinyPNG request failed: {e}") from e

        if result.status_code != 200:
            raise CompressionError(f"TinyPNG output failed: {self._error_message(result)}")

        compressed = result.content
        try:
            processed = read_metadata(compressed)
        except UnsupportedFormat as e:
            raise CompressionError("TinyPNG returned an unreadable image") from e
        mime_type = result.headers.get("Content-Type", f"image/{processed.format}").split(";", 1)[0]

        return CompressionResult(
            data=compressed,
            mime_type=mime_type,
            original_size=len(data),
            compressed_size=len(compressed),
            original_dimensions=Dimensions(width=source.width, height=source.height),
            processed_dimensions=Dimensions(width=processed.width, height=processed.height),
            was_resized=was_resized,
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
            return f"{body.get('error')}: {body.get('message')}"
        except ValueError:
            return response.text[:200]

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
