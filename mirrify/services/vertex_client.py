"""Vertex AI client for virtual try-on predictions."""

import logging
from typing import Any

import httpx

from ..config import VertexConfig
from ..errors import PredictionError
from ..models import PredictionRequest, PredictionResponse
from .auth import TokenProvider

logger = logging.getLogger(__name__)


class VertexTryOnClient:
    """Forwards prediction requests to the Vertex AI try-on model with a bearer token."""

    def __init__(
        self,
        config: VertexConfig,
        project_id: str,
        token_provider: TokenProvider,
    ):
        self.config = config
        self.project_id = project_id
        self.token_provider = token_provider
        self._client: httpx.AsyncClient | None = None

    @property
    def predict_url(self) -> str:
        return self.config.predict_url(self.project_id)

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)
        return self._client

    async def predict(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Send a raw :predict body and return the raw JSON response.

        Raises:
            AuthError: if no access token could be obtained
            PredictionError: if the model call fails, carrying the upstream status
        """
        token = await self.token_provider.get_access_token()
        try:
            response = await self.client.post(
                self.predict_url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.TimeoutException as e:
            raise PredictionError("Try-on prediction timed out", status_code=504) from e
        except httpx.HTTPError as e:
            raise PredictionError(f"Try-on prediction request failed: {e}", status_code=502) from e

        if response.status_code != 200:
            message = self._error_message(response)
            logger.error("Vertex AI rejected prediction (%d): %s", response.status_code, message)
            raise PredictionError(message, status_code=response.status_code)

        return response.json()

    async def try_on(self, request: PredictionRequest) -> PredictionResponse:
        """Run a typed prediction request."""
        data = await self.predict(request.to_payload())
        return PredictionResponse.model_validate(data)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return response.json()["error"]["message"]
        except (ValueError, KeyError, TypeError):
            return "Internal server error"

    async def close(self):
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
