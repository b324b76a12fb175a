"""Cloud access token acquisition."""

import asyncio
import json
import logging
from typing import Protocol

import google.auth
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from ..errors import AuthError

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]


class TokenProvider(Protocol):
    async def get_access_token(self) -> str: ...


class GoogleTokenProvider:
    """Issues OAuth access tokens for Google Cloud APIs.

    ``credentials`` may be a service-account JSON document or a path to a key
    file. Without it, application default credentials are used (e.g. the
    Cloud Run service account).
    """

    def __init__(self, credentials: str | None = None, scopes: list[str] | None = None):
        self.scopes = scopes or CLOUD_PLATFORM_SCOPES
        self._raw_credentials = credentials
        self._credentials = None

    def _load(self):
        raw = self._raw_credentials
        if not raw:
            logger.info("Using application default credentials")
            credentials, _ = google.auth.default(scopes=self.scopes)
            return credentials
        try:
            info = json.loads(raw)
        except json.JSONDecodeError:
            logger.info("Using service account key file %s", raw)
            return service_account.Credentials.from_service_account_file(raw, scopes=self.scopes)
        logger.info("Using explicit credentials, project_id: %s", info.get("project_id"))
        return service_account.Credentials.from_service_account_info(info, scopes=self.scopes)

    def _refresh(self) -> str:
        try:
            if self._credentials is None:
                self._credentials = self._load()
            if not self._credentials.valid:
                self._credentials.refresh(Request())
        except (GoogleAuthError, OSError, ValueError) as e:
            raise AuthError(f"Failed to get access token: {e}") from e
        return self._credentials.token

    async def get_access_token(self) -> str:
        """Return a valid bearer token, refreshing it when expired."""
        return await asyncio.to_thread(self._refresh)
