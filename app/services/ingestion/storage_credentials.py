"""Service-account credentials for object storage downloads."""

import asyncio
import base64
import binascii
import json
from typing import Optional

import google.auth
from google.auth.credentials import Credentials
from google.auth.exceptions import DefaultCredentialsError, RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from app.core.config import StorageSettings
from app.core.exceptions import ConfigurationError, DocumentFetchError
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

STORAGE_SCOPES = ["https://www.googleapis.com/auth/devstorage.read_only"]


class StorageCredentialsResolver:
    """Resolves storage credentials and mints bearer tokens.

    Sources are tried in order: inline JSON, base64-encoded JSON, key file
    path, then ambient application-default credentials. The first configured
    source wins; a configured but unreadable source is a configuration error
    rather than a reason to fall through.
    """

    def __init__(self, storage: StorageSettings):
        self.storage = storage
        self.source: Optional[str] = None
        self._credentials: Optional[Credentials] = None
        self._lock = asyncio.Lock()

    def resolve(self) -> Credentials:
        """Return cached credentials, loading them on first use."""
        if self._credentials is None:
            self._credentials, self.source = self._load()
            LOGGER.info("Storage credentials resolved", extra={"source": self.source})
        return self._credentials

    def _load(self) -> tuple[Credentials, str]:
        if self.storage.service_account_json:
            info = self._parse_json(self.storage.service_account_json, "FIREBASE_SERVICE_ACCOUNT_KEY")
            return self._from_info(info, "inline_json"), "inline_json"

        if self.storage.service_account_base64:
            try:
                decoded = base64.b64decode(self.storage.service_account_base64, validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError) as e:
                raise ConfigurationError(
                    "SERVICE_ACCOUNT_JSON_BASE64 is not valid base64", original_error=e
                )
            info = self._parse_json(decoded, "SERVICE_ACCOUNT_JSON_BASE64")
            return self._from_info(info, "base64_json"), "base64_json"

        if self.storage.service_account_path:
            try:
                credentials = service_account.Credentials.from_service_account_file(
                    self.storage.service_account_path, scopes=STORAGE_SCOPES
                )
            except (OSError, ValueError) as e:
                raise ConfigurationError(
                    f"Cannot load service account file {self.storage.service_account_path}: {e}",
                    original_error=e,
                )
            return credentials, "key_file"

        try:
            credentials, _ = google.auth.default(scopes=STORAGE_SCOPES)
        except DefaultCredentialsError as e:
            raise ConfigurationError(
                "No storage credentials configured and no application default credentials found",
                original_error=e,
            )
        return credentials, "application_default"

    @staticmethod
    def _parse_json(raw: str, setting: str) -> dict:
        try:
            info = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"{setting} does not contain valid JSON", original_error=e)
        if not isinstance(info, dict):
            raise ConfigurationError(f"{setting} must be a JSON object")
        return info

    @staticmethod
    def _from_info(info: dict, source: str) -> Credentials:
        try:
            return service_account.Credentials.from_service_account_info(info, scopes=STORAGE_SCOPES)
        except ValueError as e:
            raise ConfigurationError(f"Invalid service account ({source}): {e}", original_error=e)

    async def get_access_token(self) -> str:
        """Return a valid bearer token, refreshing off the event loop when needed."""
        async with self._lock:
            credentials = self.resolve()
            if not credentials.valid:
                try:
                    await asyncio.to_thread(credentials.refresh, Request())
                except RefreshError as e:
                    raise ConfigurationError(
                        f"Storage credentials ({self.source}) were rejected: {e}", original_error=e
                    )
                except TransportError as e:
                    raise DocumentFetchError(f"Token refresh failed: {e}", original_error=e)
            return credentials.token
