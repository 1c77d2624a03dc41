"""Download invoice PDFs from object storage or plain HTTP(S) links."""

import asyncio
from typing import Awaitable, Callable, Optional
from urllib.parse import quote, unquote

import httpx

from app.core.config import ProcessingSettings, StorageSettings
from app.core.exceptions import (
    DocumentFetchError,
    DocumentNotFoundError,
    FetchTimeoutError,
    HttpStatusError,
    StoragePathError,
    UnsupportedSourceError,
)
from app.services.ingestion.storage_credentials import StorageCredentialsResolver
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

STORAGE_HOST_MARKER = "firebasestorage.googleapis.com"
STORAGE_PATH_MARKER = "/o/"


def is_storage_url(url: str) -> bool:
    """Object-storage links are recognised by host or by the ``/o/`` path marker."""
    return STORAGE_HOST_MARKER in url or STORAGE_PATH_MARKER in url


def extract_storage_path(url: str) -> str:
    """Return the decoded object path that follows ``/o/`` in a storage URL.

    Raises:
        StoragePathError: If the URL has no ``/o/`` marker or an empty path
    """
    marker = url.find(STORAGE_PATH_MARKER)
    if marker == -1:
        raise StoragePathError(
            f"Cannot resolve storage path from URL (missing '{STORAGE_PATH_MARKER}' marker): {url[:120]}"
        )

    encoded = url[marker + len(STORAGE_PATH_MARKER):].split("?", 1)[0]
    path = unquote(encoded)
    if not path:
        raise StoragePathError(f"Storage URL has an empty object path: {url[:120]}")
    return path


class DocumentFetcher:
    """Resolves a document URL to raw PDF bytes.

    Every download is bounded by ``download_timeout_seconds`` and the whole
    fetch is retried with ``fetch_backoff_seconds * 2**attempt`` delays. URL
    problems and configuration errors are raised immediately.
    """

    def __init__(
        self,
        storage: StorageSettings,
        processing: ProcessingSettings,
        credentials: Optional[StorageCredentialsResolver] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.storage = storage
        self.processing = processing
        self.credentials = credentials or StorageCredentialsResolver(storage)
        self.transport = transport

    async def fetch(self, url: str) -> bytes:
        """Download the document behind ``url``."""
        if is_storage_url(url):
            path = extract_storage_path(url)
            return await self._with_retry(
                lambda: self._download_from_storage(path),
                retries=self.processing.storage_fetch_retries,
                url=url,
            )

        if url.startswith(("http://", "https://")):
            return await self._with_retry(
                lambda: self._download_http(url),
                retries=self.processing.http_fetch_retries,
                url=url,
            )

        raise UnsupportedSourceError(f"Unsupported document URL: {url[:120]}")

    async def _with_retry(
        self,
        operation: Callable[[], Awaitable[bytes]],
        retries: int,
        url: str,
    ) -> bytes:
        last_error: Optional[DocumentFetchError] = None

        for attempt in range(retries + 1):
            try:
                return await operation()
            except UnsupportedSourceError:
                raise
            except DocumentFetchError as e:
                last_error = e
                if attempt < retries:
                    delay = self.processing.fetch_backoff_seconds * (2 ** attempt)
                    LOGGER.warning(
                        f"Document fetch failed (Attempt {attempt + 1}/{retries + 1}), retrying in {delay}s",
                        extra={"url": url[:80], "error": str(e)},
                    )
                    await asyncio.sleep(delay)

        LOGGER.error(
            f"Document fetch failed after {retries + 1} attempts",
            extra={"url": url[:80], "error": str(last_error)},
        )
        raise last_error

    async def _download_from_storage(self, path: str) -> bytes:
        token = await self.credentials.get_access_token()
        object_url = f"{self.storage.api_url}/b/{self.storage.bucket}/o/{quote(path, safe='')}"
        return await self._get(
            object_url,
            params={"alt": "media"},
            headers={"Authorization": f"Bearer {token}"},
            label=path,
        )

    async def _download_http(self, url: str) -> bytes:
        return await self._get(url, label=url[:80])

    async def _get(
        self,
        url: str,
        label: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> bytes:
        timeout = self.storage.download_timeout_seconds

        try:
            async with httpx.AsyncClient(
                timeout=timeout, follow_redirects=True, transport=self.transport
            ) as client:
                response = await asyncio.wait_for(
                    client.get(url, params=params, headers=headers),
                    timeout=timeout,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise FetchTimeoutError(f"Download timed out after {timeout}s: {label}", original_error=e)
        except httpx.TransportError as e:
            raise DocumentFetchError(f"Download failed for {label}: {e}", original_error=e)

        if response.status_code == 404:
            raise DocumentNotFoundError(f"Document not found: {label}")
        if response.status_code >= 400:
            raise HttpStatusError(
                f"Download of {label} failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        LOGGER.debug("Downloaded document", extra={"source": label, "bytes": len(response.content)})
        return response.content
