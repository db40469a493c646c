"""Supabase Storage client for signed note URLs.

Issues time-limited download links for objects in the notes bucket through
the Storage REST API and memoizes them in the injected
``SignedUrlCache``.

See: https://supabase.com/docs/reference/api/storage
"""

from __future__ import annotations

from urllib.parse import quote

import httpx
import structlog

from maturamente.config import Settings
from maturamente.services.cache import CachedSignedUrl, SignedUrlCache

logger = structlog.get_logger(__name__)


class StorageError(Exception):
    """Raised when the storage API cannot sign an object."""


class StorageService:
    """Async client for signing storage object URLs.

    Usage:
        ```python
        storage = StorageService(cache, settings)
        signed = await storage.get_signed_url("matematica/limiti.pdf")
        await storage.close()
        ```
    """

    def __init__(self, cache: SignedUrlCache, settings: Settings) -> None:
        """Initialize the service.

        Args:
            cache: Signed URL cache consulted before every signing call
            settings: Application settings with storage credentials
        """
        self.cache = cache
        self._settings = settings
        self._client: httpx.AsyncClient | None = None

    @property
    def bucket(self) -> str:
        return self._settings.notes_bucket

    @property
    def ttl_seconds(self) -> int:
        return self._settings.signed_url_ttl_seconds

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            key = self._settings.supabase_service_role_key.get_secret_value()
            self._client = httpx.AsyncClient(
                base_url=f"{self._settings.supabase_url.rstrip('/')}/storage/v1",
                timeout=self._settings.storage_timeout,
                headers={"Authorization": f"Bearer {key}", "apikey": key},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def get_signed_url(self, storage_path: str) -> CachedSignedUrl:
        """Return a signed URL for an object, from cache when still valid.

        Args:
            storage_path: Object path inside the notes bucket

        Returns:
            The URL and its remaining validity in seconds

        Raises:
            StorageError: If the storage API rejects the request
        """
        cached = await self.cache.get(storage_path)
        if cached is not None:
            logger.debug("signed_url_cache_hit", storage_path=storage_path)
            return cached

        logger.debug("signed_url_cache_miss", storage_path=storage_path)
        url = await self._sign(storage_path)
        await self.cache.set(storage_path, url, self.ttl_seconds)
        return CachedSignedUrl(url=url, expires_in_seconds=self.ttl_seconds)

    async def _sign(self, storage_path: str) -> str:
        client = await self._get_client()
        object_path = quote(storage_path.lstrip("/"))

        try:
            response = await client.post(
                f"/object/sign/{self.bucket}/{object_path}",
                json={"expiresIn": self.ttl_seconds},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "storage_sign_failed",
                status_code=e.response.status_code,
                storage_path=storage_path,
            )
            raise StorageError(f"Signing failed: {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error("storage_request_error", error=str(e), storage_path=storage_path)
            raise StorageError(f"Request failed: {e}") from e

        try:
            signed = response.json().get("signedURL")
        except (ValueError, AttributeError) as e:
            logger.error("storage_response_invalid", storage_path=storage_path)
            raise StorageError("Storage API returned an unreadable body") from e
        if not isinstance(signed, str) or not signed:
            raise StorageError("Storage API returned no signed URL")

        # The API answers with a path relative to /storage/v1
        if signed.startswith("http"):
            return signed
        return f"{self._settings.supabase_url.rstrip('/')}/storage/v1{signed}"
