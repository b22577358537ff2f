"""Stock photo search for real-world locations.

Supported providers (selected by IMAGE_API_TYPE):
    picsum:   deterministic placeholder, no network call
    pexels:   Pexels search API (key sent in the Authorization header)
    unsplash: Unsplash search API (key sent as client_id)

search() never raises; any failure degrades to the deterministic placeholder.
"""

import logging
from typing import Optional

import httpx

from config import Settings
from exceptions import ProviderError
from .placeholder import resolve_placeholder

logger = logging.getLogger(__name__)


class StockImageSearch:
    """Finds one portrait-oriented photo URL for a text query."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        """
        Args:
            settings: Immutable application settings
            http_client: Shared async HTTP client
        """
        self.settings = settings
        self.http_client = http_client

    @property
    def provider(self) -> str:
        return self.settings.image_api_type

    def _api_key(self) -> str:
        if self.provider == "pexels":
            return self.settings.pexels_api_key.strip()
        if self.provider == "unsplash":
            return self.settings.unsplash_api_key.strip()
        return ""

    async def search(self, query: str) -> str:
        """Return an image URL for the query, falling back to the placeholder."""
        url = await self.try_search(query)
        if url is None:
            return resolve_placeholder(query)
        return url

    async def try_search(self, query: str) -> Optional[str]:
        """
        Search the configured provider.

        Returns:
            The provider's image URL; the placeholder URL when the provider is
            deterministic or has no key configured; None when the provider
            was called and failed (non-2xx, no results, malformed, timeout).
        """
        if self.provider == "picsum" or not self._api_key():
            if self.provider != "picsum":
                logger.debug(f"No {self.provider} key configured, using placeholder")
            return resolve_placeholder(query)

        try:
            if self.provider == "pexels":
                url = await self._search_pexels(query)
            else:
                url = await self._search_unsplash(query)
        except ProviderError as e:
            logger.warning(f"{self.provider} search failed for '{query}': {e}")
            return None

        logger.debug(f"{self.provider} image for '{query}': {url}")
        return url

    async def _get_json(self, url: str, params: dict, headers: Optional[dict] = None) -> dict:
        try:
            response = await self.http_client.get(
                url,
                params=params,
                headers=headers,
                timeout=self.settings.stock_search_timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise ProviderError(f"{self.provider} request failed: {e}") from e
        except ValueError as e:
            raise ProviderError(f"{self.provider} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ProviderError(f"{self.provider} returned unexpected payload")
        return data

    async def _search_pexels(self, query: str) -> str:
        data = await self._get_json(
            self.settings.pexels_api_url,
            params={"query": query, "per_page": 1, "orientation": "portrait"},
            headers={"Authorization": self._api_key()},
        )
        photos = data.get("photos") or []
        if not photos:
            raise ProviderError("Pexels returned no photos")
        try:
            src = photos[0]["src"]
            url = src.get("large") or src.get("medium")
        except (KeyError, TypeError, AttributeError) as e:
            raise ProviderError("Pexels photo has no src") from e
        if not url:
            raise ProviderError("Pexels photo has no usable size")
        return url

    async def _search_unsplash(self, query: str) -> str:
        data = await self._get_json(
            self.settings.unsplash_api_url,
            params={
                "query": query,
                "per_page": 1,
                "orientation": "portrait",
                "client_id": self._api_key(),
            },
        )
        results = data.get("results") or []
        if not results:
            raise ProviderError("Unsplash returned no results")
        try:
            url = results[0]["urls"]["regular"]
        except (KeyError, TypeError) as e:
            raise ProviderError("Unsplash result has no regular URL") from e
        if not url:
            raise ProviderError("Unsplash result has an empty URL")
        return url
