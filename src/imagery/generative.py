"""Text-to-image generation with a paid → free → placeholder cascade."""

import asyncio
import logging
from typing import Callable, Optional, Sequence

import httpx

from config import Settings
from exceptions import BookVibeError, ConfigurationError
from util.timeouts import wait_abandoning
from .free_providers import DEFAULT_FREE_PROVIDERS, FreeImageProvider, ImageLoader
from .paid import StageCallback, create_paid_provider
from .placeholder import resolve_placeholder

logger = logging.getLogger(__name__)

AttemptCallback = Callable[[FreeImageProvider, int], None]


class GenerativeImageClient:
    """Resolves an image URL for a prompt from the generative tiers."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        free_providers: Optional[Sequence[FreeImageProvider]] = None,
        image_loader: Optional[ImageLoader] = None,
    ):
        """
        Args:
            settings: Immutable application settings
            http_client: Shared async HTTP client
            free_providers: Ordered free services (default: Pollinations pair)
            image_loader: Loader used to confirm free images (default: ImageLoader)
        """
        self.settings = settings
        self.paid = create_paid_provider(settings, http_client)
        self.free_providers = list(free_providers or DEFAULT_FREE_PROVIDERS)
        self.image_loader = image_loader or ImageLoader(http_client, timeout=settings.free_load_timeout)

    @property
    def paid_configured(self) -> bool:
        return self.paid is not None

    async def generate(self, prompt: str, allow_free_fallback: bool = True) -> str:
        """
        Generate an image URL for the prompt.

        Args:
            prompt: Generation prompt
            allow_free_fallback: When False only the paid provider is tried
                and its failure is raised to the caller unchanged

        Returns:
            Image URL. With free fallback allowed this always returns, ending
            in the deterministic placeholder if every service fails.

        Raises:
            BookVibeError: Only when allow_free_fallback is False and the paid
                provider is missing or fails
        """
        if self.paid is not None:
            try:
                return await self.generate_paid(prompt)
            except BookVibeError as e:
                if not allow_free_fallback:
                    raise
                logger.warning(f"Paid provider failed, falling back to free services: {e}")
        elif not allow_free_fallback:
            raise ConfigurationError("No paid image API key configured and free fallback disabled")

        url = await self.try_free_providers(prompt)
        if url is None:
            return resolve_placeholder(prompt)
        return url

    async def generate_paid(self, prompt: str, on_stage: Optional[StageCallback] = None) -> str:
        """Run the paid provider only; errors propagate."""
        if self.paid is None:
            raise ConfigurationError("No paid image API key configured")
        logger.info(f"Generating with paid provider '{self.paid.name}': {prompt[:50]}")
        return await self.paid.generate(prompt, on_stage=on_stage)

    async def try_free_providers(
        self,
        prompt: str,
        on_attempt: Optional[AttemptCallback] = None,
    ) -> Optional[str]:
        """
        Try each free provider in order.

        Every attempt is bounded by free_load_timeout; a slow load is
        abandoned, not cancelled. After a failed attempt the next one waits
        free_backoff_base × attempt-number seconds.

        Returns:
            The first URL that loads, or None when every provider failed
        """
        total = len(self.free_providers)
        for attempt, provider in enumerate(self.free_providers, start=1):
            if on_attempt is not None:
                on_attempt(provider, attempt)

            url = provider.build_url(prompt)
            logger.info(f"Trying free provider {provider.name} ({attempt}/{total})")

            outcome = await wait_abandoning(
                self.image_loader.load(url),
                timeout=self.settings.free_load_timeout,
            )
            if outcome.timed_out:
                logger.warning(f"{provider.name} timed out after {self.settings.free_load_timeout}s")
            elif outcome.error is not None:
                logger.warning(f"{provider.name} load raised: {outcome.error}")
            elif outcome.value.ok:
                logger.info(f"{provider.name} image loaded: {url}")
                return url
            else:
                logger.warning(f"{provider.name} failed to load: {outcome.value.error}")

            if attempt < total:
                await asyncio.sleep(self.settings.free_backoff_base * attempt)

        logger.error(f"All {total} free providers failed for '{prompt[:50]}'")
        return None
