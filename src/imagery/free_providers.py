"""Free text-to-image services that render straight into the response body.

These services take the prompt and a seed in the URL and answer with the
image itself, so "success" means the URL actually loads as an image.
"""

import logging
import random
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Tuple
from urllib.parse import quote

import httpx
from PIL import Image, UnidentifiedImageError

from .models import LoadResult

logger = logging.getLogger(__name__)

STYLE_SUFFIX = ", cinematic, atmospheric, high quality, 4k"


def augment_prompt(prompt: str) -> str:
    """Append the shared stylistic suffix to a generation prompt."""
    return f"{prompt}{STYLE_SUFFIX}"


def encode_uri_component(text: str) -> str:
    """Percent-encode text for embedding in a URL path segment."""
    return quote(text, safe="-_.!~*'()")


@dataclass(frozen=True)
class FreeImageProvider:
    """A URL-templated image service.

    Attributes:
        name: Display name used in progress labels and logs
        url_template: Template with {prompt} and {seed} placeholders
    """
    name: str
    url_template: str

    def build_url(self, prompt: str, seed: Optional[int] = None) -> str:
        """Template the augmented prompt and a seed (random if omitted) into a URL."""
        if seed is None:
            seed = random.randint(0, 9999)
        return self.url_template.format(
            prompt=encode_uri_component(augment_prompt(prompt)),
            seed=seed,
        )


DEFAULT_FREE_PROVIDERS: Tuple[FreeImageProvider, ...] = (
    FreeImageProvider(
        name="Pollinations.ai",
        url_template="https://image.pollinations.ai/prompt/{prompt}?width=960&height=600&seed={seed}&nologo=true",
    ),
    FreeImageProvider(
        name="Pollinations.ai (alternate domain)",
        url_template="https://pollinations.ai/prompt/{prompt}?width=960&height=600&seed={seed}&nologo=true",
    ),
)


class ImageLoader:
    """Fetches an image URL and confirms the body decodes as an image."""

    def __init__(self, http_client: httpx.AsyncClient, timeout: Optional[float] = 30.0):
        """
        Args:
            http_client: Shared async HTTP client
            timeout: Per-request timeout in seconds, overriding the client default
        """
        self.http_client = http_client
        self.timeout = timeout

    async def load(self, url: str) -> LoadResult:
        """
        Load an image URL.

        Never raises: HTTP errors, network failures and undecodable bodies
        are all reported as a failed LoadResult.
        """
        try:
            response = await self.http_client.get(url, follow_redirects=True, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.debug(f"Image load failed for {url}: {e}")
            return LoadResult(url=url, ok=False, error=str(e) or type(e).__name__)

        try:
            with Image.open(BytesIO(response.content)) as img:
                img.verify()
        except (UnidentifiedImageError, OSError, SyntaxError) as e:
            logger.debug(f"Response from {url} is not an image: {e}")
            return LoadResult(url=url, ok=False, error="response is not an image")

        return LoadResult(url=url, ok=True)
