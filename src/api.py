"""
Public API for BookVibe postcard generation.

This module provides the official interface for external applications
(web UI, CLI tools, etc.) to turn a book title or a list of places into
postcards with resolved images.

Configuration comes from load_settings() (user settings file > environment
/ .env > defaults) unless a Settings value is passed explicitly.

Example usage:
    from api import generate_postcards_sync

    result = generate_postcards_sync("One Hundred Years of Solitude")
    for record in result.records:
        print(record.location, record.image_url)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import httpx

from config import Settings, load_settings
from exceptions import LocationNotRecognizedError
from postcards.extraction import LocationExtractor, Mode, SampleLocationExtractor
from postcards.models import LocationRecord, ResolutionTask
from postcards.orchestrate import (
    ImageResolutionOrchestrator,
    ProgressCallback,
    ResultCallback,
)

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Raised when API operations fail.

    This exception wraps internal errors to provide a clean boundary
    between the public API and internal implementation details.

    The original exception is preserved as __cause__ for debugging.
    """
    pass


@dataclass
class PostcardBatch:
    """Result from generating postcards.

    Attributes:
        text: The user's input (book title or place list)
        mode: "book" or "place"
        records: Location records with image_url filled in, in input order
        tasks: Final resolution status per record
        timestamp: Time the batch finished (YYYYMMDD_HHMMSS)
    """
    text: str
    mode: str
    records: List[LocationRecord]
    tasks: List[ResolutionTask] = field(default_factory=list)
    timestamp: str = ""

    @property
    def fallback_count(self) -> int:
        """Number of records that ended on a fallback image."""
        return sum(1 for task in self.tasks if task.status.state == "failed")


async def generate_postcards(
    text: str,
    mode: Mode = "book",
    extractor: Optional[LocationExtractor] = None,
    settings: Optional[Settings] = None,
    on_progress: Optional[ProgressCallback] = None,
    on_result: Optional[ResultCallback] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> PostcardBatch:
    """
    Extract locations from text and resolve an image for each.

    Args:
        text: Book title, or comma-separated place names in "place" mode
        mode: "book" or "place"
        extractor: Location extractor (default: SampleLocationExtractor)
        settings: Settings value (default: load_settings())
        on_progress: Called with (index, stage label) on every tier attempt
        on_result: Called with (index, url) once per record
        http_client: Shared client (a new one is created and closed if omitted)

    Returns:
        PostcardBatch with every record's image_url set

    Raises:
        LocationNotRecognizedError: The extractor found no locations
        APIError: Extraction or resolution failed unexpectedly
    """
    settings = settings or load_settings()
    extractor = extractor or SampleLocationExtractor()

    try:
        records = await extractor.extract(
            text,
            mode=mode,
            min_places=settings.min_places,
            max_places=settings.max_places,
        )
    except Exception as e:
        logger.error(f"Location extraction failed: {e}")
        raise APIError(f"Failed to extract locations: {e}") from e

    if not records:
        raise LocationNotRecognizedError(f"No locations recognized for '{text}'")

    logger.info(f"Extracted {len(records)} locations from '{text}' ({mode} mode)")

    owns_client = http_client is None
    client = http_client or httpx.AsyncClient()
    try:
        orchestrator = ImageResolutionOrchestrator(settings, client)
        batch = orchestrator.resolve_batch(records, on_progress, on_result)
        try:
            await batch.wait()
        finally:
            batch.cancel()
    except Exception as e:
        logger.error(f"Image resolution failed: {e}")
        raise APIError(f"Failed to resolve images: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    result = PostcardBatch(
        text=text,
        mode=mode,
        records=batch.records,
        tasks=batch.tasks,
        timestamp=datetime.now().strftime("%Y%m%d_%H%M%S"),
    )
    logger.info(
        f"Generated {len(result.records)} postcards ({result.fallback_count} on fallback images)"
    )
    return result


def generate_postcards_sync(
    text: str,
    mode: Mode = "book",
    extractor: Optional[LocationExtractor] = None,
    settings: Optional[Settings] = None,
    on_progress: Optional[ProgressCallback] = None,
    on_result: Optional[ResultCallback] = None,
) -> PostcardBatch:
    """Synchronous wrapper around generate_postcards()."""
    return asyncio.run(generate_postcards(
        text,
        mode=mode,
        extractor=extractor,
        settings=settings,
        on_progress=on_progress,
        on_result=on_result,
    ))


async def refresh_image(
    record: LocationRecord,
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Resolve a fresh image for one record (e.g. the card currently shown).

    Uses the same strategy as a batch: stock search for real locations,
    the generative cascade for fictional ones.

    Returns:
        The new image URL (also written to record.image_url)

    Raises:
        APIError: If resolution failed unexpectedly
    """
    settings = settings or load_settings()
    owns_client = http_client is None
    client = http_client or httpx.AsyncClient()
    try:
        orchestrator = ImageResolutionOrchestrator(settings, client)
        return await orchestrator.resolve_record(record)
    except Exception as e:
        logger.error(f"Image refresh failed for '{record.location}': {e}")
        raise APIError(f"Failed to refresh image: {e}") from e
    finally:
        if owns_client:
            await client.aclose()
