"""Image sources: placeholder, stock search, paid and free generation."""

from .models import GenerationTask, LoadResult
from .placeholder import hash_query, resolve_placeholder
from .stock_search import StockImageSearch
from .free_providers import DEFAULT_FREE_PROVIDERS, FreeImageProvider, ImageLoader
from .paid import SyncPaidProvider, TaskPaidProvider, create_paid_provider
from .generative import GenerativeImageClient

__all__ = [
    "GenerationTask",
    "LoadResult",
    "hash_query",
    "resolve_placeholder",
    "StockImageSearch",
    "DEFAULT_FREE_PROVIDERS",
    "FreeImageProvider",
    "ImageLoader",
    "SyncPaidProvider",
    "TaskPaidProvider",
    "create_paid_provider",
    "GenerativeImageClient",
]
