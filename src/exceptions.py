"""Centralized exception hierarchy for BookVibe.

Usage:
    from exceptions import ConfigurationError, ProviderError

    raise ConfigurationError("ModelScope requires BACKEND_PROXY_URL")
    raise ProviderError("Pexels returned HTTP 500")
"""


class BookVibeError(Exception):
    """Base exception for all BookVibe errors."""
    pass


class ConfigurationError(BookVibeError):
    """Raised when configuration is invalid or missing.

    Never retried: the cascade moves straight to the next tier.

    Examples:
        - Missing paid image API key
        - Missing relay path for the async paid provider
        - Unknown provider type
    """
    pass


class ProviderError(BookVibeError):
    """Raised when a remote image provider call fails.

    Examples:
        - Non-2xx response
        - Network failure or request timeout
        - Malformed response body
    """
    pass


class GenerationFailedError(ProviderError):
    """Raised when the async generation backend reports a FAILED task."""
    pass


class GenerationTimeoutError(ProviderError):
    """Raised when a generation task never reaches a terminal status."""
    pass


class LocationNotRecognizedError(BookVibeError):
    """Raised when extraction returns no locations for the user's input."""
    pass
