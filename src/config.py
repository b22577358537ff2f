"""Centralized configuration for BookVibe.

This module provides:
- PROJECT_ROOT and SRC_DIR paths
- Environment variable access with get_env()
- Automatic .env loading
- The immutable Settings value built by load_settings()

Settings are merged from three layers, highest priority first:
    1. Persisted user settings (JSON file)
    2. Injected config (environment / .env, or an explicit mapping)
    3. Built-in defaults

Usage:
    from config import load_settings

    settings = load_settings()
    if settings.paid_configured:
        ...
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

logger = logging.getLogger(__name__)

# Calculate paths once at import time
SRC_DIR = Path(__file__).parent.resolve()
PROJECT_ROOT = SRC_DIR.parent.resolve()

# Load .env from project root
_env_path = PROJECT_ROOT / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

DEFAULT_USER_CONFIG_PATH = PROJECT_ROOT / "user_config.json"


def get_env(key: str, default: Optional[str] = None) -> str:
    """Get environment variable value.

    Args:
        key: Environment variable name
        default: Default value if not set. If None and key not found, raises KeyError.

    Returns:
        Environment variable value or default

    Raises:
        KeyError: If key not found and no default provided
    """
    value = os.environ.get(key)
    if value is not None:
        return value
    if default is not None:
        return default
    raise KeyError(f"Environment variable '{key}' not set and no default provided")


class Settings(BaseModel):
    """Process-wide configuration, read-only once built."""

    model_config = ConfigDict(frozen=True)

    # Paid generative image API (optional; free services are used without it)
    aigc_api_key: str = ""
    aigc_api_url: str = "https://api-inference.modelscope.cn/v1/images/generations"
    aigc_model: str = "Tongyi-MAI/Z-Image-Turbo"
    aigc_api_type: Literal["modelscope", "openai"] = "modelscope"

    # Relay for providers that refuse direct cross-origin calls
    backend_proxy_url: str = ""
    backend_url: str = "http://localhost:3000"

    # Stock image search
    image_api_type: Literal["picsum", "pexels", "unsplash"] = "picsum"
    pexels_api_url: str = "https://api.pexels.com/v1/search"
    pexels_api_key: str = ""
    unsplash_api_url: str = "https://api.unsplash.com/search/photos"
    unsplash_api_key: str = ""

    # Extraction
    min_places: int = 10
    max_places: int = 30

    # Timing (seconds)
    free_load_timeout: float = 30.0
    poll_interval: float = 5.0
    poll_max_attempts: int = 60
    free_backoff_base: float = 1.0
    stagger_min: float = 2.0
    stagger_max: float = 5.0
    stock_search_timeout: float = 15.0
    paid_request_timeout: float = 120.0
    paid_stage_timeout: float = 330.0

    log_level: str = "INFO"

    @field_validator("aigc_api_type", "image_api_type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        """Provider types are case-insensitive."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("backend_proxy_url", mode="before")
    @classmethod
    def normalize_proxy_url(cls, v: Any) -> Any:
        """Relative relay paths always start with '/'."""
        if isinstance(v, str):
            v = v.strip()
            if v and not v.startswith("http") and not v.startswith("/"):
                v = "/" + v
        return v

    @property
    def paid_configured(self) -> bool:
        return bool(self.aigc_api_key.strip())

    @property
    def relay_base_url(self) -> str:
        """Absolute relay base URL, or "" when no relay is configured."""
        proxy = self.backend_proxy_url.rstrip("/")
        if not proxy:
            return ""
        if proxy.startswith("http"):
            return proxy
        return self.backend_url.rstrip("/") + proxy


def _layer_from_mapping(source: Mapping[str, Any]) -> Dict[str, Any]:
    """Pick known Settings keys from a mapping of UPPER_CASE names."""
    layer = {}
    for key, value in source.items():
        field = key.lower()
        if field in Settings.model_fields and value is not None:
            layer[field] = value
    return layer


def load_user_settings(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Read the persisted user settings layer.

    A missing file yields an empty layer. An unreadable or malformed file is
    logged and ignored so a bad save never blocks startup.
    """
    if path is None:
        path = Path(get_env("BOOKVIBE_USER_CONFIG", default=str(DEFAULT_USER_CONFIG_PATH)))
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not load user settings from {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring user settings in {path}: expected a JSON object")
        return {}
    logger.info(f"Loaded user settings from {path}")
    return _layer_from_mapping(data)


def load_settings(
    user_config_path: Optional[Path] = None,
    injected: Optional[Mapping[str, Any]] = None,
) -> Settings:
    """
    Build the immutable Settings value by layered merge.

    Args:
        user_config_path: Persisted user settings file (defaults to
            BOOKVIBE_USER_CONFIG or PROJECT_ROOT/user_config.json)
        injected: Injected config mapping; defaults to os.environ

    Returns:
        Frozen Settings instance
    """
    injected_layer = _layer_from_mapping(os.environ if injected is None else injected)
    persisted_layer = load_user_settings(user_config_path)

    merged = {**injected_layer, **persisted_layer}
    settings = Settings(**merged)

    key = settings.aigc_api_key
    logger.debug(
        "Settings loaded: aigc_api_type=%s aigc_api_key=%s image_api_type=%s",
        settings.aigc_api_type,
        key[:10] + "..." if key else "not configured",
        settings.image_api_type,
    )
    return settings
