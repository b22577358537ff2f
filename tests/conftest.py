"""
Shared pytest fixtures for BookVibe tests.
"""

from io import BytesIO

import pytest
from PIL import Image

from config import Settings


def pytest_addoption(parser):
    """Add --full flag to run entire test suite"""
    parser.addoption(
        "--full",
        action="store_true",
        default=False,
        help="Run full test suite (including integration and slow tests)"
    )


def pytest_configure(config):
    """Configure test run based on flags"""
    if config.getoption("--full"):
        # Only clear default marker if no explicit -m flag was provided
        if config.option.markexpr == "smoke or (not integration and not slow)":
            config.option.markexpr = ""


@pytest.fixture
def fast_settings():
    """Settings with every wait shrunk so cascades run instantly."""
    return Settings(
        free_load_timeout=1.0,
        poll_interval=0.0,
        free_backoff_base=0.0,
        stagger_min=0.0,
        stagger_max=0.0,
        stock_search_timeout=1.0,
        paid_request_timeout=1.0,
        paid_stage_timeout=5.0,
    )


@pytest.fixture(scope="session")
def png_bytes():
    """A tiny valid PNG image body."""
    buffer = BytesIO()
    Image.new("RGB", (4, 4), color=(200, 120, 40)).save(buffer, format="PNG")
    return buffer.getvalue()
