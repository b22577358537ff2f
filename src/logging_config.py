"""
Centralized logging configuration for BookVibe.

Log levels:
    DEBUG: Individual HTTP calls, poll results, discarded late updates
    INFO: Batch progress (record started, tier succeeded, batch finished)
    WARNING: Non-fatal issues (tier failed, falling back, rate limits)
    ERROR: Every tier exhausted, unexpected exceptions

Console logs go to stderr so that stdout stays free for postcard output
(including --json). httpx and httpcore log every request at INFO; they are
held at WARNING unless BookVibe itself runs at DEBUG.

Usage:
    from logging_config import setup_logging

    setup_logging("", level=settings.log_level)
"""

import logging
import sys
from pathlib import Path
from typing import IO, Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

HTTP_LOGGERS = ("httpx", "httpcore")


def parse_level(level: Union[int, str]) -> int:
    """Turn LOG_LEVEL values such as "debug" or 10 into a logging level; unknown names mean INFO."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(
    name: str = "",
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Path] = None,
    stream: Optional[IO[str]] = sys.stderr,
) -> logging.Logger:
    """
    Configure and return a logger; "" configures the root logger.

    Args:
        name: Logger name
        level: Level as an int or a name from LOG_LEVEL
        log_file: Optional file to append logs to (parent dirs are created)
        stream: Console stream, or None for file-only logging

    Returns:
        Configured logger instance. Calling again replaces its handlers.
    """
    level = parse_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = []
    if stream is not None:
        handlers.append(logging.StreamHandler(stream))
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    http_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for http_logger in HTTP_LOGGERS:
        logging.getLogger(http_logger).setLevel(http_level)

    return logger
