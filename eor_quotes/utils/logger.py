"""Logging setup for the CLI and the API server.
Call setup_logging() once at startup; later calls are no-ops.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

from eor_quotes.config import get_settings

LOG_FORMAT = "%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s"

# Third-party loggers and the level they are capped at
LIBRARY_LEVELS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "groq": logging.WARNING,
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
}


def resolve_level(level: Optional[str]) -> int:
    name = (level or "").strip().upper()
    resolved = logging.getLevelName(name) if name else logging.INFO
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: Optional[str] = None) -> bool:
    """Attach a stderr handler for the eor_quotes loggers. Returns False if one is already attached."""
    if level is None:
        level = get_settings().log_level

    app_logger = logging.getLogger("eor_quotes")
    if app_logger.handlers:
        return False

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    app_logger.addHandler(handler)
    app_logger.setLevel(resolve_level(level))

    for name, library_level in LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(library_level)
    return True
