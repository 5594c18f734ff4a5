"""Logging setup for the map server.

Modules log through ``logging.getLogger(__name__)``; this module attaches a
single stream handler to the package logger so job progress and failures
show up next to the ASGI server output.
"""

from __future__ import annotations

import logging
import sys

LOGGER_NAME = "mapserver"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Configure the package logger once.

    Repeated calls only adjust the level, so application factories can call
    this freely (tests create many apps per process).

    Args:
        level: Level name such as ``"DEBUG"`` or ``"WARNING"``. Unknown
            names fall back to INFO.

    Returns:
        The configured ``mapserver`` logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    resolved = logging.getLevelName(level.upper())
    logger.setLevel(resolved if isinstance(resolved, int) else logging.INFO)

    if not any(getattr(h, "_mapserver", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._mapserver = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    return logger
