"""Logging setup for the server process."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_HANDLER_NAME = "tlsgate.stderr"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Route ``tlsgate.*`` records to stderr at *level*; safe to call twice."""

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logger = logging.getLogger("tlsgate")
    logger.setLevel(level)
    if not any(h.get_name() == _HANDLER_NAME for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger


__all__ = ["configure_logging", "LOG_FORMAT"]
