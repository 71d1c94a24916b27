"""Logging configuration for the netpulse CLI."""
from __future__ import annotations

import logging
import os
import sys
from typing import Optional

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def configure_logging(level: Optional[str] = None) -> int:
    """
    Configure root logging to stderr.

    *level* wins over the ``NETPULSE_LOG_LEVEL`` environment variable;
    unknown names fall back to WARNING so the dashboard stays clean.
    Returns the effective level.
    """
    name = (level or os.environ.get("NETPULSE_LOG_LEVEL", "WARNING")).upper()
    log_level = _LEVELS.get(name, logging.WARNING)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger(__name__).debug(
        "Logging configured: level=%s", logging.getLevelName(log_level)
    )
    return log_level
