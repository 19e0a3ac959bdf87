"""Process-wide logging setup.

Modules log through ``logging.getLogger(__name__)``; everything under the
``kpis`` namespace ends up on a single stdout handler installed here.
"""
from __future__ import annotations

import logging
import sys

_configured = False


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Install the stdout handler on the ``kpis`` logger. Safe to call twice."""

    global _configured
    logger = logging.getLogger("kpis")
    if isinstance(level, int):
        log_level = level
    else:
        log_level = getattr(logging, str(level).upper(), logging.INFO)
    logger.setLevel(log_level)

    if _configured:
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.handlers = [handler]
    logger.propagate = False

    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _configured = True
    return logger
