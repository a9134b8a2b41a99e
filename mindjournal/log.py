# -*- coding: utf-8 -*-
"""Logging setup for the CLI entrypoints."""
from __future__ import annotations

from typing import Optional
import logging
import os
import sys


def configure_logging(name: str = "mindjournal", log_level: Optional[str] = None) -> logging.Logger:
    """Configure and return the package logger.

    Args:
        name: Logger name; child module loggers propagate to it.
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL. Falls back to the
            LOG_LEVEL environment variable, then INFO.
    """
    if log_level is None:
        log_level = os.environ.get("LOG_LEVEL", "INFO")
    level = getattr(logging, str(log_level).upper(), logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        logger.addHandler(handler)

    return logger
