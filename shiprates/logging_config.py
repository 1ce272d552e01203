"""Logging setup for the API process and scripts."""

import logging
import sys


def configure_logging(level: str = "info") -> None:
    """Send log records to stdout so uvicorn captures them.

    Args:
        level: Level name for the ``shiprates`` package logger.
    """
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("shiprates").setLevel(level.upper())
