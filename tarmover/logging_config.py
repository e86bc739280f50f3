"""Logging setup for the command-line tool.

Log records go through rich's RichHandler to stderr, so they do not mix with
the reports printed on stdout. --debug also turns on botocore's own logger,
which includes request signing details.
"""

import logging
import os
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "tarmover"


def setup_logging(log_level: Optional[str] = None, debug: bool = False) -> logging.Logger:
    """Set up logging for the tarmover package.

    Args:
        log_level: Log level name (DEBUG, INFO, WARNING, ERROR). Defaults to
            the LOG_LEVEL env var, or INFO.
        debug: Force DEBUG and enable botocore wire logging.

    Returns:
        The configured package logger.
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    level = logging.DEBUG if debug else getattr(logging, log_level, logging.INFO)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if not logger.handlers:
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=debug,
            log_time_format="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False

    if debug:
        botocore_logger = logging.getLogger("botocore")
        botocore_logger.setLevel(logging.DEBUG)
        if not botocore_logger.handlers:
            botocore_logger.addHandler(logger.handlers[0])

    return logger
