"""
Logging configuration for the CLI and worker processes.
"""

import logging
import os
import sys
from typing import Optional

NOISY_LOGGERS = ("httpx", "httpcore", "temporalio.activity", "sqlalchemy.engine")


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure the root logger with a console handler.

    Args:
        level: Logging level name. If None, reads LOG_LEVEL or defaults to INFO.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True,
    )

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
