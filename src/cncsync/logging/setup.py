# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/logging/setup.py

"""Logging setup for cncsync."""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {message}"


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> None:
    """Configure loguru for console output and an optional log file."""
    logger.remove()
    level = "DEBUG" if verbose else "INFO"
    logger.add(sys.stdout, format=LOG_FORMAT, level=level)
    if log_file is not None:
        logger.add(
            str(log_file),
            format=LOG_FORMAT,
            level="DEBUG",
            rotation="10 MB",
            retention=5,
            enqueue=True,  # scheduler cycles log from worker threads
        )
