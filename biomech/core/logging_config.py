"""Logging configuration using loguru."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from loguru import logger


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    logger.remove()
    logger.add(sys.stdout, level=level)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, level=level, rotation="5 MB", retention="7 days", enqueue=True, backtrace=False, diagnose=False)
