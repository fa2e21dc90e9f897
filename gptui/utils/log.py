"""File logging setup.

The interface owns the whole terminal, so log records go to a rotating file
in the platform log directory instead of the console.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from platformdirs import user_log_dir

APP_NAME = "gptui"
LOG_LEVEL_VAR = "GPTUI_LOG_LEVEL"


def init_logger(log_dir: Optional[Path] = None, level: Optional[str] = None) -> Path:
    """Attach a rotating file handler to the root logger and return the log path."""
    log_dir = Path(log_dir or user_log_dir(APP_NAME))
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"{APP_NAME}.log"

    # max of 3 backups, 1MB each
    handler = RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
    level_name = (level or os.getenv(LOG_LEVEL_VAR) or "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler],
        force=True,
    )
    return log_path
