"""teledispatch logging configuration.

Console output is always on. When a log directory is configured
(`LOGGER_DIR_PATH` / `logging.dir_path`), rotating `combined.log` and
`error.log` files are written there as well.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def setup_logging(level: Optional[str] = None, dir_path: Optional[str] = None) -> None:
    """Configure teledispatch logging.

    Args:
        level: Optional override for `TELEDISPATCH_LOG_LEVEL` (default INFO).
        dir_path: Optional directory for rotating log files.
    """
    if level:
        os.environ["TELEDISPATCH_LOG_LEVEL"] = level
    resolved_level = os.getenv("TELEDISPATCH_LOG_LEVEL", "INFO").upper()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(resolved_level)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    if dir_path:
        log_dir = Path(dir_path).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        for filename, file_level in (("combined.log", logging.NOTSET), ("error.log", logging.ERROR)):
            handler = RotatingFileHandler(
                log_dir / filename,
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUPS,
                encoding="utf-8",
            )
            handler.setLevel(file_level)
            handler.setFormatter(formatter)
            root.addHandler(handler)

    # PTB and httpx are chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("telegram").setLevel(logging.WARNING)
