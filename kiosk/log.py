"""Logging setup: rich console output plus an append-only debug file."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.logging import RichHandler

from kiosk.config import DEBUG_LOG_PATH

_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: int = logging.INFO, debug_log_path: str | Path | None = DEBUG_LOG_PATH) -> logging.Logger:
    """Install handlers on the ``kiosk`` logger. Safe to call more than once."""
    logger = logging.getLogger("kiosk")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = RichHandler(rich_tracebacks=True, show_path=False)
    console.setLevel(level)
    logger.addHandler(console)

    if debug_log_path is not None:
        path = Path(debug_log_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path, encoding="utf-8")
        except OSError:
            logger.warning("debug_log_unavailable path=%s", path)
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
            logger.addHandler(file_handler)

    logger.propagate = False
    return logger
