"""Logging setup shared by the CLI, the dashboard and the server."""

import logging
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def get_log_path() -> Path:
    """Default log file used while the dashboard owns the terminal."""
    return Path.home() / ".linkdeck" / "linkdeck.log"


def setup_logging(level: str = "WARNING", log_file: Optional[Path] = None) -> None:
    """Configure the ``linkdeck`` logger hierarchy.

    Args:
        level: Level name, e.g. ``INFO``.
        log_file: Write to this file instead of stderr.
    """
    handler: logging.Handler
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logger = logging.getLogger("linkdeck")
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.WARNING))
