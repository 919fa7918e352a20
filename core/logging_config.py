"""
core/logging_config.py -- Process-wide logging setup.

Called once by api/main.py at import time and by the CLI. Everything else
just asks for a named logger (logging.getLogger("userauth.<area>")).

Handlers:
  - stdout stream handler, always.
  - rotating file handler when LOG_FILE is set (5 MB per file, 5 backups).
    A log directory that cannot be created is reported on stderr and the
    service keeps running with stdout only.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_MAX_LOG_BYTES = 5 * 1024 * 1024
_LOG_BACKUPS = 5


def configure_logging(settings: Settings) -> None:
    """Install root handlers according to settings.

    force=True replaces handlers from an earlier call so repeated app imports
    in a test session do not stack duplicate handlers.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if settings.log_file:
        log_path = Path(settings.log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(RotatingFileHandler(log_path, maxBytes=_MAX_LOG_BYTES, backupCount=_LOG_BACKUPS))
        except OSError as exc:
            print(f"WARNING: Could not set up file logging: {exc}", file=sys.stderr)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
