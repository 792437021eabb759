"""Logging configuration for mediorg."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from mediorg.config.models import LoggingSettings

LOG_FILENAME = "mediorg.log"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(settings: LoggingSettings, state_dir: Path) -> logging.Logger:
    """Attach a rotating file handler to the package logger.

    Calling this more than once for the same directory is a no-op.

    Args:
        settings: Logging section of the loaded configuration.
        state_dir: Directory where `mediorg.log` is written.

    Returns:
        logging.Logger: The configured `mediorg` logger.
    """
    logger = logging.getLogger("mediorg")
    logger.setLevel(getattr(logging, settings.level.upper(), logging.INFO))

    log_path = (state_dir / LOG_FILENAME).resolve()
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename) == log_path:
            return logger

    state_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_path,
        maxBytes=max(1, settings.max_size_mb) * 1024 * 1024,
        backupCount=max(0, settings.backup_count),
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(handler)
    return logger


__all__ = ["LOG_FILENAME", "configure_logging"]
