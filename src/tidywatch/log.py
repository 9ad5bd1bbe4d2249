"""Logging setup shared by the CLI and long-running services."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from tidywatch.config.models import LoggingSettings

_HANDLER_MARKER = "_tidywatch_handler"
_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s"


def configure_logging(settings: LoggingSettings, *, verbose: bool = False) -> logging.Logger:
    """Install file and console handlers on the ``tidywatch`` logger.

    Repeated calls replace the handlers installed by earlier calls, so the CLI
    can be invoked several times in one process (as the test-suite does).

    Args:
        settings: Logging section of the loaded configuration.
        verbose: When True, mirror records to stderr through Rich at DEBUG level.

    Returns:
        logging.Logger: The configured package logger.
    """

    logger = logging.getLogger("tidywatch")
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()

    level = logging.DEBUG if verbose else logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        level = logging.WARNING
    logger.setLevel(level)

    log_path = Path(settings.path).expanduser()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max(1, settings.max_size_mb) * 1024 * 1024,
            backupCount=max(0, settings.backup_count),
            encoding="utf-8",
        )
    except OSError as exc:
        logger.warning("File logging disabled, cannot open %s: %s", log_path, exc)
    else:
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        setattr(file_handler, _HANDLER_MARKER, True)
        logger.addHandler(file_handler)

    if verbose:
        console_handler = RichHandler(console=Console(stderr=True), show_path=False)
        setattr(console_handler, _HANDLER_MARKER, True)
        logger.addHandler(console_handler)

    return logger


__all__ = ["configure_logging"]
