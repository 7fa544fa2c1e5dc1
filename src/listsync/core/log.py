"""Logging setup for hosts embedding the engine."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: int = logging.INFO, log_path: Path | None = None) -> logging.Logger:
    """Configure the ``listsync`` logger to output to stdout and optionally a file.

    Calling it again replaces the handlers it installed earlier.

    Args:
        level: Logging level for the ``listsync`` logger.
        log_path: Optional path to a log file.

    Returns:
        The configured ``listsync`` logger.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger("listsync")
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        if getattr(handler, "_listsync_handler", False):
            root_logger.removeHandler(handler)
            handler.close()

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(formatter)
    stdout_handler._listsync_handler = True  # type: ignore[attr-defined]
    root_logger.addHandler(stdout_handler)

    if log_path is not None:
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler._listsync_handler = True  # type: ignore[attr-defined]
        root_logger.addHandler(file_handler)

    return root_logger
