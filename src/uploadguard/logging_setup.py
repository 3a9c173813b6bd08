"""Debug logging switch for the ``uploadguard`` logger hierarchy."""

from __future__ import annotations

import logging
from pathlib import Path

LOGGER_NAME = "uploadguard"
LOG_DIR_NAME = ".uploadguard"


def enable_debug_logging(log_path: Path | None = None) -> logging.FileHandler:
    """Attach a DEBUG file handler to the package logger.

    Args:
        log_path: Destination file. Defaults to ``~/.uploadguard/debug.log``.

    Returns:
        The attached handler, so callers can remove it again.
    """
    if log_path is None:
        debug_dir = Path.home() / LOG_DIR_NAME
        debug_dir.mkdir(exist_ok=True)
        log_path = debug_dir / "debug.log"
    else:
        log_path.parent.mkdir(parents=True, exist_ok=True)

    fh = logging.FileHandler(log_path)
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    logger = logging.getLogger(LOGGER_NAME)
    logger.addHandler(fh)
    logger.setLevel(logging.DEBUG)
    return fh
