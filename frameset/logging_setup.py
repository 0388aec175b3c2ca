"""Logging setup for hgb-frameset."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

LOG_LEVEL_ENV = "HGB_FRAMESET_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


def _resolve_level(level: Optional[Union[int, str]]) -> int:
    if isinstance(level, int):
        return level
    name = (level or os.getenv(LOG_LEVEL_ENV, "INFO")).upper()
    resolved = logging.getLevelName(name)
    if not isinstance(resolved, int):
        return logging.INFO
    return resolved


def init_logging(
    level: Optional[Union[int, str]] = None,
    log_file: Optional[Union[str, Path]] = None,
) -> int:
    """Attach stderr (and optionally rotating file) handlers to the root logger.

    Calling it again only adjusts levels; handlers are never duplicated.
    Returns the effective level.
    """
    resolved = _resolve_level(level)
    root = logging.getLogger()
    root.setLevel(resolved)
    formatter = logging.Formatter(LOG_FORMAT)

    has_stream = False
    for handler in root.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setLevel(resolved)
            has_stream = True
    if not has_stream:
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(resolved)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    if log_file is not None:
        path = Path(log_file)
        if not any(
            isinstance(h, RotatingFileHandler) and Path(h.baseFilename) == path.absolute()
            for h in root.handlers
        ):
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                path,
                maxBytes=2_000_000,
                backupCount=5,
                encoding="utf-8",
            )
            file_handler.setLevel(resolved)
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

    logging.getLogger("frameset").debug("Logging initialized at %s", logging.getLevelName(resolved))
    return resolved
