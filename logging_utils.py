#!/usr/bin/env python3
"""
Shared logger setup helpers for the autoscaler processes.
"""

import logging
import os
import sys
from typing import Optional, Union

from autoscaler_errors import ConfigError

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_HANDLER_MARK = "_replica_autoscaler_handler"


def resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ConfigError(f"Unknown log level: {level!r}")
    return value


def get_app_logger(
    name: Optional[str] = None,
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Attach console (and optional file) handlers to ``name``, or to the root logger.

    Library modules only call ``logging.getLogger(__name__)``; the process entry
    point calls this once so their records end up in the same handlers.
    Calling it again only updates the level.
    """
    level = resolve_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(level)

    installed = [h for h in logger.handlers if getattr(h, _HANDLER_MARK, False)]
    if installed:
        for handler in installed:
            handler.setLevel(level)
        return logger

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    setattr(console_handler, _HANDLER_MARK, True)
    logger.addHandler(console_handler)

    if log_file:
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(log_file, mode="a")
        except OSError as e:
            # Console logging stays available
            logger.warning(f"File logging to {log_file} unavailable: {e}")
        else:
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            setattr(file_handler, _HANDLER_MARK, True)
            logger.addHandler(file_handler)

    return logger
