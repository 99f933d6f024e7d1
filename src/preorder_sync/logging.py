"""Package logging.

Handlers live on the ``preorder_sync`` logger only; module loggers are its
children and propagate to it, so reconfiguring (``--verbose``, tests) takes
effect everywhere at once.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Union

PACKAGE_LOGGER = "preorder_sync"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _coerce_level(value: Union[str, int, None]) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        level = logging.getLevelName(value.strip().upper())
        if isinstance(level, int):
            return level
    return logging.INFO


def configure_logging(level: Union[str, int, None] = None, log_file: Optional[str] = None) -> logging.Logger:
    """Install console (and optional file) handlers on the package logger.

    ``level`` and ``log_file`` default to LOG_LEVEL and LOG_FILE. Calling it
    again replaces the previous handlers.
    """
    package = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package.handlers):
        package.removeHandler(handler)
        handler.close()

    package.setLevel(_coerce_level(level if level is not None else os.environ.get("LOG_LEVEL")))
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    package.addHandler(console)

    path = log_file if log_file is not None else os.environ.get("LOG_FILE")
    if path:
        try:
            file_handler = logging.FileHandler(path, encoding="utf-8")
        except OSError as exc:
            package.warning(f"LOG_FILE {path} could not be opened ({exc}); console only")
        else:
            file_handler.setFormatter(formatter)
            package.addHandler(file_handler)

    package.propagate = False
    return package


def get_logger(name: str) -> logging.Logger:
    package = logging.getLogger(PACKAGE_LOGGER)
    if not package.handlers:
        configure_logging()
    return package.getChild(name)
