"""Logger factory shared by the API, the worker and the dispatcher."""

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(funcName)s:%(lineno)d %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    return getattr(logging, name, logging.INFO)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Return a stdout logger for ``name``.

    The level comes from ``level``, then the ``LOG_LEVEL`` environment
    variable, then INFO. A handler is attached only once per logger, so
    repeated calls from the same module do not duplicate output.
    """
    logger = logging.getLogger(name)
    resolved = _resolve_level(level)
    logger.setLevel(resolved)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(resolved)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)

    return logger
