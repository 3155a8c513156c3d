"""Logging setup shared by the weaver modules."""
from __future__ import annotations

import logging
from typing import Optional

_DEFAULT_LEVEL = logging.WARNING
_FORMAT = "%(levelname)s %(name)s: %(message)s"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a module-level logger; the root logger is configured once."""
    logger = logging.getLogger(name)
    if not logging.getLogger().handlers:
        logging.basicConfig(level=_DEFAULT_LEVEL, format=_FORMAT)
    return logger


def set_verbosity(level: int) -> None:
    logging.getLogger("weaver").setLevel(level)
