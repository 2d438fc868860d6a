# services/api/logging_config.py
from __future__ import annotations

import logging
import os
import sys

_ROOT = "claims"
_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
_configured = False


def configure_logging(level: str | None = None) -> None:
    """
    Install a single stream handler on the `claims` logger tree.
    Safe to call more than once; only the level is updated on later calls.
    """
    global _configured
    lvl = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    root = logging.getLogger(_ROOT)
    root.setLevel(lvl)
    if _configured:
        return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(f"{_ROOT}.{name}")
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return logger


def _short(pk: str | None) -> str:
    return f"{pk[:4]}…{pk[-5:]}" if pk and len(pk) > 10 else (pk or "")
