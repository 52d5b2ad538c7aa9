from __future__ import annotations

import logging

from ..config import LOG_LEVEL


def get_logger(name="wholesale_ledger", level: str | int | None = None):
    logger = logging.getLogger(name)
    if not logger.handlers:
        logger.setLevel(level or LOG_LEVEL)
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
        logger.addHandler(ch)
    return logger
