from __future__ import annotations

import logging
from logging import Logger
from typing import Optional

ROOT_LOGGER = "ppclient"


def setup_logger(
    name: str = ROOT_LOGGER,
    logfile: Optional[str] = None,
    level: int = logging.INFO,
    quiet_http: bool = True,
) -> Logger:
    """Configure the package logger once; later calls return it untouched."""
    logger = logging.getLogger(name)
    # the file log keeps debug lines; handlers do the level filtering
    logger.setLevel(min(level, logging.DEBUG) if logfile else level)
    if not logger.handlers:
        ch = logging.StreamHandler()
        ch.setLevel(level)
        ch.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
        logger.addHandler(ch)
        if logfile:
            fh = logging.FileHandler(logfile, encoding="utf-8")
            fh.setLevel(logging.DEBUG)
            fh.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
            logger.addHandler(fh)
    if quiet_http:
        # urllib3 logs every connection at DEBUG, which drowns out poll ticks
        logging.getLogger("urllib3").setLevel(logging.WARNING)
    return logger


def get_logger(component: str) -> Logger:
    """Child of the package logger, so handlers set up by the CLI apply."""
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")
