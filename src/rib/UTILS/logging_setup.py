"""
Logging configuration for the builder.
"""
import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"
ROOT_LOGGER = "rib"


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Configures the 'rib' logger hierarchy.

    :param level: Level name; falls back to RIB_LOG_LEVEL, then INFO.
    :return: The package root logger.
    """
    level_name = (level or os.getenv("RIB_LOG_LEVEL", "INFO")).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(log_level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.propagate = False
    return logger
