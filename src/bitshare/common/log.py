"""
Logging setup for the BitShare processes
"""
import logging
from typing import Optional

from .config import LOG_FORMAT, LOG_LEVEL

ROOT_LOGGER = "bitshare"


def setup_logging(level: str = LOG_LEVEL, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configures the package logger once

    Args:
        level: Level name (DEBUG, INFO, ...)
        log_file: Optional file that receives a copy of every record

    Returns:
        The configured ``bitshare`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT)
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
               for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if log_file and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
