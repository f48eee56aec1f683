"""Logging infrastructure setup."""

import logging
import os
from pathlib import Path
from typing import Optional


def setup_logger(
    name: str = "market_alerts",
    log_file: str = "output/monitor.log",
    level: Optional[str] = None,
) -> logging.Logger:
    """
    Configure and return the monitor logger (file under output/ plus console).

    Args:
        name (str): The name of the logger.
        log_file (str): The path to the log file.
        level (Optional[str]): Level name; defaults to ``LOG_LEVEL`` or INFO.

    Returns:
        logging.Logger: The configured logger instance.
    """
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)

    # Setup may run once per entry point; handlers must not stack
    if logger.hasHandlers():
        return logger

    logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())
    logger.propagate = False

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(module)s.%(funcName)s | %(threadName)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    for handler in (logging.FileHandler(log_path, encoding="utf-8"), logging.StreamHandler()):
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


logger = setup_logger()
