"""Structured logging configuration for govharvest."""

import logging
import sys
from pathlib import Path
from typing import Optional


DEFAULT_LOG_DIR = Path("logs")
DEFAULT_LOG_FILE = "govharvest.log"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
ROOT_LOGGER_NAME = "govharvest"


def setup_logging(
    log_file: Optional[Path] = None,
    log_dir: Optional[Path] = None,
    level: int = logging.INFO,
    console: bool = True,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """Configure logging for a harvesting run.

    Args:
        log_file: Path to log file (default: logs/govharvest.log)
        log_dir: Directory for log files (default: logs/)
        level: Logging level (default: INFO)
        console: Whether to also log to stdout (default: True)
        format_string: Custom log format string

    Returns:
        The configured ``govharvest`` logger
    """
    if log_dir is None:
        log_dir = DEFAULT_LOG_DIR

    if log_file is None:
        log_file = log_dir / DEFAULT_LOG_FILE
    elif not log_file.is_absolute():
        log_file = log_dir / log_file

    log_file.parent.mkdir(parents=True, exist_ok=True)

    fmt = format_string or DEFAULT_FORMAT
    formatter = logging.Formatter(fmt, datefmt=DEFAULT_DATE_FORMAT)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    # Repeated setup must not stack handlers
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    logger.propagate = False

    logger.info(f"Logging initialized: {log_file}")
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the govharvest namespace.

    Args:
        name: Logger name (typically module or site name)

    Returns:
        Logger instance named ``govharvest.<name>``
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
