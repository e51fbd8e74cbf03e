"""Logging configuration for the nodectl package."""
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional, Iterable

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_SUDO_SECRET = re.compile(r"echo\s+('[^']*'|\"[^\"]*\"|\S+)\s*\|\s*sudo\s+-S")


def setup_logger(
    name: str,
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    max_bytes: int = 100 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Set up a logger with the specified name and log level.

    Args:
        name: The name of the logger
        level: The logging level (default: logging.INFO)
        log_file: Optional path for a rotating log file
        max_bytes: Size at which the log file is rotated
        backup_count: Number of rotated files to keep

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    # Don't add handlers if they're already configured
    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
               for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if log_file and not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def setup_from_settings(settings, debug: bool = False) -> logging.Logger:
    """Configure the ``nodectl`` logger tree from a Settings object."""
    level = logging.DEBUG if debug else getattr(logging, settings.logging.level, logging.INFO)
    logger = setup_logger(
        "nodectl",
        level=level,
        log_file=settings.logging.file,
        max_bytes=settings.logging.max_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )
    # Disable debug logging for noisy libraries
    if not debug:
        logging.getLogger('paramiko').setLevel(logging.WARNING)
        logging.getLogger('urllib3').setLevel(logging.WARNING)
    return logger


def redact_command(command: str, secrets: Iterable[str] = ()) -> str:
    """Mask credentials piped into sudo, plus any explicit secrets."""
    masked = _SUDO_SECRET.sub("echo '***' | sudo -S", command)
    for secret in secrets:
        if secret:
            masked = masked.replace(secret, '***')
    return masked
