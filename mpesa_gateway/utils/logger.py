"""
Logging Configuration
Centralized logging setup for the M-Pesa gateway client
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

LOG_DIR_ENV = 'MPESA_LOG_DIR'
LOG_LEVEL_ENV = 'MPESA_LOG_LEVEL'


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)

    # Only configure if not already configured
    if not logger.handlers:
        level = logging.getLevelName(os.getenv(LOG_LEVEL_ENV, 'INFO').upper())
        if not isinstance(level, int):
            level = logging.INFO
        logger.setLevel(level)

        # Console handler
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(
            '%(levelname)s - %(name)s - %(message)s'
        ))
        logger.addHandler(console_handler)

        # File handler (only when a log directory is configured)
        log_dir = os.getenv(LOG_DIR_ENV)
        if log_dir:
            try:
                os.makedirs(log_dir, exist_ok=True)
            except OSError:
                log_dir = None

        if log_dir:
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, 'mpesa-gateway.log'),
                maxBytes=10485760,  # 10MB
                backupCount=10
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            logger.addHandler(file_handler)

    return logger
