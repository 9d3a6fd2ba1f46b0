"""
logging_config.py — Centralized Logging Configuration for the Reconciliation Service

This module configures unified logging behavior for the entire application.
It ensures that all modules log messages consistently to both console and file.

Features:
    • Combined console and file logging output
    • Process ID tagging for multi-process visibility
    • Standardized log format for all modules
    • Reduced verbosity for external dependencies (httpx, httpcore, pika)
"""

import logging
import sys

from . import config


def setup_logging(log_file: str = config.LOG_FILE):
    """
    Configures the global logging system for the application.

    The configuration includes:
        - Log level: INFO (default)
        - Log format: timestamp, log level, process ID, and message
        - Output destinations:
            1. File: `log_file` (persistent log)
            2. Console (stdout): real-time logs, Docker/Kubernetes compatible
        - httpx request logging lowered to WARNING: its INFO lines contain the
          full request URL, which for the Bot API includes the bot token
    """
    log_format = '%(asctime)s - %(levelname)s - [PID:%(process)d] - %(message)s'

    logging.basicConfig(
        level=logging.INFO,
        format=log_format,
        handlers=[
            # File output
            logging.FileHandler(log_file),
            # Console output (stdout, Docker-compatible)
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Reduce verbosity from external libraries
    for name in ("httpx", "httpcore", "pika"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name):
    """
    Returns a configured logger instance for a given module or component name.

    Args:
        name (str): The logger name, typically the module's __name__.

    Returns:
        logging.Logger: A preconfigured logger that follows the global format and handlers.
    """
    return logging.getLogger(name)
