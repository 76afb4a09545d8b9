# flightguard/logging_config.py
#
# Centralized logging configuration for the weather check job and services

import logging
import sys

from config.settings import LOG_LEVEL

_HANDLER_NAME = "flightguard-console"


def setup_logging(log_level: str = None):
    """
    Setup logging for the application.

    Safe to call more than once: the console handler is only attached the
    first time.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
                   Defaults to LOG_LEVEL from settings
    """
    if log_level is None:
        log_level = LOG_LEVEL
    log_level = log_level.upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))

    if not any(h.get_name() == _HANDLER_NAME for h in root_logger.handlers):
        formatter = logging.Formatter(
            fmt='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.set_name(_HANDLER_NAME)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return root_logger
