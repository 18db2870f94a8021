"""
Logging helpers.

Every module takes its logger from `get_logger(__name__)` so that the whole
package can be configured through the `ud_mpc_wallet` logger.
"""

import logging
import sys

PACKAGE_LOGGER = "ud_mpc_wallet"


def get_logger(name: str) -> logging.Logger:
    """Get a module logger."""
    return logging.getLogger(name)


def setup_logging(level: str | int = "INFO") -> logging.Logger:
    """
    Configure package logging with a console handler.

    Safe to call more than once: handlers are only attached the first time.

    Returns:
        logging.Logger: The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(level)

    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        "[%(asctime)s] [%(levelname)s] [%(name)s:%(funcName)s:%(lineno)d] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return logger
