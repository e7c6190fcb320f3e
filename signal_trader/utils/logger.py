"""
Logging configuration using loguru.

Standard-library loggers used by Flask/werkzeug and urllib3 are routed
into loguru so the webhook server writes a single log stream.
"""

import logging
import sys

from loguru import logger

from signal_trader.config.settings import get_settings


# stdlib loggers forwarded to loguru
_FORWARDED_LOGGERS = ("werkzeug", "urllib3")


class InterceptHandler(logging.Handler):
    """Forwards stdlib logging records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging internals so loguru reports the original caller
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logger(name: str = "signal_trader", log_to_file: bool = True) -> None:
    """
    Configure the loguru logger with settings from config.

    Args:
        name: Logger name for the log file
        log_to_file: Also write a rotating log file
    """
    settings = get_settings()
    log_config = settings.logging

    # Remove default handler
    logger.remove()

    logger.add(
        sys.stderr,
        format=log_config.format,
        level=log_config.level,
        colorize=True
    )

    for logger_name in _FORWARDED_LOGGERS:
        std_logger = logging.getLogger(logger_name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False

    if not log_to_file:
        return

    log_file = settings.get_log_dir() / f"{name}.log"
    logger.add(
        log_file,
        format=log_config.format,
        level=log_config.level,
        rotation=log_config.rotation,
        retention=log_config.retention,
        compression="zip"
    )

    logger.info(f"Logger initialized. Log file: {log_file}")


def get_logger():
    """
    Get the configured logger instance.

    Returns:
        loguru logger instance
    """
    return logger
