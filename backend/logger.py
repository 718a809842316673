import logging
import sys
from typing import Optional

"""Logging setup for the rate sheet service.

Every module logs through ``logging.getLogger(__name__)``; this module only
configures the ``backend`` parent logger once, with labelled prefixes
(INFO|WARN|ERROR) so uvicorn's own access log stays distinguishable.
"""

__all__ = [
    "setup_logging",
    "reset_logging",
]

PACKAGE_LOGGER = "backend"

_logger: Optional[logging.Logger] = None


class LabeledFormatter(logging.Formatter):
    """Formatter that prefixes each message with a short level label."""

    LEVEL_LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        level_label = self.LEVEL_LABELS.get(record.levelno, record.levelname)
        message = f"{self.formatTime(record, self.datefmt)} {level_label} [{record.name}] {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure the package logger. Repeated calls only adjust the level."""
    global _logger

    if _logger is not None:
        _logger.setLevel(level.upper())
        return _logger

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level.upper())

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(LabeledFormatter())
    logger.addHandler(handler)

    # uvicorn installs root handlers; avoid printing every line twice
    logger.propagate = False

    _logger = logger
    return logger


def reset_logging() -> None:
    """Forget the configured logger. Mainly for tests."""
    global _logger
    if _logger is not None:
        for handler in _logger.handlers[:]:
            _logger.removeHandler(handler)
        _logger.propagate = True
    _logger = None
