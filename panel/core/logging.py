"""JSON logging setup for the alerting backend."""
from __future__ import annotations

import logging
import re
from typing import Optional

from pythonjsonlogger import jsonlogger

# Telegram puts the bot token in the request path.
_BOT_TOKEN_PATTERN = re.compile(r"/bot[^/\s]+/")

# Libraries that log every request or job run at INFO.
_NOISY_LOGGERS = ("apscheduler", "httpx", "httpcore")


class BotTokenRedactingFilter(logging.Filter):
    """Mask Telegram bot tokens in log messages and string extras."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "/bot" in message:
            record.msg = _BOT_TOKEN_PATTERN.sub("/bot***/", message)
            record.args = None
        error = getattr(record, "error", None)
        if isinstance(error, str) and "/bot" in error:
            record.error = _BOT_TOKEN_PATTERN.sub("/bot***/", error)
        return True


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging with a JSON formatter."""

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level.upper())

    handler = logging.StreamHandler()
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "name": "logger"},
        )
    )
    handler.addFilter(BotTokenRedactingFilter())
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    return logger


__all__ = ["BotTokenRedactingFilter", "get_logger", "setup_logging"]
