"""JSON logging for the backoffice API and its batch jobs."""
from __future__ import annotations

import logging
from typing import Optional

from pythonjsonlogger import jsonlogger

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS = ("apscheduler.scheduler", "apscheduler.executors.default", "sqlalchemy.engine")


def setup_logging(level: str = "INFO", *, service: str | None = None) -> None:
    """Install a single JSON handler on the root logger.

    Calling it again replaces the handler, so reloads never duplicate lines.
    ``service`` is stamped on every record when given.
    """

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level.upper())

    formatter = jsonlogger.JsonFormatter(
        LOG_FORMAT,
        rename_fields={"levelname": "level", "name": "logger"},
        static_fields={"service": service} if service else None,
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    return logger


__all__ = ["LOG_FORMAT", "setup_logging", "get_logger"]
