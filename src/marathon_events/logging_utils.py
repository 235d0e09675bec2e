from __future__ import annotations

import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

from .config import LogConfig

_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _render_value(value: Any) -> Any:
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    return value


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    """Emit a structured log line: the event name followed by JSON fields."""
    if not logger.isEnabledFor(level):
        return
    payload = {key: _render_value(value) for key, value in fields.items()}
    if payload:
        logger.log(level, "%s %s", event, json.dumps(payload, default=str))
    else:
        logger.log(level, "%s", event)


def setup_logging(
    config: LogConfig, *, logger_name: str = "marathon_events"
) -> logging.Logger:
    logger = logging.getLogger(logger_name)
    logger.setLevel(logging.getLevelName(config.level.upper()))
    if config.path is not None:
        config.path.parent.mkdir(parents=True, exist_ok=True)
        existing: Optional[RotatingFileHandler] = None
        for handler in logger.handlers:
            if isinstance(handler, RotatingFileHandler) and (
                handler.baseFilename == os.path.abspath(config.path)
            ):
                existing = handler
        if existing is None:
            handler = RotatingFileHandler(
                config.path,
                maxBytes=config.max_bytes,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
            handler.setFormatter(logging.Formatter(_FORMAT))
            logger.addHandler(handler)
    elif not logger.handlers and not logging.getLogger().handlers:
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(stream)
    return logger


__all__ = ["log_event", "setup_logging"]
