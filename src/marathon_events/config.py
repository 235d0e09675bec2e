from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

from .exceptions import ConfigError

DEFAULT_MARATHON_URL = "http://127.0.0.1:8080"
DEFAULT_EVENTS_INTERFACE = "eth0"
DEFAULT_EVENTS_PORT = 10001
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_HEALTH_CHECK_INTERVAL = 5.0
DEFAULT_SSE_RETRY_INTERVAL = 5.0
DEFAULT_EVENTS_BUFFER_SIZE = 1
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 3
DCOS_TOKEN_ENV = "MARATHON_EVENTS_DCOS_TOKEN"


class EventsTransport(str, Enum):
    CALLBACK = "callback"
    SSE = "sse"


@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    max_bytes: int = DEFAULT_LOG_MAX_BYTES
    backup_count: int = DEFAULT_LOG_BACKUP_COUNT


@dataclass(frozen=True)
class MarathonConfig:
    marathon_url: str = DEFAULT_MARATHON_URL
    # Kept as a plain union so programmatic callers can hand in anything; the
    # subscription manager rejects values it does not know at attach time.
    events_transport: Union[EventsTransport, str] = EventsTransport.CALLBACK
    events_interface: str = DEFAULT_EVENTS_INTERFACE
    events_port: int = DEFAULT_EVENTS_PORT
    callback_url: Optional[str] = None
    http_basic_auth_user: Optional[str] = None
    http_basic_auth_password: Optional[str] = None
    dcos_token: Optional[str] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    health_check_interval: float = DEFAULT_HEALTH_CHECK_INTERVAL
    sse_retry_interval: float = DEFAULT_SSE_RETRY_INTERVAL
    events_buffer_size: int = DEFAULT_EVENTS_BUFFER_SIZE
    log: LogConfig = field(default_factory=LogConfig)

    @property
    def basic_auth(self) -> Optional[tuple[str, str]]:
        if self.http_basic_auth_user:
            return (self.http_basic_auth_user, self.http_basic_auth_password or "")
        return None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "MarathonConfig":
        cfg: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}

        marathon_url = str(cfg.get("marathon_url", DEFAULT_MARATHON_URL)).strip()
        if not marathon_url:
            raise ConfigError("marathon_url must be non-empty")

        transport_raw = cfg.get("events_transport", EventsTransport.CALLBACK.value)
        events_transport = parse_events_transport(transport_raw)

        events_interface = str(
            cfg.get("events_interface", DEFAULT_EVENTS_INTERFACE)
        ).strip()
        if not events_interface:
            raise ConfigError("events_interface must be non-empty")

        events_port = cfg.get("events_port", DEFAULT_EVENTS_PORT)
        if isinstance(events_port, bool) or not isinstance(events_port, int):
            raise ConfigError("events_port must be an integer")
        if not 0 <= events_port <= 65535:
            raise ConfigError("events_port must be between 0 and 65535")

        callback_url = _optional_str(cfg, "callback_url")
        if callback_url:
            callback_url = callback_url.rstrip("/")

        dcos_token = _optional_str(cfg, "dcos_token") or (
            os.environ.get(DCOS_TOKEN_ENV) or None
        )

        buffer_size = cfg.get("events_buffer_size", DEFAULT_EVENTS_BUFFER_SIZE)
        if isinstance(buffer_size, bool) or not isinstance(buffer_size, int):
            raise ConfigError("events_buffer_size must be an integer")
        if buffer_size < 1:
            raise ConfigError("events_buffer_size must be >= 1")

        return cls(
            marathon_url=marathon_url,
            events_transport=events_transport,
            events_interface=events_interface,
            events_port=events_port,
            callback_url=callback_url,
            http_basic_auth_user=_optional_str(cfg, "http_basic_auth_user"),
            http_basic_auth_password=_optional_str(cfg, "http_basic_auth_password"),
            dcos_token=dcos_token,
            request_timeout=_seconds(
                cfg, "request_timeout", DEFAULT_REQUEST_TIMEOUT, allow_zero=False
            ),
            health_check_interval=_seconds(
                cfg, "health_check_interval", DEFAULT_HEALTH_CHECK_INTERVAL
            ),
            sse_retry_interval=_seconds(
                cfg, "sse_retry_interval", DEFAULT_SSE_RETRY_INTERVAL
            ),
            events_buffer_size=buffer_size,
            log=_parse_log_config(cfg.get("log")),
        )


def parse_events_transport(value: Any) -> EventsTransport:
    if isinstance(value, EventsTransport):
        return value
    normalized = str(value).strip().lower()
    try:
        return EventsTransport(normalized)
    except ValueError:
        raise ConfigError(
            f"the events transport: {value!r} is not supported"
        ) from None


def _optional_str(cfg: Mapping[str, Any], key: str) -> Optional[str]:
    value = cfg.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    value = value.strip()
    return value or None


def _seconds(
    cfg: Mapping[str, Any], key: str, default: float, *, allow_zero: bool = True
) -> float:
    value = cfg.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number of seconds")
    if value < 0 or (value == 0 and not allow_zero):
        raise ConfigError(f"{key} must be {'>= 0' if allow_zero else '> 0'}")
    return float(value)


def _parse_log_config(raw: Any) -> LogConfig:
    if raw is None:
        return LogConfig()
    if not isinstance(raw, Mapping):
        raise ConfigError("log must be a mapping")
    level = str(raw.get("level", "INFO")).strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigError(f"log.level {level!r} is not a logging level")
    path_raw = raw.get("path")
    path = Path(str(path_raw)).expanduser() if path_raw else None
    max_bytes = raw.get("max_bytes", DEFAULT_LOG_MAX_BYTES)
    backup_count = raw.get("backup_count", DEFAULT_LOG_BACKUP_COUNT)
    if not isinstance(max_bytes, int) or max_bytes < 0:
        raise ConfigError("log.max_bytes must be a non-negative integer")
    if not isinstance(backup_count, int) or backup_count < 0:
        raise ConfigError("log.backup_count must be a non-negative integer")
    return LogConfig(
        level=level, path=path, max_bytes=max_bytes, backup_count=backup_count
    )


def load_config(path: Path) -> MarathonConfig:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a mapping: {path}")
    return MarathonConfig.from_raw(data)


__all__ = [
    "ConfigError",
    "EventsTransport",
    "LogConfig",
    "MarathonConfig",
    "load_config",
    "parse_events_transport",
]
