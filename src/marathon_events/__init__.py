"""Marathon event subscription and dispatch."""

from .client import MarathonClient, Subscriptions
from .config import EventsTransport, MarathonConfig, load_config
from .decoder import decode_event
from .events import Event, EventID, get_event, parse_event_filter
from .exceptions import (
    ConfigError,
    DecodeError,
    MarathonAPIError,
    MarathonEventsError,
    MarathonUnavailableError,
    UnknownEventError,
)
from .listeners import EventsChannel
from .retry import RetryPolicy

__all__ = [
    "ConfigError",
    "DecodeError",
    "Event",
    "EventID",
    "EventsChannel",
    "EventsTransport",
    "MarathonAPIError",
    "MarathonClient",
    "MarathonConfig",
    "MarathonEventsError",
    "MarathonUnavailableError",
    "RetryPolicy",
    "Subscriptions",
    "UnknownEventError",
    "decode_event",
    "get_event",
    "load_config",
    "parse_event_filter",
]
