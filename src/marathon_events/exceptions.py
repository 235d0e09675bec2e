from __future__ import annotations

from typing import Optional


class MarathonEventsError(Exception):
    """Base error for the events subsystem."""

    recoverable: bool = False
    severity: str = "error"

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message


class PermanentError(MarathonEventsError):
    """Non-retryable failure (bad configuration, bad payloads, logic defects)."""

    recoverable = False
    severity = "error"


class TransientError(MarathonEventsError):
    """Retryable failure (network, unreachable members)."""

    recoverable = True
    severity = "warning"


class ConfigError(PermanentError):
    """Raised when configuration is invalid or unsupported."""


class DecodeError(PermanentError):
    """Raised when an event payload cannot be decoded."""

    def __init__(self, message: str, *, content: str = "") -> None:
        super().__init__(message)
        self.content = content


class UnknownEventError(PermanentError):
    """Raised when the event-type tag is not in the catalog."""

    def __init__(self, event_type: str) -> None:
        super().__init__(f"the event type: {event_type!r} was not recognized")
        self.event_type = event_type


class RequestBuildError(PermanentError):
    """Raised when an outbound request cannot be constructed.

    This points at malformed internal state (bad member address, bad path)
    rather than anything the network did.
    """


class MarathonAPIError(PermanentError):
    """Raised when Marathon answers with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class MarathonUnavailableError(TransientError):
    """Raised when no cluster member is reachable."""


class HandshakeError(TransientError):
    """Raised when the event stream subscribe call fails against a member."""

    def __init__(self, message: str, *, member: str) -> None:
        super().__init__(message)
        self.member = member


class ListenerBindError(TransientError):
    """Raised when the callback listener cannot resolve its address or bind."""


class ChannelClosedError(MarathonEventsError):
    """Raised on send/receive against a closed events channel."""


__all__ = [
    "ChannelClosedError",
    "ConfigError",
    "DecodeError",
    "HandshakeError",
    "ListenerBindError",
    "MarathonAPIError",
    "MarathonEventsError",
    "MarathonUnavailableError",
    "PermanentError",
    "RequestBuildError",
    "TransientError",
    "UnknownEventError",
]
