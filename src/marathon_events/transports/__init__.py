"""Event delivery transports: inbound callbacks and the outbound SSE stream."""

from .callback import CallbackState, CallbackTransport
from .stream import StreamState, StreamTransport

__all__ = ["CallbackState", "CallbackTransport", "StreamState", "StreamTransport"]
