"""Pull transport: a supervised SSE connection to one Marathon member.

The supervisor connects, streams until the stream fails, then reconnects,
forever. Handshake failures rotate to the next member immediately; running
out of members waits ``RetryPolicy.interval`` before trying again.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

import httpx

from ..exceptions import HandshakeError, MarathonEventsError, RequestBuildError
from ..logging_utils import log_event
from ..retry import RetryPolicy
from ..sse import parse_sse_lines

if TYPE_CHECKING:
    from ..client import MarathonClient

EVENT_STREAM_PATH = "/v2/events"

EventHandler = Callable[[str], Awaitable[Any]]


class StreamState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    STOPPED = "stopped"


class StreamTransport:
    def __init__(
        self,
        client: "MarathonClient",
        *,
        handle_event: EventHandler,
        retry_policy: RetryPolicy,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client = client
        self._handle_event = handle_event
        self._retry_policy = retry_policy
        self._logger = logger or logging.getLogger(__name__)
        self.state = StreamState.IDLE
        self.member: Optional[str] = None
        self._started = False
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def started(self) -> bool:
        return self._started

    async def ensure_started(self) -> None:
        """Launch the supervisor once; later calls are no-ops.

        Callers serialize this under the registry's exclusive lock.
        """
        if self._started:
            return
        self._task = asyncio.get_running_loop().create_task(self._supervise())
        self._task.add_done_callback(self._on_supervisor_exit)
        self._started = True

    def _on_supervisor_exit(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.critical(
                "Event stream supervisor stopped: %s", exc, exc_info=exc
            )

    async def _supervise(self) -> None:
        try:
            while True:
                self.state = StreamState.CONNECTING
                async for attempt in self._retry_policy.retrying(self._logger):
                    with attempt:
                        response, member = await self._connect()
                self.state = StreamState.STREAMING
                self.member = member
                log_event(
                    self._logger, logging.INFO, "events.stream.connected", member=member
                )
                try:
                    error = await self._listen(response)
                finally:
                    await response.aclose()
                    self.member = None
                log_event(
                    self._logger,
                    logging.WARNING,
                    "events.stream.disconnected",
                    member=member,
                    exc=error,
                )
        except RequestBuildError as exc:
            self.state = StreamState.STOPPED
            log_event(
                self._logger,
                logging.CRITICAL,
                "events.stream.request_invalid",
                exc=exc,
            )
            raise
        except asyncio.CancelledError:
            self.state = StreamState.STOPPED
            raise

    async def _connect(self) -> tuple[httpx.Response, str]:
        """Subscribe against the first healthy member.

        Handshake failures mark the member down and move on at once; only
        running out of members (``MarathonUnavailableError``) escapes to the
        retry policy.
        """
        while True:
            request, member = self._client.build_api_request(
                "GET",
                EVENT_STREAM_PATH,
                headers={"Accept": "text/event-stream"},
                stream=True,
            )
            try:
                response = await self._client.send_stream(request)
            except httpx.TransportError as exc:
                self._handshake_failed(
                    HandshakeError(f"unable to reach {member}: {exc}", member=member)
                )
                continue
            if response.status_code != 200:
                await response.aclose()
                self._handshake_failed(
                    HandshakeError(
                        f"event stream subscribe returned {response.status_code}",
                        member=member,
                    )
                )
                continue
            return response, member

    def _handshake_failed(self, error: HandshakeError) -> None:
        log_event(
            self._logger,
            logging.WARNING,
            "events.stream.handshake_failed",
            member=error.member,
            exc=error,
        )
        self._client.cluster.mark_down(error.member)

    async def _listen(self, response: httpx.Response) -> Optional[Exception]:
        """Read frames until the stream breaks; per-frame failures are logged.

        Any failure of the stream itself is returned so the supervisor
        reconnects.
        """
        try:
            async for frame in parse_sse_lines(response.aiter_lines()):
                if not frame.data:
                    continue
                try:
                    await self._handle_event(frame.data)
                except MarathonEventsError as exc:
                    log_event(
                        self._logger,
                        logging.WARNING,
                        "events.decode_failed",
                        sse_event=frame.event,
                        exc=exc,
                    )
                except Exception:
                    self._logger.exception(
                        "Unexpected failure handling stream event %s", frame.event
                    )
        except Exception as exc:
            return exc
        return None

    async def aclose(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError, RequestBuildError):
            await task


__all__ = ["EVENT_STREAM_PATH", "StreamState", "StreamTransport"]
