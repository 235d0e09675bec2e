"""Push transport: Marathon calls back into a locally bound HTTP listener.

States move ``UNBOUND -> BOUND -> REGISTERED``. Binding happens once for the
life of the transport; registration is re-attempted on every attach until it
succeeds, and revoked when the last listener leaves.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterator, Optional

import psutil
import uvicorn
from fastapi import FastAPI, Request, Response
from starlette.requests import ClientDisconnect

from ..config import MarathonConfig
from ..exceptions import ListenerBindError, MarathonEventsError
from ..logging_utils import log_event

if TYPE_CHECKING:
    from ..client import MarathonClient

EVENTS_PATH = "/event"
INTAKE_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]
_LISTEN_BACKLOG = 128
_RESTART_DELAY_SECONDS = 0.5

EventHandler = Callable[[bytes], Awaitable[Any]]


class CallbackState(str, Enum):
    UNBOUND = "unbound"
    BOUND = "bound"
    REGISTERED = "registered"


def get_interface_address(name: str) -> str:
    addresses = psutil.net_if_addrs().get(name)
    if not addresses:
        raise ListenerBindError(f"Unable to find the network interface: {name}")
    for address in addresses:
        if address.family == socket.AF_INET:
            return address.address
    raise ListenerBindError(f"Interface {name} has no IPv4 address")


def bind_listener(host: str, port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(_LISTEN_BACKLOG)
    except OSError as exc:
        sock.close()
        raise ListenerBindError(f"Unable to bind {host}:{port}: {exc}") from exc
    return sock


def build_intake_app(
    handle_event: EventHandler, *, logger: Optional[logging.Logger] = None
) -> FastAPI:
    """Build the intake app. Every request is answered 200.

    Unreadable bodies and undecodable events are logged and dropped; Marathon
    retries on error statuses, so failures are never echoed back to it.
    """
    log = logger or logging.getLogger(__name__)
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

    @app.api_route(EVENTS_PATH, methods=INTAKE_METHODS)
    async def intake(request: Request) -> Response:
        try:
            body = await request.body()
        except ClientDisconnect as exc:
            log_event(log, logging.WARNING, "events.callback.read_failed", exc=exc)
            return Response(status_code=200)
        if not body:
            return Response(status_code=200)
        try:
            await handle_event(body)
        except MarathonEventsError as exc:
            log_event(log, logging.WARNING, "events.decode_failed", exc=exc)
        except Exception:
            log.exception("Unexpected failure handling callback event")
        return Response(status_code=200)

    return app


class _CallbackServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to the host app."""

    def install_signal_handlers(self) -> None:
        return None

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class CallbackTransport:
    def __init__(
        self,
        client: "MarathonClient",
        config: MarathonConfig,
        *,
        handle_event: EventHandler,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._client = client
        self._config = config
        self._logger = logger or logging.getLogger(__name__)
        self.app = build_intake_app(handle_event, logger=self._logger)
        self.state = CallbackState.UNBOUND
        self._ip_address: Optional[str] = None
        self._port: Optional[int] = None
        self._socket: Optional[socket.socket] = None
        self._server: Optional[uvicorn.Server] = None
        self._serve_task: Optional[asyncio.Task[None]] = None
        self._closing = False

    @property
    def bound_address(self) -> Optional[tuple[str, int]]:
        if self._ip_address is None or self._port is None:
            return None
        return (self._ip_address, self._port)

    def subscription_url(self) -> str:
        if self._config.callback_url:
            return f"{self._config.callback_url}{EVENTS_PATH}"
        ip_address = self._ip_address or get_interface_address(
            self._config.events_interface
        )
        port = self._port if self._port is not None else self._config.events_port
        return f"http://{ip_address}:{port}{EVENTS_PATH}"

    async def ensure_started(self) -> None:
        if self.state is CallbackState.REGISTERED:
            return
        if self._socket is None:
            self._bind()
        await self._register()

    def _bind(self) -> None:
        interface = self._config.events_interface
        ip_address = get_interface_address(interface)
        sock = bind_listener(ip_address, self._config.events_port)
        self._socket = sock
        self._ip_address = ip_address
        self._port = sock.getsockname()[1]
        self._serve_task = asyncio.get_running_loop().create_task(
            self._serve_forever()
        )
        self.state = CallbackState.BOUND
        log_event(
            self._logger,
            logging.INFO,
            "events.callback.bound",
            interface=interface,
            address=ip_address,
            port=self._port,
        )

    async def _serve_forever(self) -> None:
        while not self._closing and self._socket is not None:
            config = uvicorn.Config(
                self.app,
                lifespan="off",
                log_config=None,
                access_log=False,
                timeout_keep_alive=10,
            )
            server = _CallbackServer(config)
            self._server = server
            try:
                # Serve a duplicate so uvicorn closing its socket on exit
                # leaves the bound listener open for the next iteration.
                await server.serve(sockets=[self._socket.dup()])
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                log_event(
                    self._logger,
                    logging.WARNING,
                    "events.callback.server_failed",
                    exc=exc,
                )
            finally:
                self._server = None
            if self._closing:
                break
            log_event(self._logger, logging.WARNING, "events.callback.server_restart")
            await asyncio.sleep(_RESTART_DELAY_SECONDS)

    async def _register(self) -> None:
        callback = self.subscription_url()
        if not await self._client.has_subscription(callback):
            await self._client.subscribe(callback)
        self.state = CallbackState.REGISTERED
        log_event(
            self._logger, logging.INFO, "events.callback.registered", callback=callback
        )

    async def revoke(self) -> None:
        """Best-effort removal of the callback registration."""
        if self.state is not CallbackState.REGISTERED:
            return
        callback = self.subscription_url()
        self.state = CallbackState.BOUND
        try:
            await self._client.unsubscribe(callback)
        except Exception as exc:
            log_event(
                self._logger,
                logging.WARNING,
                "events.callback.unregister_failed",
                callback=callback,
                exc=exc,
            )
            return
        log_event(
            self._logger, logging.INFO, "events.callback.unregistered", callback=callback
        )

    async def aclose(self) -> None:
        self._closing = True
        await self.revoke()
        server = self._server
        if server is not None:
            server.should_exit = True
        task = self._serve_task
        self._serve_task = None
        if task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout=5.0)
            except asyncio.TimeoutError:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        self.state = CallbackState.UNBOUND


__all__ = [
    "CallbackState",
    "CallbackTransport",
    "EVENTS_PATH",
    "bind_listener",
    "build_intake_app",
    "get_interface_address",
]
