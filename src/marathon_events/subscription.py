from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional, Union

from .config import EventsTransport, MarathonConfig
from .decoder import decode_event
from .exceptions import ConfigError
from .listeners import EventsChannel, ListenerRegistry
from .retry import RetryPolicy
from .transports.callback import CallbackTransport
from .transports.stream import StreamTransport

if TYPE_CHECKING:
    from .client import MarathonClient


class EventSubscriptionManager:
    """Selects the configured transport and owns the listener registry.

    Transport setup runs under the registry's exclusive lock on attach, so
    any number of concurrent first attaches bind/register or launch the
    stream exactly once.
    """

    def __init__(
        self,
        client: "MarathonClient",
        config: MarathonConfig,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._config = config
        self._logger = logger or logging.getLogger(__name__)
        self.registry = ListenerRegistry(
            buffer_size=config.events_buffer_size, logger=self._logger
        )
        self.callback = CallbackTransport(
            client, config, handle_event=self.handle_event, logger=self._logger
        )
        self.stream = StreamTransport(
            client,
            handle_event=self.handle_event,
            retry_policy=retry_policy
            or RetryPolicy(interval=config.sse_retry_interval),
            logger=self._logger,
        )

    @property
    def transport(self) -> Union[EventsTransport, str]:
        return self._config.events_transport

    async def add_events_listener(self, filter: int) -> EventsChannel:
        return await self.registry.attach(filter, setup=self._register_subscription)

    async def remove_events_listener(self, channel: EventsChannel) -> bool:
        return await self.registry.detach(channel, on_empty=self._on_last_listener)

    async def _register_subscription(self) -> None:
        transport = self._config.events_transport
        if transport == EventsTransport.CALLBACK:
            await self.callback.ensure_started()
        elif transport == EventsTransport.SSE:
            await self.stream.ensure_started()
        else:
            raise ConfigError(f"the events transport: {transport!r} is not supported")

    async def _on_last_listener(self) -> None:
        if self._config.events_transport == EventsTransport.CALLBACK:
            await self.callback.revoke()

    async def handle_event(self, content: Union[str, bytes]) -> int:
        """Decode one payload and fan it out; returns the number of deliveries."""
        event = decode_event(content)
        return await self.registry.dispatch(event)

    def subscription_url(self) -> str:
        return self.callback.subscription_url()

    async def aclose(self) -> None:
        await self.registry.aclose()
        await self.stream.aclose()
        await self.callback.aclose()


__all__ = ["EventSubscriptionManager"]
