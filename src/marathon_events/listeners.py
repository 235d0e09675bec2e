"""Listener registry and fan-out dispatch.

Every attached subscriber owns an ``EventsChannel``. Dispatch spawns one
short-lived delivery task per (event, matching subscriber) pair, so a
subscriber that stops reading never stalls ingestion for anyone else; it only
misses events. A channel is closed only once no delivery to it is in flight.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Coroutine, Optional

from .events import Event
from .exceptions import ChannelClosedError
from .logging_utils import log_event

Hook = Callable[[], Awaitable[None]]


async def _first_of(operation: Awaitable[Any], signal: asyncio.Event) -> bool:
    """Race ``operation`` against ``signal``; True when the operation won."""
    op_task = asyncio.ensure_future(operation)
    signal_task = asyncio.ensure_future(signal.wait())
    try:
        done, _pending = await asyncio.wait(
            {op_task, signal_task}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for task in (op_task, signal_task):
            if not task.done():
                task.cancel()
    if op_task in done:
        op_task.result()
        return True
    return False


class ReadWriteLock:
    """Asyncio reader/writer lock; waiting writers block new readers."""

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._writers_waiting == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._writers_waiting -= 1
                if self._writers_waiting == 0:
                    self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class EventsChannel:
    """Bounded event queue handed to one subscriber."""

    def __init__(self, maxsize: int = 1) -> None:
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        self._closed.set()

    async def send(self, event: Event) -> None:
        if self.closed:
            raise ChannelClosedError("send on closed events channel")
        await self._queue.put(event)

    async def receive(self) -> Event:
        while True:
            if not self._queue.empty():
                return self._queue.get_nowait()
            if self.closed:
                raise ChannelClosedError("events channel is closed")
            getter = asyncio.ensure_future(self._queue.get())
            closer = asyncio.ensure_future(self._closed.wait())
            try:
                await asyncio.wait(
                    {getter, closer}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                closer.cancel()
                if not getter.done():
                    getter.cancel()
            if getter.done() and not getter.cancelled():
                return getter.result()

    def __aiter__(self) -> "EventsChannel":
        return self

    async def __anext__(self) -> Event:
        try:
            return await self.receive()
        except ChannelClosedError:
            raise StopAsyncIteration from None


class InFlight:
    """Counter of pending deliveries with a wait-for-zero barrier."""

    def __init__(self) -> None:
        self._count = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def count(self) -> int:
        return self._count

    def add(self) -> None:
        self._count += 1
        self._idle.clear()

    def done(self) -> None:
        self._count -= 1
        if self._count <= 0:
            self._count = 0
            self._idle.set()

    async def wait(self) -> None:
        await self._idle.wait()


@dataclass(eq=False)
class Subscriber:
    channel: EventsChannel
    filter: int
    done: asyncio.Event = field(default_factory=asyncio.Event)
    in_flight: InFlight = field(default_factory=InFlight)

    def wants(self, event: Event) -> bool:
        return bool(int(event.id) & self.filter)


class ListenerRegistry:
    def __init__(
        self,
        *,
        buffer_size: int = 1,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._buffer_size = buffer_size
        self._logger = logger or logging.getLogger(__name__)
        self._lock = ReadWriteLock()
        self._subscribers: dict[EventsChannel, Subscriber] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def lock(self) -> ReadWriteLock:
        return self._lock

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, channel: object) -> bool:
        return channel in self._subscribers

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def attach(self, filter: int, *, setup: Optional[Hook] = None) -> EventsChannel:
        """Register a subscriber; ``setup`` runs first under the exclusive lock.

        A failing ``setup`` propagates and no subscriber is created.
        """
        async with self._lock.write():
            if setup is not None:
                await setup()
            channel = EventsChannel(maxsize=self._buffer_size)
            self._subscribers[channel] = Subscriber(channel=channel, filter=filter)
            count = len(self._subscribers)
        log_event(
            self._logger,
            logging.DEBUG,
            "events.listener.attached",
            filter=filter,
            listeners=count,
        )
        return channel

    async def detach(
        self, channel: EventsChannel, *, on_empty: Optional[Hook] = None
    ) -> bool:
        """Remove a subscriber; ``on_empty`` runs when the last one leaves.

        The channel is closed in the background once in-flight deliveries to
        it have finished.
        """
        async with self._lock.write():
            subscriber = self._subscribers.pop(channel, None)
            if subscriber is None:
                return False
            subscriber.done.set()
            self._spawn(self._finalize(subscriber))
            remaining = len(self._subscribers)
            if remaining == 0 and on_empty is not None:
                await on_empty()
        log_event(
            self._logger,
            logging.DEBUG,
            "events.listener.detached",
            listeners=remaining,
        )
        return True

    async def _finalize(self, subscriber: Subscriber) -> None:
        await subscriber.in_flight.wait()
        subscriber.channel.close()

    async def dispatch(self, event: Event) -> int:
        """Start one delivery per matching subscriber and return without waiting."""
        matched = 0
        async with self._lock.read():
            for subscriber in self._subscribers.values():
                if not subscriber.wants(event):
                    continue
                subscriber.in_flight.add()
                self._spawn(self._deliver(subscriber, event))
                matched += 1
        return matched

    async def _deliver(self, subscriber: Subscriber, event: Event) -> None:
        try:
            await _first_of(subscriber.channel.send(event), subscriber.done)
        except ChannelClosedError:
            log_event(
                self._logger,
                logging.ERROR,
                "events.delivery.channel_closed",
                event=event.name,
            )
        finally:
            subscriber.in_flight.done()

    async def aclose(self) -> None:
        async with self._lock.write():
            subscribers = list(self._subscribers.values())
            self._subscribers.clear()
        for subscriber in subscribers:
            subscriber.done.set()
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for subscriber in subscribers:
            subscriber.channel.close()


__all__ = [
    "EventsChannel",
    "InFlight",
    "ListenerRegistry",
    "ReadWriteLock",
    "Subscriber",
]
