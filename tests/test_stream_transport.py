from __future__ import annotations

import asyncio
import logging

import pytest

from marathon_events.client import MarathonClient
from marathon_events.config import EventsTransport
from marathon_events.events import EventID
from marathon_events.exceptions import RequestBuildError
from marathon_events.retry import RetryPolicy
from marathon_events.transports.stream import EVENT_STREAM_PATH, StreamState
from tests.fixtures.marathon import (
    app_terminated,
    deployment_info,
    sse_frame,
    status_update,
    wait_until,
)


def _client(make_config, fake_marathon, recording_sleep, **overrides):
    config = make_config(events_transport=EventsTransport.SSE, **overrides)
    return MarathonClient(
        config,
        transport=fake_marathon.transport,
        retry_policy=RetryPolicy(interval=5.0, sleep=recording_sleep),
    )


@pytest.mark.anyio
async def test_backs_off_between_failed_connects_then_streams(
    make_config, fake_marathon, recording_sleep
) -> None:
    fake_marathon.unreachable.add("m1:8080")
    fake_marathon.stream_batches.append([sse_frame(status_update())])
    client = _client(
        make_config,
        fake_marathon,
        recording_sleep,
        marathon_url="http://m1:8080",
    )

    def _member_recovers(sleep_count: int) -> None:
        client.cluster.mark_up("http://m1:8080")
        if sleep_count == 2:
            fake_marathon.unreachable.clear()

    recording_sleep.hooks.append(_member_recovers)
    try:
        channel = await client.add_events_listener(EventID.STATUS_UPDATE)
        event = await asyncio.wait_for(channel.receive(), timeout=2)
    finally:
        await client.aclose()

    assert event.id is EventID.STATUS_UPDATE
    assert recording_sleep.delays == [5.0, 5.0]
    assert fake_marathon.count("GET", EVENT_STREAM_PATH) == 3


@pytest.mark.anyio
async def test_handshake_failure_rotates_member_without_backoff(
    make_config, fake_marathon, recording_sleep
) -> None:
    fake_marathon.stream_status["m1:8080"] = 503
    fake_marathon.stream_batches.append([sse_frame(status_update())])
    client = _client(make_config, fake_marathon, recording_sleep)
    try:
        channel = await client.add_events_listener(EventID.ALL)
        await asyncio.wait_for(channel.receive(), timeout=2)
        assert client.events.stream.member == "http://m2:8080"
        assert client.events.stream.state is StreamState.STREAMING
    finally:
        await client.aclose()

    assert recording_sleep.delays == []
    assert fake_marathon.hosts_for(EVENT_STREAM_PATH) == ["m1:8080", "m2:8080"]
    assert client.cluster.active() == ["http://m2:8080"]


@pytest.mark.anyio
async def test_unreachable_member_counts_as_handshake_failure(
    make_config, fake_marathon, recording_sleep
) -> None:
    fake_marathon.unreachable.add("m1:8080")
    fake_marathon.stream_batches.append([sse_frame(status_update())])
    client = _client(make_config, fake_marathon, recording_sleep)
    try:
        channel = await client.add_events_listener(EventID.ALL)
        await asyncio.wait_for(channel.receive(), timeout=2)
    finally:
        await client.aclose()

    assert recording_sleep.delays == []
    assert fake_marathon.hosts_for(EVENT_STREAM_PATH) == ["m1:8080", "m2:8080"]


@pytest.mark.anyio
async def test_bad_frames_are_logged_and_stream_continues(
    make_config, fake_marathon, recording_sleep, caplog: pytest.LogCaptureFixture
) -> None:
    fake_marathon.stream_batches.append(
        [
            sse_frame("{broken"),
            sse_frame({"eventType": "pod_created_event"}),
            sse_frame(status_update(ports="nope")),
            sse_frame(app_terminated()),
        ]
    )
    client = _client(make_config, fake_marathon, recording_sleep)
    try:
        with caplog.at_level(logging.WARNING):
            channel = await client.add_events_listener(EventID.ALL)
            event = await asyncio.wait_for(channel.receive(), timeout=2)
    finally:
        await client.aclose()

    assert event.id is EventID.APP_TERMINATED
    assert caplog.text.count("events.decode_failed") == 3
    assert fake_marathon.count("GET", EVENT_STREAM_PATH) == 1


@pytest.mark.anyio
async def test_reconnects_when_stream_ends(
    make_config, fake_marathon, recording_sleep
) -> None:
    fake_marathon.hold_stream_open = False
    fake_marathon.stream_batches.extend(
        [[sse_frame(status_update())], [sse_frame(deployment_info())]]
    )
    client = _client(make_config, fake_marathon, recording_sleep)
    try:
        channel = await client.add_events_listener(EventID.ALL)
        first = await asyncio.wait_for(channel.receive(), timeout=2)
        second = await asyncio.wait_for(channel.receive(), timeout=2)
    finally:
        await client.aclose()

    assert [first.id, second.id] == [EventID.STATUS_UPDATE, EventID.DEPLOYMENT_INFO]
    assert fake_marathon.count("GET", EVENT_STREAM_PATH) == 2
    assert recording_sleep.delays == []


@pytest.mark.anyio
async def test_stream_is_launched_once_for_concurrent_attaches(
    make_config, fake_marathon, recording_sleep
) -> None:
    fake_marathon.stream_batches.append([sse_frame(status_update())])
    client = _client(make_config, fake_marathon, recording_sleep)
    try:
        channels = await asyncio.gather(
            *(client.add_events_listener(EventID.STATUS_UPDATE) for _ in range(5))
        )
        received = await asyncio.gather(
            *(asyncio.wait_for(channel.receive(), timeout=2) for channel in channels)
        )
        await client.remove_events_listener(channels[0])
        await client.remove_events_listener(channels[1])
        assert client.events.stream.started
    finally:
        await client.aclose()

    assert len(received) == 5
    assert fake_marathon.count("GET", EVENT_STREAM_PATH) == 1
    assert fake_marathon.count("DELETE", "/v2/eventSubscriptions") == 0


@pytest.mark.anyio
async def test_stream_keeps_running_after_last_listener_leaves(
    make_config, fake_marathon, recording_sleep
) -> None:
    client = _client(make_config, fake_marathon, recording_sleep)
    try:
        channel = await client.add_events_listener(EventID.ALL)
        await wait_until(
            lambda: client.events.stream.state is StreamState.STREAMING
        )
        await client.remove_events_listener(channel)
        await asyncio.sleep(0.01)
        assert client.events.stream.state is StreamState.STREAMING
    finally:
        await client.aclose()


@pytest.mark.anyio
async def test_request_build_failure_stops_the_supervisor(
    make_config, fake_marathon, recording_sleep, monkeypatch
) -> None:
    client = _client(make_config, fake_marathon, recording_sleep)

    def _broken(*_args, **_kwargs):
        raise RequestBuildError("bad member url")

    monkeypatch.setattr(client, "build_api_request", _broken)
    try:
        await client.add_events_listener(EventID.ALL)
        await wait_until(lambda: client.events.stream.state is StreamState.STOPPED)
    finally:
        await client.aclose()

    assert recording_sleep.delays == []
    assert fake_marathon.count("GET", EVENT_STREAM_PATH) == 0


@pytest.mark.anyio
async def test_deeply_nested_frame_is_skipped_and_stream_continues(
    make_config, fake_marathon, recording_sleep, caplog: pytest.LogCaptureFixture
) -> None:
    fake_marathon.stream_batches.append(
        [sse_frame("[" * 100000 + "]" * 100000), sse_frame(app_terminated())]
    )
    client = _client(make_config, fake_marathon, recording_sleep)
    try:
        with caplog.at_level(logging.WARNING):
            channel = await client.add_events_listener(EventID.ALL)
            event = await asyncio.wait_for(channel.receive(), timeout=2)
        assert client.events.stream.state is StreamState.STREAMING
    finally:
        await client.aclose()

    assert event.id is EventID.APP_TERMINATED
    assert caplog.text.count("events.decode_failed") == 1
    assert fake_marathon.count("GET", EVENT_STREAM_PATH) == 1


@pytest.mark.anyio
async def test_unexpected_handler_failure_is_logged_and_stream_continues(
    make_config, fake_marathon, recording_sleep, caplog: pytest.LogCaptureFixture
) -> None:
    fake_marathon.stream_batches.append(
        [sse_frame(status_update()), sse_frame(app_terminated())]
    )
    client = _client(make_config, fake_marathon, recording_sleep)
    handled: list[str] = []

    async def _flaky(content: str) -> int:
        handled.append(content)
        if len(handled) == 1:
            raise RuntimeError("dispatch exploded")
        return await client.events.handle_event(content)

    client.events.stream._handle_event = _flaky
    try:
        with caplog.at_level(logging.ERROR):
            channel = await client.add_events_listener(EventID.ALL)
            event = await asyncio.wait_for(channel.receive(), timeout=2)
    finally:
        await client.aclose()

    assert event.id is EventID.APP_TERMINATED
    assert "dispatch exploded" in caplog.text
    assert fake_marathon.count("GET", EVENT_STREAM_PATH) == 1


@pytest.mark.anyio
async def test_non_http_stream_failure_reconnects(
    make_config, fake_marathon, recording_sleep
) -> None:
    fake_marathon.stream_batches.extend(
        [
            [sse_frame(status_update()), RuntimeError("decoder state corrupted")],
            [sse_frame(deployment_info())],
        ]
    )
    client = _client(make_config, fake_marathon, recording_sleep)
    try:
        channel = await client.add_events_listener(EventID.ALL)
        first = await asyncio.wait_for(channel.receive(), timeout=2)
        second = await asyncio.wait_for(channel.receive(), timeout=2)
        assert client.events.stream.state is StreamState.STREAMING
    finally:
        await client.aclose()

    assert [first.id, second.id] == [EventID.STATUS_UPDATE, EventID.DEPLOYMENT_INFO]
    assert fake_marathon.count("GET", EVENT_STREAM_PATH) == 2
    assert recording_sleep.delays == []
