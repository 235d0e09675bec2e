from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Awaitable, Callable, NoReturn, Optional, TypeVar

import typer

from .client import MarathonClient
from .config import MarathonConfig, load_config
from .events import Event, parse_event_filter
from .exceptions import MarathonEventsError
from .logging_utils import setup_logging

T = TypeVar("T")

app = typer.Typer(add_completion=False, help="Marathon event subscriptions.")
subscriptions_app = typer.Typer(help="Manage Marathon callback subscriptions.")
app.add_typer(subscriptions_app, name="subscriptions")

logger = logging.getLogger("marathon_events.cli")

ConfigOption = typer.Option(
    Path("marathon-events.yml"), "--config", "-c", help="Path to the YAML config"
)


def raise_exit(message: str, *, cause: Optional[BaseException] = None) -> NoReturn:
    typer.echo(message, err=True)
    if cause is not None:
        raise typer.Exit(code=1) from cause
    raise typer.Exit(code=1)


def require_config(path: Path) -> MarathonConfig:
    try:
        config = load_config(path)
    except MarathonEventsError as exc:
        raise_exit(str(exc), cause=exc)
    setup_logging(config.log)
    return config


def _run_with_client(
    config: MarathonConfig, action: Callable[[MarathonClient], Awaitable[T]]
) -> T:
    async def _runner() -> T:
        async with MarathonClient(config) as client:
            return await action(client)

    try:
        return asyncio.run(_runner())
    except MarathonEventsError as exc:
        raise_exit(str(exc), cause=exc)


def render_event(event: Event) -> str:
    return json.dumps(
        {
            "id": int(event.id),
            "event": event.name,
            "payload": event.payload.model_dump(mode="json", by_alias=True),
        },
        sort_keys=True,
    )


@app.command("listen")
def listen(
    config_path: Path = ConfigOption,
    events: str = typer.Option(
        "", "--events", "-e", help="Comma separated event names (default: all)"
    ),
    limit: Optional[int] = typer.Option(
        None, "--limit", help="Exit after printing this many events"
    ),
) -> None:
    """Attach one listener and print each event as a JSON line."""
    config = require_config(config_path)
    try:
        event_filter = parse_event_filter(events)
    except MarathonEventsError as exc:
        raise_exit(str(exc), cause=exc)

    async def _listen(client: MarathonClient) -> None:
        channel = await client.add_events_listener(event_filter)
        transport = getattr(config.events_transport, "value", config.events_transport)
        typer.echo(f"Listening via {transport} (filter={event_filter})", err=True)
        printed = 0
        try:
            async for event in channel:
                typer.echo(render_event(event))
                printed += 1
                if limit is not None and printed >= limit:
                    break
        finally:
            await client.remove_events_listener(channel)

    try:
        _run_with_client(config, _listen)
    except KeyboardInterrupt:
        logger.info("Interrupted; detaching listener")


@subscriptions_app.command("list")
def subscriptions_list(config_path: Path = ConfigOption) -> None:
    config = require_config(config_path)
    subscriptions = _run_with_client(config, lambda client: client.subscriptions())
    for url in subscriptions.callback_urls:
        typer.echo(url)


@subscriptions_app.command("add")
def subscriptions_add(
    url: str = typer.Argument(..., help="Callback URL to register"),
    config_path: Path = ConfigOption,
) -> None:
    config = require_config(config_path)
    _run_with_client(config, lambda client: client.subscribe(url))
    typer.echo(f"Subscribed {url}")


@subscriptions_app.command("remove")
def subscriptions_remove(
    url: str = typer.Argument(..., help="Callback URL to remove"),
    config_path: Path = ConfigOption,
) -> None:
    config = require_config(config_path)
    _run_with_client(config, lambda client: client.unsubscribe(url))
    typer.echo(f"Unsubscribed {url}")


@subscriptions_app.command("has")
def subscriptions_has(
    url: str = typer.Argument(..., help="Callback URL to look up"),
    config_path: Path = ConfigOption,
) -> None:
    config = require_config(config_path)
    found = _run_with_client(config, lambda client: client.has_subscription(url))
    typer.echo("yes" if found else "no")
    if not found:
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
