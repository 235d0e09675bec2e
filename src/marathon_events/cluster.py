from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from urllib.parse import urlsplit

from .exceptions import ConfigError, MarathonUnavailableError
from .logging_utils import log_event

HealthCheckFn = Callable[[str], Awaitable[bool]]


@dataclass
class Member:
    endpoint: str
    up: bool = True


def parse_cluster_url(url: str) -> list[str]:
    """Split ``http://a:8080,b:8080/prefix`` into one base URL per member.

    The scheme and path of the first entry apply to every member.
    """
    raw = url.strip()
    if not raw:
        raise ConfigError("marathon_url must be non-empty")
    parsed = urlsplit(raw)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ConfigError(f"marathon_url {url!r} must be an http(s) URL")
    scheme = parsed.scheme
    path = parsed.path.rstrip("/")
    hosts = [host.strip() for host in parsed.netloc.split(",")]
    if any(not host for host in hosts):
        raise ConfigError(f"marathon_url {url!r} contains an empty member")
    return [f"{scheme}://{host}{path}" for host in hosts]


class Cluster:
    """Address book of Marathon members with up/down tracking.

    A member marked down is re-validated in the background when a health
    check is configured, and marked up again on its first successful ping.
    """

    def __init__(
        self,
        url: str,
        *,
        health_check: Optional[HealthCheckFn] = None,
        health_check_interval: float = 5.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._members = [Member(endpoint) for endpoint in parse_cluster_url(url)]
        self._health_check = health_check
        self._health_check_interval = health_check_interval
        self._logger = logger or logging.getLogger(__name__)
        self._checks: dict[str, asyncio.Task[None]] = {}

    @property
    def members(self) -> list[str]:
        return [member.endpoint for member in self._members]

    def active(self) -> list[str]:
        return [member.endpoint for member in self._members if member.up]

    def get_member(self) -> str:
        for member in self._members:
            if member.up:
                return member.endpoint
        raise MarathonUnavailableError("no marathon cluster members are available")

    def _find(self, endpoint: str) -> Optional[Member]:
        for member in self._members:
            if member.endpoint == endpoint:
                return member
        return None

    def mark_down(self, endpoint: str) -> None:
        member = self._find(endpoint)
        if member is None or not member.up:
            return
        member.up = False
        log_event(self._logger, logging.WARNING, "cluster.member.down", member=endpoint)
        if self._health_check is None or self._health_check_interval <= 0:
            return
        if endpoint in self._checks:
            return
        task = asyncio.get_running_loop().create_task(self._revalidate(member))
        self._checks[endpoint] = task
        task.add_done_callback(lambda _task: self._checks.pop(endpoint, None))

    def mark_up(self, endpoint: str) -> None:
        member = self._find(endpoint)
        if member is None or member.up:
            return
        member.up = True
        log_event(self._logger, logging.INFO, "cluster.member.up", member=endpoint)

    async def _revalidate(self, member: Member) -> None:
        health_check = self._health_check
        if health_check is None:
            return
        while not member.up:
            await asyncio.sleep(self._health_check_interval)
            try:
                healthy = await health_check(member.endpoint)
            except Exception as exc:
                log_event(
                    self._logger,
                    logging.DEBUG,
                    "cluster.member.check_failed",
                    member=member.endpoint,
                    exc=exc,
                )
                continue
            if healthy:
                self.mark_up(member.endpoint)

    async def aclose(self) -> None:
        tasks = list(self._checks.values())
        self._checks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = ["Cluster", "HealthCheckFn", "Member", "parse_cluster_url"]
