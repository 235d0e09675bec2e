from __future__ import annotations

import asyncio

import pytest

from marathon_events.cluster import Cluster, parse_cluster_url
from marathon_events.exceptions import ConfigError, MarathonUnavailableError
from tests.fixtures.marathon import wait_until


def test_parse_cluster_url_shares_scheme_and_path() -> None:
    assert parse_cluster_url("https://a:8080,b:8080/marathon/") == [
        "https://a:8080/marathon",
        "https://b:8080/marathon",
    ]


@pytest.mark.parametrize(
    "url", ["", "a:8080", "ftp://a:8080", "http://a:8080,,b:8080", "http://"]
)
def test_parse_cluster_url_rejects_bad_input(url: str) -> None:
    with pytest.raises(ConfigError):
        parse_cluster_url(url)


def test_get_member_prefers_first_up_member() -> None:
    cluster = Cluster("http://a:1,b:2,c:3", health_check_interval=0)

    assert cluster.get_member() == "http://a:1"
    cluster.mark_down("http://a:1")
    assert cluster.get_member() == "http://b:2"
    cluster.mark_down("http://b:2")
    cluster.mark_down("http://c:3")
    with pytest.raises(MarathonUnavailableError):
        cluster.get_member()

    cluster.mark_up("http://b:2")
    assert cluster.active() == ["http://b:2"]
    assert cluster.members == ["http://a:1", "http://b:2", "http://c:3"]


def test_unknown_member_is_ignored() -> None:
    cluster = Cluster("http://a:1", health_check_interval=0)

    cluster.mark_down("http://zzz:1")

    assert cluster.active() == ["http://a:1"]


@pytest.mark.anyio
async def test_down_member_comes_back_after_successful_check() -> None:
    results = iter([False, True])
    checked: list[str] = []

    async def _check(member: str) -> bool:
        checked.append(member)
        return next(results)

    cluster = Cluster("http://a:1,b:2", health_check=_check, health_check_interval=0.01)
    cluster.mark_down("http://a:1")
    try:
        await wait_until(lambda: "http://a:1" in cluster.active())
    finally:
        await cluster.aclose()

    assert checked == ["http://a:1", "http://a:1"]


@pytest.mark.anyio
async def test_failing_check_keeps_member_down_until_aclose() -> None:
    async def _check(member: str) -> bool:
        raise RuntimeError("connection refused")

    cluster = Cluster("http://a:1", health_check=_check, health_check_interval=0.01)
    cluster.mark_down("http://a:1")
    await asyncio.sleep(0.05)
    await cluster.aclose()

    assert cluster.active() == []


@pytest.mark.anyio
async def test_revalidation_without_health_check_ends_immediately() -> None:
    cluster = Cluster("http://a:1", health_check_interval=0.01)
    member = cluster._find("http://a:1")
    assert member is not None
    member.up = False

    await asyncio.wait_for(cluster._revalidate(member), timeout=1)

    assert cluster.active() == []
