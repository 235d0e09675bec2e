"""Test harness configuration.

This repo uses a `src/` layout. In some developer environments an older
installed `marathon_events` package can shadow the local sources.

Ensure tests always import the in-repo code.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable

import pytest

DEFAULT_NON_INTEGRATION_TIMEOUT_SECONDS = 30


def pytest_configure() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src_path = str(repo_root / "src")
    if sys.path[:1] != [src_path] and src_path not in sys.path:
        sys.path.insert(0, src_path)


def pytest_collection_modifyitems(
    session: pytest.Session, config: pytest.Config, items: list[pytest.Item]
) -> None:
    """
    Apply a default per-test timeout to non-integration tests.

    This relies on `pytest-timeout` when installed; if it isn't installed, the
    marker is inert but still documents the intent.
    """
    _ = session, config
    for item in items:
        if item.get_closest_marker("integration") is not None:
            continue
        item.add_marker(pytest.mark.timeout(DEFAULT_NON_INTEGRATION_TIMEOUT_SECONDS))


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def make_config() -> Callable[..., Any]:
    """Build a `MarathonConfig` with test-friendly defaults."""
    from marathon_events.config import MarathonConfig

    def _make(**overrides: Any) -> MarathonConfig:
        values: dict[str, Any] = {
            "marathon_url": "http://m1:8080,m2:8080",
            "health_check_interval": 0.0,
            "sse_retry_interval": 5.0,
        }
        values.update(overrides)
        return MarathonConfig(**values)

    return _make


@pytest.fixture
def fake_marathon():
    from tests.fixtures.marathon import FakeMarathon

    return FakeMarathon()


@pytest.fixture
def recording_sleep():
    from tests.fixtures.marathon import RecordingSleep

    return RecordingSleep()
