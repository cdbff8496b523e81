"""
Pytest fixtures and test configuration for dashsync tests.
"""

from datetime import datetime, timezone

import pytest

from dashsync.codec import build_snapshot
from dashsync.config import Settings
from dashsync.gateway.memory import InMemoryGateway
from dashsync.session import SyncSession
from dashsync.stores import DomainStores
from dashsync.testing import ManualScheduler

USER = "user-1"


@pytest.fixture
def stores():
    return DomainStores.default()


@pytest.fixture
def clock():
    """Fake clock: timers fire only when a test advances it."""
    return ManualScheduler()


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        state_path=tmp_path / "state.json",
        debounce_ms=180,
        periodic_pull_seconds=60.0,
        flush_timeout_seconds=1.0,
    )


@pytest.fixture
def make_session(clock, gateway):
    """Factory for sessions sharing the fake clock and the gateway."""

    def _make(stores=None, gw=None):
        return SyncSession(
            stores if stores is not None else DomainStores.default(),
            gw if gw is not None else gateway,
            scheduler=clock,
            debounce_seconds=0.18,
            periodic_pull_seconds=60.0,
        )

    return _make


@pytest.fixture
def remote_snapshot():
    """Factory for snapshots built on another device."""

    def _make(tasks=None, habits=None, **app_fields):
        other = DomainStores.default()
        app = {"tasks": tasks if tasks is not None else [{"id": "t-remote", "title": "From phone"}]}
        app.update(app_fields)
        other.app.set_state(app)
        if habits is not None:
            other.habits.set_state({"habits": habits})
        return build_snapshot(other, now=datetime(2026, 1, 2, 9, 30, tzinfo=timezone.utc))

    return _make
