"""Shared fixtures for mindjournal tests."""

import asyncio
from datetime import datetime

import pytest

from mindjournal.db import LocalStore
from mindjournal.keys import KeyManager
from mindjournal.logic import PersistenceOrchestrator
from mindjournal.remote import MemoryRemoteStore
from mindjournal.state import DeviceState


class FakeClock:
    """Settable clock returning aware local datetimes."""

    def __init__(self, now=None):
        self.now = now or datetime(2026, 3, 4, 12, 0).astimezone()

    def set(self, year, month, day, hour=12, minute=0):
        self.now = datetime(year, month, day, hour, minute).astimezone()

    def __call__(self):
        return self.now


def run(coro):
    """Drive a coroutine to completion from a sync test."""
    return asyncio.run(coro)


@pytest.fixture
def store(tmp_path) -> LocalStore:
    local = LocalStore(str(tmp_path / "local.sqlite3"))
    run(local.init_db())
    return local


@pytest.fixture
def state(store) -> DeviceState:
    return run(DeviceState.load(store))


@pytest.fixture
def keys(state) -> KeyManager:
    return KeyManager(state)


@pytest.fixture
def remote() -> MemoryRemoteStore:
    return MemoryRemoteStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def orch(state, keys, remote, clock) -> PersistenceOrchestrator:
    return PersistenceOrchestrator(state, keys, remote, user_id="user-1", clock=clock)
