"""
Shared fixtures: every service test runs against both storage adapters.
"""

import pendulum
import pytest

from slotswap.adapters.memory_store import InMemoryStorage
from slotswap.adapters.sql_store import SqlStorage
from slotswap.services.slot_store import SlotStore
from slotswap.services.swap_negotiator import SwapNegotiator


class StepClock:
    """Deterministic clock that advances one minute per reading."""

    def __init__(self, start: str = "2024-11-20 08:00"):
        self._now = pendulum.parse(start, tz="UTC")

    def __call__(self):
        current = self._now
        self._now = self._now.add(minutes=1)
        return current


@pytest.fixture(params=["memory", "sqlite"])
def storage(request):
    if request.param == "memory":
        yield InMemoryStorage()
        return

    sql_storage = SqlStorage.from_url("sqlite://")
    sql_storage.create_schema()
    yield sql_storage
    sql_storage.dispose()


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def store(storage, clock):
    return SlotStore(storage, clock=clock)


@pytest.fixture
def negotiator(storage, clock):
    return SwapNegotiator(storage, clock=clock)
