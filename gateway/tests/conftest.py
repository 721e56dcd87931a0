from __future__ import annotations

import pytest

from gateway.core.context import Context
from gateway.core.timers import TimerLedger
from gateway.core.variables import GlobalVariableStore
from gateway.tests.fakes import FakeDrivers


@pytest.fixture
def ledger() -> TimerLedger:
    return TimerLedger()


@pytest.fixture
def store() -> GlobalVariableStore:
    return GlobalVariableStore()


@pytest.fixture
def fake_drivers() -> FakeDrivers:
    return FakeDrivers()


@pytest.fixture
def catalog_context(fake_drivers) -> Context:
    return Context.load(drivers=fake_drivers.registry)
