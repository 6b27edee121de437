"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from src.health.monitor import Monitor
from src.storage import MemoryStorage
from tests.helpers import VALID_SERVICE, ScriptedProbe


@pytest.fixture
def valid_service() -> dict[str, Any]:
    return dict(VALID_SERVICE)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def probe() -> ScriptedProbe:
    return ScriptedProbe()


@pytest.fixture
def monitor(storage: MemoryStorage, probe: ScriptedProbe):
    """A Monitor over in-memory storage with a scripted probe; scheduler not started."""
    m = Monitor(storage, probe=probe, max_workers=4)
    yield m
    asyncio.run(m.stop())
