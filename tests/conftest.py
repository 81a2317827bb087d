# tests/conftest.py
"""Shared fixtures for the monitor tests."""

from __future__ import annotations

import pytest
import pytest_asyncio

from smartwatch_monitor.alerting import AlertDispatcher
from smartwatch_monitor.config import get_default_config
from smartwatch_monitor.watermark_store import WatermarkStore


@pytest.fixture
def config():
    return get_default_config()


@pytest_asyncio.fixture
async def store(tmp_path):
    s = WatermarkStore(str(tmp_path / "state" / "monitor.db"))
    await s.initialize()
    yield s
    await s.close()


@pytest_asyncio.fixture
async def dispatcher(config):
    d = AlertDispatcher(config)
    await d.initialize()
    yield d
    await d.close()
