"""
Shared test fixtures for CSP Validator tests.

HTTP goes through httpx.MockTransport backed by FakePolygon, so no test
touches the network. Polling is driven by ManualSleep instead of real timers.
"""
import httpx
import pytest

from market_data import EventLogBus, MarketDataService
from market_data.providers.polygon_provider import PolygonProvider
from tests.fakes import NOW, FakePolygon, ManualSleep, contract, settle


@pytest.fixture
def fake_polygon():
    polygon = FakePolygon()
    polygon.prev_close["SPY"] = 450.0
    polygon.contracts["SPY"] = [
        contract("2025-11-21", 420),
        contract("2025-11-07", 425),
        contract("2025-11-21", 425),
        contract("2025-11-07", 430),
        contract("2025-11-21", 430),
        contract("2025-11-07", 420),
    ]
    return polygon


@pytest.fixture
async def provider(fake_polygon):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_polygon.handler))
    yield PolygonProvider(api_key="test-key", client=client, base_url="https://api.polygon.test")
    await client.aclose()


@pytest.fixture
def log_bus():
    bus = EventLogBus(max_entries=100).attach()
    yield bus
    bus.detach()


@pytest.fixture
def manual_sleep():
    return ManualSleep()


@pytest.fixture
async def service(provider, manual_sleep, log_bus):
    svc = MarketDataService(
        provider=provider,
        log_bus=log_bus,
        poll_interval=60,
        sleep=manual_sleep,
        clock=lambda: NOW,
    )
    yield svc
    await svc.close()
    await settle()
