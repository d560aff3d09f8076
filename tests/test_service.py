"""Tests for market_data/service.py: subscription registry and polling scheduler."""
import asyncio

import httpx

from market_data import MarketDataService
from market_data.providers.polygon_provider import PolygonProvider
from tests.fakes import NOW, contract, settle

PRICE_PATH = "/v2/aggs/ticker/SPY/prev"


class Recorder:
    """Listener that remembers every snapshot it was handed."""

    def __init__(self):
        self.received = []

    def __call__(self, data):
        self.received.append(data)


# =========================================================================
# Activation and polling
# =========================================================================

class TestPolling:
    async def test_first_sync_fires_immediately(self, service, fake_polygon, manual_sleep):
        listener = Recorder()
        service.subscribe("SPY", listener)
        await settle()

        assert len(listener.received) == 1
        assert listener.received[0].current_price == 450.0
        assert fake_polygon.count(PRICE_PATH) == 1
        assert manual_sleep.calls == [60]
        assert service.is_polling

    async def test_each_tick_refreshes(self, service, fake_polygon, manual_sleep):
        listener = Recorder()
        service.subscribe("SPY", listener)
        await settle()

        fake_polygon.prev_close["SPY"] = 451.5
        manual_sleep.tick()
        await settle()

        assert [d.current_price for d in listener.received] == [450.0, 451.5]
        assert listener.received[0] is not listener.received[1]
        assert service.last_market_data is listener.received[1]

    async def test_ticker_is_normalized(self, service, fake_polygon):
        service.subscribe(" spy ", Recorder())
        await settle()
        assert service.active_ticker == "SPY"
        assert service.subscribed_tickers == {"SPY"}

    async def test_refresh_now(self, service, fake_polygon):
        listener = Recorder()
        service.subscribe("SPY", listener)
        await settle()
        await service.refresh_now()
        assert len(listener.received) == 2
        assert fake_polygon.count(PRICE_PATH) == 2

    async def test_logs_progress(self, service, log_bus):
        service.subscribe("SPY", Recorder())
        await settle()
        messages = " | ".join(log_bus.entries)
        assert "Syncing underlying price for SPY..." in messages
        assert "Mapping expiration dates for SPY..." in messages
        assert "Metadata sync complete." in messages
        assert not log_bus.has_errors


# =========================================================================
# Cached snapshot delivery
# =========================================================================

class TestCachedSnapshot:
    async def test_second_subscriber_gets_cache_without_fetch(self, service, fake_polygon):
        service.subscribe("SPY", Recorder())
        await settle()
        requests_before = len(fake_polygon.requests)

        late = Recorder()
        service.subscribe("SPY", late)

        # Delivered synchronously, before yielding to the loop
        assert len(late.received) == 1
        assert late.received[0] is service.last_market_data
        await settle()
        assert len(fake_polygon.requests) == requests_before

    async def test_second_subscriber_before_first_sync(self, service):
        first, second = Recorder(), Recorder()
        service.subscribe("SPY", first)
        service.subscribe("SPY", second)
        assert second.received == []
        await settle()
        assert len(first.received) == 1
        assert len(second.received) == 1


# =========================================================================
# Switching tickers
# =========================================================================

class TestSwitchTicker:
    async def test_new_ticker_takes_over_polling(self, service, fake_polygon, manual_sleep):
        fake_polygon.prev_close["QQQ"] = 500.0
        fake_polygon.contracts["QQQ"] = [contract("2025-11-21", 480, "QQQ")]

        spy, qqq = Recorder(), Recorder()
        service.subscribe("SPY", spy)
        await settle()
        service.subscribe("QQQ", qqq)
        await settle()

        assert service.active_ticker == "QQQ"
        assert len(qqq.received) == 1
        assert qqq.received[0].ticker == "QQQ"

        manual_sleep.tick()
        await settle()
        assert len(spy.received) == 1
        assert len(qqq.received) == 2
        assert fake_polygon.count(PRICE_PATH) == 1

    async def test_old_snapshot_not_served_to_new_ticker(self, service, fake_polygon):
        fake_polygon.prev_close["QQQ"] = None
        service.subscribe("SPY", Recorder())
        await settle()
        service.subscribe("QQQ", Recorder())
        assert service.last_market_data is None
        await settle()
        assert service.last_market_data is None


# =========================================================================
# Unsubscribe
# =========================================================================

class TestUnsubscribe:
    async def test_last_listener_stops_polling(self, service, fake_polygon, manual_sleep):
        unsubscribe = service.subscribe("SPY", Recorder())
        await settle()
        unsubscribe()
        await settle()

        assert not service.is_polling
        assert service.active_ticker is None
        assert service.subscribed_tickers == set()

        requests_before = len(fake_polygon.requests)
        manual_sleep.tick()
        await settle()
        assert len(fake_polygon.requests) == requests_before

    async def test_remaining_listener_keeps_polling(self, service, manual_sleep):
        keep = Recorder()
        drop = service.subscribe("SPY", Recorder())
        service.subscribe("SPY", keep)
        await settle()
        drop()

        manual_sleep.tick()
        await settle()
        assert service.is_polling
        assert len(keep.received) == 2

    async def test_unsubscribe_twice_is_harmless(self, service):
        unsubscribe = service.subscribe("SPY", Recorder())
        await settle()
        unsubscribe()
        unsubscribe()
        assert not service.is_polling

    async def test_inactive_ticker_listeners_keep_registry_alive(self, service, fake_polygon):
        fake_polygon.prev_close["QQQ"] = 500.0
        fake_polygon.contracts["QQQ"] = [contract("2025-11-21", 480, "QQQ")]
        service.subscribe("SPY", Recorder())
        stop_qqq = service.subscribe("QQQ", Recorder())
        await settle()
        stop_qqq()
        assert service.subscribed_tickers == {"SPY"}
        # SPY still has a listener, so the QQQ timer is not torn down
        assert service.is_polling

    async def test_resubscribe_restarts(self, service, fake_polygon):
        service.subscribe("SPY", Recorder())()
        await settle()
        listener = Recorder()
        service.subscribe("SPY", listener)
        await settle()
        assert len(listener.received) == 1
        assert service.is_polling


# =========================================================================
# Failures
# =========================================================================

class TestFailures:
    async def test_failed_sync_keeps_previous_snapshot(self, service, fake_polygon, manual_sleep, log_bus):
        listener = Recorder()
        service.subscribe("SPY", listener)
        await settle()
        published = service.last_market_data

        fake_polygon.prev_close["SPY"] = None
        manual_sleep.tick()
        await settle()

        assert len(listener.received) == 1
        assert service.last_market_data is published
        assert any("ERROR: Metadata sync failed Could not find underlying price." in e for e in log_bus.entries)
        # Scheduler is still alive for the next tick
        fake_polygon.prev_close["SPY"] = 452.0
        manual_sleep.tick()
        await settle()
        assert listener.received[-1].current_price == 452.0

    async def test_http_error_is_reported_not_raised(self, service, fake_polygon, log_bus):
        fake_polygon.status[PRICE_PATH] = 500
        listener = Recorder()
        service.subscribe("SPY", listener)
        await settle()
        assert listener.received == []
        assert log_bus.has_errors
        assert service.is_polling

    async def test_failing_listener_does_not_block_others(self, service):
        def broken(data):
            raise RuntimeError("render failed")

        healthy = Recorder()
        service.subscribe("SPY", broken)
        service.subscribe("SPY", healthy)
        await settle()
        assert len(healthy.received) == 1


async def test_fetch_contract_quote_delegates(service, fake_polygon):
    fake_polygon.nbbo["O:SPY251121P00425000"] = (1.2, 1.4)
    quote = await service.fetch_contract_quote("O:SPY251121P00425000")
    assert (quote.bid, quote.ask, quote.last) == (1.2, 1.4, 1.2)


async def test_close_stops_everything(provider, manual_sleep, log_bus):
    service = MarketDataService(provider=provider, log_bus=log_bus, sleep=manual_sleep)
    service.subscribe("SPY", Recorder())
    await settle()
    await service.close()
    assert not service.is_polling
    assert service.subscribed_tickers == set()


# =========================================================================
# Forced refresh
# =========================================================================

class GatedPriceTransport:
    """Holds underlying price requests until released; tracks overlap."""

    def __init__(self, polygon):
        self.polygon = polygon
        self.gate = asyncio.Event()
        self.started = 0
        self.in_flight = 0
        self.peak = 0

    async def handler(self, request):
        if request.url.path == PRICE_PATH:
            self.started += 1
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
            try:
                await self.gate.wait()
            finally:
                self.in_flight -= 1
        return self.polygon.handler(request)


class TestRefreshNow:
    async def test_does_not_overlap_running_cycle(self, fake_polygon, manual_sleep, log_bus):
        transport = GatedPriceTransport(fake_polygon)
        client = httpx.AsyncClient(transport=httpx.MockTransport(transport.handler))
        provider = PolygonProvider(api_key="test-key", client=client, base_url="https://api.polygon.test")
        service = MarketDataService(
            provider=provider, log_bus=log_bus, sleep=manual_sleep, clock=lambda: NOW
        )
        try:
            listener = Recorder()
            service.subscribe("SPY", listener)
            await settle()
            forced = asyncio.ensure_future(service.refresh_now())
            await settle()
            # The forced cycle waits behind the scheduled one
            assert transport.started == 1

            transport.gate.set()
            await forced
            assert transport.peak == 1
            assert transport.started == 2
            assert len(listener.received) == 2
        finally:
            await service.close()
            await client.aclose()
            await settle()

    async def test_without_active_ticker_is_noop(self, service, fake_polygon):
        await service.refresh_now()
        assert fake_polygon.requests == []
