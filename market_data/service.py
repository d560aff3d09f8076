"""
MarketDataService — subscription registry and polling scheduler.

Public methods:
  subscribe(ticker, listener)       → unsubscribe()   MarketData pushed to listener
  subscribe_logs(callback)          → unsubscribe()   timestamped log lines
  fetch_contract_quote(symbol)      → PartialQuote     waterfall NBBO → prev close
  refresh_now()                     → force one metadata sync of the active ticker

Only one ticker is polled at a time. Must be used from inside a running
asyncio event loop; subscribe() schedules the polling task on it.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

from .config import POLL_INTERVAL_SECONDS
from .log_bus import EventLogBus, LogCallback
from .models import MarketData, PartialQuote
from .providers.polygon_provider import PolygonProvider
from .quotes import QuoteWaterfallFetcher
from .synchronizer import Clock, MetadataSynchronizer, utc_now

logger = logging.getLogger(__name__)

MarketCallback = Callable[[MarketData], None]
SleepFn = Callable[[float], Awaitable[None]]


def normalize_ticker(ticker: str) -> str:
    return ticker.strip().upper()


class ActiveSubscription:
    """
    The single polled ticker: refresh immediately, then every interval,
    until stop(). Cycles never overlap because the loop awaits each one.
    """

    def __init__(
        self,
        ticker: str,
        refresh: Callable[[str], Awaitable[None]],
        interval: float,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.ticker = ticker
        self._refresh = refresh
        self._interval = interval
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    def start(self) -> "ActiveSubscription":
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name=f"poll-{self.ticker}")
        return self

    async def _run(self) -> None:
        while True:
            await self._refresh(self.ticker)
            await self._sleep(self._interval)

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()


class MarketDataService:
    """
    Market data for the CSP validator.

    Instantiate once and share it. Collaborators are injectable so tests can
    supply fake HTTP, a fixed clock and a manual sleep.
    """

    def __init__(
        self,
        provider: Optional[PolygonProvider] = None,
        synchronizer: Optional[MetadataSynchronizer] = None,
        quote_fetcher: Optional[QuoteWaterfallFetcher] = None,
        log_bus: Optional[EventLogBus] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        sleep: SleepFn = asyncio.sleep,
        clock: Clock = utc_now,
    ):
        self._provider = provider or PolygonProvider()
        self._synchronizer = synchronizer or MetadataSynchronizer(self._provider, clock)
        self._quotes = quote_fetcher or QuoteWaterfallFetcher(self._provider)
        self._owns_log_bus = log_bus is None
        self.log_bus = log_bus or EventLogBus().attach()
        self._poll_interval = poll_interval
        self._sleep = sleep

        self._listeners: Dict[str, Set[MarketCallback]] = {}
        self._active: Optional[ActiveSubscription] = None
        self._last_market_data: Optional[MarketData] = None
        # One metadata cycle in flight at a time, scheduled or forced
        self._sync_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def active_ticker(self) -> Optional[str]:
        return self._active.ticker if self._active is not None else None

    @property
    def is_polling(self) -> bool:
        return self._active is not None and self._active.running

    @property
    def last_market_data(self) -> Optional[MarketData]:
        return self._last_market_data

    @property
    def subscribed_tickers(self) -> Set[str]:
        return set(self._listeners)

    def subscribe(self, ticker: str, listener: MarketCallback) -> Callable[[], None]:
        """
        Register a listener for a ticker.

        A different ticker than the active one takes over polling (first
        sync fires right away). The same active ticker with a cached
        snapshot gets that snapshot delivered now, without a network call.
        """
        symbol = normalize_ticker(ticker)
        self._listeners.setdefault(symbol, set()).add(listener)

        if self.active_ticker != symbol:
            self._activate(symbol)
        elif self._last_market_data is not None:
            self._deliver(listener, self._last_market_data)

        def unsubscribe() -> None:
            listeners = self._listeners.get(symbol)
            if listeners is None:
                return
            listeners.discard(listener)
            if not listeners:
                del self._listeners[symbol]
                if not self._listeners:
                    self._stop_polling()

        return unsubscribe

    def subscribe_logs(self, callback: LogCallback) -> Callable[[], None]:
        return self.log_bus.subscribe(callback)

    async def fetch_contract_quote(self, contract_symbol: str) -> PartialQuote:
        return await self._quotes.fetch_contract_quote(contract_symbol)

    async def refresh_now(self) -> None:
        """
        Run one metadata sync for the active ticker outside the schedule.
        Waits for a cycle that is already running instead of overlapping it.
        """
        if self.active_ticker is not None:
            await self._refresh(self.active_ticker)

    async def close(self) -> None:
        self._stop_polling()
        self._listeners.clear()
        await self._provider.aclose()
        if self._owns_log_bus:
            self.log_bus.detach()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _activate(self, ticker: str) -> None:
        if self._active is not None:
            self._active.stop()
        # A snapshot of the previous ticker must never reach new listeners
        self._last_market_data = None
        self._active = ActiveSubscription(
            ticker, self._refresh, self._poll_interval, self._sleep
        ).start()
        logger.debug(f"Polling {ticker} every {self._poll_interval:g}s")

    def _stop_polling(self) -> None:
        if self._active is not None:
            self._active.stop()
            logger.debug(f"Stopped polling {self._active.ticker}")
        self._active = None

    async def _refresh(self, ticker: str) -> None:
        async with self._sync_lock:
            data = await self._synchronizer.try_sync(ticker)
        if data is None:
            # Previous snapshot stays authoritative until the next tick
            return

        if self.active_ticker != ticker:
            logger.debug(f"Dropping snapshot for superseded ticker {ticker}")
            return

        self._last_market_data = data
        for listener in list(self._listeners.get(ticker, ())):
            self._deliver(listener, data)

    @staticmethod
    def _deliver(listener: MarketCallback, data: MarketData) -> None:
        try:
            listener(data)
        except Exception as exc:
            logger.warning(f"Market data listener failed for {data.ticker}: {exc}")
