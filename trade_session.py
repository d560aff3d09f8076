"""
Trade session: the consumer side of the market data service.

Holds the user's inputs, the latest snapshot and the quote overlay for the
targeted contract, and re-derives the TradeCalculation from them. Quote
requests carry a generation number so a slow answer for an old selection
can never overwrite the answer for the current one.
"""
import asyncio
import logging
from collections import deque
from dataclasses import replace
from typing import Callable, Deque, List, Optional

from calculations import CSPCalculator
from config import (
    DEFAULT_TARGET_APY,
    DEFAULT_TARGET_DISCOUNT,
    DEFAULT_TICKER,
    MAX_LOG_ENTRIES,
)
from market_data import MarketData, MarketDataService, OptionContract, PartialQuote, normalize_ticker
from market_data.log_bus import ERROR_MARKER
from models import TradeCalculation, TradeInputs

logger = logging.getLogger(__name__)


class TradeSession:
    """
    One user's view of a CSP candidate.

    Call start() from inside the event loop that runs the service, and
    close() when the view goes away.
    """

    def __init__(self, service: MarketDataService, inputs: Optional[TradeInputs] = None):
        self.service = service
        self.inputs = inputs or TradeInputs(
            ticker=DEFAULT_TICKER,
            target_apy=DEFAULT_TARGET_APY,
            target_discount=DEFAULT_TARGET_DISCOUNT,
        )
        self.market_data: Optional[MarketData] = None
        self.error_message: Optional[str] = None
        self.fetching_quote = False
        self._logs: Deque[str] = deque(maxlen=MAX_LOG_ENTRIES)

        self._quote: Optional[PartialQuote] = None
        self._quote_symbol: Optional[str] = None
        self._quote_generation = 0
        self._quote_task: Optional[asyncio.Task] = None

        self._unsubscribe_market: Optional[Callable[[], None]] = None
        self._unsubscribe_logs: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._unsubscribe_logs = self.service.subscribe_logs(self._on_log)
        self._subscribe_ticker()

    def close(self) -> None:
        # Anything still in flight belongs to a view that no longer exists
        self._quote_generation += 1
        if self._quote_task is not None and not self._quote_task.done():
            self._quote_task.cancel()
        if self._unsubscribe_market is not None:
            self._unsubscribe_market()
            self._unsubscribe_market = None
        if self._unsubscribe_logs is not None:
            self._unsubscribe_logs()
            self._unsubscribe_logs = None

    def _subscribe_ticker(self) -> None:
        self._unsubscribe_market = self.service.subscribe(self.inputs.ticker, self._on_market_data)

    # ------------------------------------------------------------------
    # Input changes
    # ------------------------------------------------------------------

    def set_ticker(self, ticker: str) -> None:
        if normalize_ticker(ticker) == self.inputs.ticker:
            return
        self.inputs = self.inputs.with_ticker(ticker)
        self.market_data = None
        self.error_message = None
        self._clear_quote()

        if self._unsubscribe_market is not None:
            self._unsubscribe_market()
        self._subscribe_ticker()

    def select_expiration(self, selected_date: Optional[str]) -> None:
        self.inputs = self.inputs.with_selected_date(selected_date)
        self._request_quote()

    def set_target_discount(self, target_discount: float) -> None:
        self.inputs = replace(self.inputs, target_discount=target_discount)
        self._request_quote()

    def set_target_apy(self, target_apy: float) -> None:
        # APY only moves the required credit; the targeted contract is unchanged
        self.inputs = replace(self.inputs, target_apy=target_apy)

    # ------------------------------------------------------------------
    # Service callbacks
    # ------------------------------------------------------------------

    def _on_market_data(self, data: MarketData) -> None:
        self.market_data = data
        self.error_message = None
        self._request_quote()

    def _on_log(self, entry: str) -> None:
        self._logs.append(entry)
        if ERROR_MARKER in entry:
            self.error_message = entry.split(f"{ERROR_MARKER} ", 1)[-1].strip() or "Sync Error"

    # ------------------------------------------------------------------
    # Quote overlay
    # ------------------------------------------------------------------

    def target_contract(self) -> Optional[OptionContract]:
        """Nearest-strike contract for the current selection, if any"""
        if self.market_data is None:
            return None
        expiration = self.market_data.get_expiration(self.inputs.selected_date)
        if expiration is None or not expiration.strikes:
            return None
        target = CSPCalculator.target_strike(self.market_data.current_price, self.inputs.target_discount)
        return CSPCalculator.select_nearest_contract(expiration.strikes, target)

    def _clear_quote(self) -> None:
        self._quote_generation += 1
        self._quote = None
        self._quote_symbol = None
        self.fetching_quote = False

    def _request_quote(self) -> Optional[asyncio.Task]:
        self._quote_generation += 1
        generation = self._quote_generation

        contract = self.target_contract()
        if contract is None or not contract.contract_symbol:
            self.fetching_quote = False
            return None

        self.fetching_quote = True
        self._quote_task = asyncio.get_running_loop().create_task(
            self._load_quote(contract.contract_symbol, generation)
        )
        return self._quote_task

    async def _load_quote(self, contract_symbol: str, generation: int) -> None:
        quote = await self.service.fetch_contract_quote(contract_symbol)
        if generation != self._quote_generation:
            logger.debug(f"Discarding stale quote for {contract_symbol} (generation {generation})")
            return
        self._quote = quote
        self._quote_symbol = contract_symbol
        self.fetching_quote = False

    async def wait_for_quote(self) -> None:
        """Await the most recent quote request, if one is running"""
        task = self._quote_task
        if task is not None and not task.done():
            await task

    @property
    def active_quote(self) -> Optional[PartialQuote]:
        """Quote overlay, only while it belongs to the targeted contract"""
        contract = self.target_contract()
        if contract is None or contract.contract_symbol != self._quote_symbol:
            return None
        return self._quote

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def calculation(self) -> Optional[TradeCalculation]:
        if self.market_data is None:
            return None
        return CSPCalculator.calculate(
            current_price=self.market_data.current_price,
            target_discount=self.inputs.target_discount,
            target_apy=self.inputs.target_apy,
            expiration=self.market_data.get_expiration(self.inputs.selected_date),
            quote=self.active_quote,
        )

    @property
    def logs(self) -> List[str]:
        return list(self._logs)
