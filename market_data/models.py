"""
Data models for the Market Data Service.
Pure Python dataclasses — no Streamlit, no UI dependencies.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional


@dataclass(frozen=True)
class PartialQuote:
    """
    Result of a single waterfall quote fetch.
    source is "nbbo", "prev_close", or None when nothing was fetched.
    """
    bid: Optional[float] = None
    ask: Optional[float] = None
    last: Optional[float] = None
    source: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.source is None


@dataclass(frozen=True)
class OptionContract:
    """
    One put contract in the chain.
    Quote fields stay None until a quote was fetched for this contract.
    """
    strike: float
    contract_symbol: str       # e.g. "O:SPY251121P00425000"
    bid: Optional[float] = None
    ask: Optional[float] = None
    last: Optional[float] = None
    volume: Optional[float] = None
    open_interest: Optional[float] = None
    delta: Optional[float] = None
    theta: Optional[float] = None

    def with_quote(self, quote: Optional[PartialQuote]) -> "OptionContract":
        """Copy of this contract with bid/ask/last taken from the quote."""
        if quote is None:
            return replace(self, bid=None, ask=None, last=None)
        return replace(self, bid=quote.bid, ask=quote.ask, last=quote.last)


@dataclass
class ExpirationDate:
    """All put contracts sharing one expiration date."""
    date: str                  # ISO "YYYY-MM-DD"
    days_to_expiration: int
    strikes: List[OptionContract] = field(default_factory=list)


@dataclass(frozen=True)
class MarketData:
    """
    One published snapshot for a ticker.
    Replaced wholesale on every successful sync, never edited.
    """
    ticker: str
    current_price: float
    last_updated: datetime
    chain: List[ExpirationDate]

    def get_expiration(self, date: Optional[str]) -> Optional[ExpirationDate]:
        if not date:
            return None
        for expiration in self.chain:
            if expiration.date == date:
                return expiration
        return None

    @property
    def expiration_dates(self) -> List[str]:
        return [e.date for e in self.chain]
