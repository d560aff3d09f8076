"""
CSP Validator Market Data Service.

Usage:
    from market_data import MarketDataService
    service = MarketDataService()

    # Push snapshots for one ticker (polled every 60s while subscribed)
    unsubscribe = service.subscribe("SPY", on_market_data)

    # Premium for one contract: NBBO first, previous close as fallback
    quote = await service.fetch_contract_quote("O:SPY251121P00425000")

    # Timestamped activity lines for the request monitor
    stop_logs = service.subscribe_logs(print)
"""
from .errors import DataAbsent, MarketDataError, NetworkError, QuoteUnavailable
from .log_bus import EventLogBus
from .models import ExpirationDate, MarketData, OptionContract, PartialQuote
from .service import MarketDataService, normalize_ticker

__all__ = [
    "DataAbsent",
    "EventLogBus",
    "ExpirationDate",
    "MarketData",
    "MarketDataError",
    "MarketDataService",
    "NetworkError",
    "OptionContract",
    "PartialQuote",
    "QuoteUnavailable",
    "normalize_ticker",
]
