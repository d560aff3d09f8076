"""
Error taxonomy for the Market Data Service.
None of these escape the service: they are caught, logged and reported
through the log bus.
"""


class MarketDataError(Exception):
    """Base class for market data failures."""


class NetworkError(MarketDataError):
    """Transport or HTTP failure on a provider call."""


class DataAbsent(MarketDataError):
    """Provider answered but the price or contract list is missing."""


class QuoteUnavailable(MarketDataError):
    """Neither NBBO nor previous close yielded a premium."""
