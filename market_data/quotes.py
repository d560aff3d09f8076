"""
Waterfall quote fetch for a single option contract.

  1. NBBO (real-time bid/ask)
  2. Previous close of the option itself (free tiers restrict NBBO)

Stateless: safe to run concurrently for different contracts.
"""
import logging

from .errors import NetworkError, QuoteUnavailable
from .models import PartialQuote
from .providers.polygon_provider import PolygonProvider

logger = logging.getLogger(__name__)


class QuoteWaterfallFetcher:
    """Best-effort premium for one contract. Never raises."""

    def __init__(self, provider: PolygonProvider):
        self._provider = provider

    async def fetch_contract_quote(self, contract_symbol: str) -> PartialQuote:
        try:
            return await self._fetch(contract_symbol)
        except Exception as exc:
            logger.error(f"Quote fetch failed for {contract_symbol} {exc}")
            return PartialQuote()

    async def _fetch(self, contract_symbol: str) -> PartialQuote:
        logger.info(f"Attempting NBBO quote for {contract_symbol}...")
        try:
            nbbo = await self._provider.get_last_nbbo(contract_symbol)
        except NetworkError as exc:
            # Restricted plans answer 403 here; same as an empty book
            logger.warning(f"NBBO request failed for {contract_symbol}: {exc}")
            nbbo = {"bid": 0.0, "ask": 0.0}

        bid = nbbo.get("bid") or 0.0
        if bid != 0:
            # last mirrors the bid, not the ask: premium selection keys off it
            return PartialQuote(bid=bid, ask=nbbo.get("ask"), last=bid, source="nbbo")

        logger.info(f"NBBO restricted/zero. Falling back to Prev Close for {contract_symbol}...")
        close = await self._provider.get_previous_close(contract_symbol)
        if close is None:
            raise QuoteUnavailable("no NBBO bid and no previous close")

        logger.info(f"Found Prev Close: ${close}")
        return PartialQuote(bid=close, ask=close, last=close, source="prev_close")
