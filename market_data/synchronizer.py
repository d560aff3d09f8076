"""
Metadata synchronizer — builds one MarketData snapshot per call.

Steps: underlying previous close → put contract reference list →
expiration chain (DTE relative to sync time, expired dates dropped,
ascending by date) with every contract's quote fields left unknown.
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import DataAbsent
from .models import ExpirationDate, MarketData, OptionContract
from .providers.polygon_provider import PolygonProvider

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_SECONDS_PER_DAY = 24 * 60 * 60


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def days_to_expiration(expiration_date: str, now: datetime) -> int:
    """
    Whole days from now until midnight UTC of the expiration date, rounded up.
    Negative once that midnight has passed by a full day.
    """
    expiry = datetime.strptime(expiration_date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return math.ceil((expiry - now).total_seconds() / _SECONDS_PER_DAY)


def build_chain(contracts: Iterable[Dict[str, Any]], now: datetime) -> List[ExpirationDate]:
    """
    Group reference contracts into expirations.

    The first contract seen for a date fixes its DTE; dates with negative
    DTE are dropped entirely. Strike order inside a date follows the input.
    """
    contracts = list(contracts)
    dte_by_date: Dict[str, int] = {}
    for item in contracts:
        expiration = item.get("expiration_date")
        if not expiration or expiration in dte_by_date:
            continue
        dte = days_to_expiration(expiration, now)
        if dte >= 0:
            dte_by_date[expiration] = dte

    # ISO strings sort chronologically
    chain = [
        ExpirationDate(date=date, days_to_expiration=dte)
        for date, dte in sorted(dte_by_date.items())
    ]
    by_date = {expiration.date: expiration for expiration in chain}

    for item in contracts:
        expiration = by_date.get(item.get("expiration_date"))
        if expiration is None:
            continue
        expiration.strikes.append(
            OptionContract(
                strike=float(item["strike_price"]),
                contract_symbol=item.get("ticker") or "",
            )
        )
    return chain


class MetadataSynchronizer:
    """
    Produces MarketData for a ticker. Raises MarketDataError subclasses on
    failure; the scheduler decides what to do with them.
    """

    def __init__(self, provider: PolygonProvider, clock: Clock = utc_now):
        self._provider = provider
        self._clock = clock

    async def sync(self, ticker: str) -> MarketData:
        logger.info(f"Syncing underlying price for {ticker}...")
        current_price = await self._provider.get_previous_close(ticker)
        # A zero close cannot be told apart from "not found"
        if not current_price:
            raise DataAbsent("Could not find underlying price.")

        logger.info(f"Mapping expiration dates for {ticker}...")
        contracts = await self._provider.get_put_contracts(ticker)
        if not contracts:
            raise DataAbsent("No option contracts found.")

        now = self._clock()
        chain = build_chain(contracts, now)
        logger.debug(f"{ticker}: {len(contracts)} contracts across {len(chain)} expirations")

        return MarketData(
            ticker=ticker,
            current_price=current_price,
            last_updated=now,
            chain=chain,
        )

    async def try_sync(self, ticker: str) -> Optional[MarketData]:
        """One sync cycle that reports failures to the log instead of raising"""
        try:
            data = await self.sync(ticker)
        except Exception as exc:
            logger.error(f"Metadata sync failed {exc}")
            return None
        logger.info("Metadata sync complete.")
        return data
