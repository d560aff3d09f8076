"""
Polygon provider — underlying price, put contract reference list and option quotes.
Source: Polygon.io REST API (api key as query parameter).
Returns raw payload values; deciding what counts as "absent" is left to callers.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..config import (
    CONTRACT_LIMIT,
    POLYGON_API_KEY,
    POLYGON_BASE_URL,
    REQUEST_TIMEOUT_SECONDS,
)
from ..errors import NetworkError

logger = logging.getLogger(__name__)


def _price(value: Any, field: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise NetworkError(f"malformed price field {field}={value!r}") from exc


class PolygonProvider:
    """
    Thin async wrapper over the four Polygon endpoints used by the service.
    Pass an httpx.AsyncClient to share connections or to fake HTTP in tests.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = POLYGON_BASE_URL,
        contract_limit: int = CONTRACT_LIMIT,
    ):
        self.api_key = POLYGON_API_KEY if api_key is None else api_key
        self._client = client if client is not None else httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS)
        self._owns_client = client is None
        self._base_url = base_url.rstrip("/")
        self._contract_limit = contract_limit
        if not self.api_key:
            logger.warning(
                "Polygon: POLYGON_API_KEY not configured, requests will be rejected. "
                "Add POLYGON_API_KEY to .env to enable."
            )

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        query = dict(params or {})
        query["apiKey"] = self.api_key
        url = f"{self._base_url}{path}"

        try:
            response = await self._client.get(url, params=query)
        except httpx.HTTPError as exc:
            raise NetworkError(f"request to {path} failed: {exc}") from exc

        if response.status_code != 200:
            raise NetworkError(f"{path} returned HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as exc:
            raise NetworkError(f"{path} returned invalid JSON") from exc

    async def get_previous_close(self, ticker: str) -> Optional[float]:
        """
        Most recent settled close for a stock or option ticker.
        None when the aggregate has no results.
        """
        payload = await self._get_json(
            f"/v2/aggs/ticker/{ticker}/prev", {"adjusted": "true"}
        )
        results = payload.get("results") or []
        if not results:
            return None
        close = results[0].get("c")
        return _price(close, "c") if close is not None else None

    async def get_put_contracts(self, underlying: str) -> Optional[List[Dict[str, Any]]]:
        """
        Open, non-expired put contracts for the underlying.
        Each item carries expiration_date, strike_price and ticker.
        None when the payload has no results key.
        """
        payload = await self._get_json(
            "/v3/reference/options/contracts",
            {
                "underlying_ticker": underlying,
                "contract_type": "put",
                "expired": "false",
                "limit": self._contract_limit,
            },
        )
        return payload.get("results")

    async def get_last_nbbo(self, option_ticker: str) -> Dict[str, float]:
        """
        Real-time best bid/offer. Missing prices come back as 0,
        which the waterfall treats as "unavailable".
        """
        payload = await self._get_json(f"/v2/last/nbbo/{option_ticker}")
        results = payload.get("results") or {}
        return {
            "bid": _price(results.get("p") or 0, "p"),
            "ask": _price(results.get("P") or 0, "P"),
        }

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
