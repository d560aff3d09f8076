"""
Data models and validation for CSP trade checks
"""
from dataclasses import dataclass, replace
from typing import Optional

from market_data import OptionContract, normalize_ticker


@dataclass(frozen=True)
class TradeInputs:
    """What the user is asking for"""
    ticker: str
    target_apy: float  # percent, e.g. 15
    target_discount: float  # percent below current price, e.g. 5
    selected_date: Optional[str] = None  # ISO expiration date

    def with_ticker(self, ticker: str) -> "TradeInputs":
        """New inputs for another ticker; the old expiration no longer applies"""
        return replace(self, ticker=normalize_ticker(ticker), selected_date=None)

    def with_selected_date(self, selected_date: Optional[str]) -> "TradeInputs":
        return replace(self, selected_date=selected_date)


@dataclass(frozen=True)
class TradeCalculation:
    """Derived result for one CSP candidate. Recomputed, never edited."""
    target_strike: float
    calculated_strike: float
    collateral: float
    dte: int
    required_total_credit: float
    actual_total_credit: float  # based on the overlaid quote
    actual_apy: float
    net_purchase_price: float
    is_target_met: bool
    actual_premium_per_share: float
    option: OptionContract

    @property
    def credit_shortfall(self) -> float:
        """Dollars of premium missing to reach the target (0 when met)"""
        return max(self.required_total_credit - self.actual_total_credit, 0.0)


class TradeInputValidator:
    """Validates user inputs before they reach the calculator"""

    @staticmethod
    def validate_inputs(inputs: TradeInputs) -> tuple[bool, str]:
        if not inputs.ticker or not inputs.ticker.strip():
            return False, "Ticker is required"

        if inputs.target_apy < 0:
            return False, f"Target APY must be zero or positive (got {inputs.target_apy})"

        if not 0 <= inputs.target_discount < 100:
            return False, f"Target discount must be between 0% and 100% (got {inputs.target_discount})"

        return True, "OK"
