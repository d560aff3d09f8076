"""
Business logic calculations for CSP yield validation
"""
from typing import Optional, Sequence

from config import CONTRACT_MULTIPLIER, DAYS_PER_YEAR
from market_data import ExpirationDate, OptionContract, PartialQuote
from models import TradeCalculation


class CSPCalculator:
    """Strike selection, collateral, credit and yield for a cash-secured put"""

    @staticmethod
    def target_strike(current_price: float, target_discount: float) -> float:
        """Price the user is willing to buy at: current price less the discount"""
        return current_price * (1 - target_discount / 100)

    @staticmethod
    def select_nearest_contract(
        contracts: Sequence[OptionContract], target_strike: float
    ) -> Optional[OptionContract]:
        """
        Contract whose strike is closest to target_strike.

        The list is not assumed sorted. On equal distance the contract that
        appears first wins.
        """
        best = None
        best_distance = None
        for contract in contracts:
            distance = abs(contract.strike - target_strike)
            if best is None or distance < best_distance:
                best = contract
                best_distance = distance
        return best

    @staticmethod
    def required_total_credit(strike: float, target_apy: float, dte: int) -> float:
        """Premium (in dollars per contract) needed to hit target_apy"""
        collateral = strike * CONTRACT_MULTIPLIER
        return collateral * (target_apy / 100) * (dte / DAYS_PER_YEAR)

    @staticmethod
    def select_premium(option: OptionContract) -> float:
        """
        Per-share premium: bid, else last, else 0.
        A zero bid counts as missing, same as None.
        """
        return option.bid or option.last or 0.0

    @staticmethod
    def annualized_yield(total_credit: float, collateral: float, dte: int) -> float:
        """APY in percent; 0 for same-day expirations instead of infinity"""
        if dte <= 0 or collateral <= 0:
            return 0.0
        return (total_credit / collateral) * (DAYS_PER_YEAR / dte) * 100

    @staticmethod
    def calculate(
        current_price: float,
        target_discount: float,
        target_apy: float,
        expiration: Optional[ExpirationDate],
        quote: Optional[PartialQuote] = None,
    ) -> Optional[TradeCalculation]:
        """
        Full CSP check for one expiration.

        Returns None when nothing is selected or the expiration has no
        contracts. The quote is merged into a copy of the chosen contract;
        the chain itself is left untouched.
        """
        if expiration is None or not expiration.strikes:
            return None

        target = CSPCalculator.target_strike(current_price, target_discount)
        closest = CSPCalculator.select_nearest_contract(expiration.strikes, target)

        dte = expiration.days_to_expiration
        strike = closest.strike
        collateral = strike * CONTRACT_MULTIPLIER
        required_total_credit = CSPCalculator.required_total_credit(strike, target_apy, dte)

        option = closest.with_quote(quote)
        premium = CSPCalculator.select_premium(option)
        actual_total_credit = premium * CONTRACT_MULTIPLIER

        return TradeCalculation(
            target_strike=target,
            calculated_strike=strike,
            collateral=collateral,
            dte=dte,
            required_total_credit=required_total_credit,
            actual_total_credit=actual_total_credit,
            actual_apy=CSPCalculator.annualized_yield(actual_total_credit, collateral, dte),
            net_purchase_price=strike - premium,
            # Zero credit never meets a target, even a zero one
            is_target_met=actual_total_credit >= required_total_credit and actual_total_credit > 0,
            actual_premium_per_share=premium,
            option=option,
        )
