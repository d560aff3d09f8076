"""
Gemini risk commentary for a CSP candidate
Single prompt in, short analyst note out
"""
import logging
from typing import Optional

from config import GEMINI_API_KEY, GEMINI_MODEL
from models import TradeCalculation, TradeInputs

logger = logging.getLogger(__name__)

# Conditional import: the validator works without the AI panel
try:
    import google.genai as genai
    GEMINI_AVAILABLE = True
except ImportError:
    GEMINI_AVAILABLE = False

NOT_CONFIGURED_MESSAGE = "Gemini API Key not configured. Unable to fetch analysis."
EMPTY_RESPONSE_MESSAGE = "No analysis generated."
FAILURE_MESSAGE = "Unable to generate analysis at this time."


def build_risk_prompt(inputs: TradeInputs, calculation: TradeCalculation, current_price: float) -> str:
    """Analyst prompt built from the trade calculation"""
    target_status = "Target Met." if calculation.is_target_met else "Target Missed."
    return f"""
You are a senior financial risk analyst. Provide a concise risk assessment (max 100 words) for the following Cash-Secured Put (CSP) trade.

Ticker: {inputs.ticker}
Current Price: ${current_price:.2f}

Trade Details:
- Strike Price: ${calculation.calculated_strike:g}
- Expiration (DTE): {calculation.dte} days
- Target Discount: {inputs.target_discount:g}%
- Collateral: ${calculation.collateral:,.2f}
- Premium Received: ${calculation.actual_total_credit:,.2f}
- Annualized Return (APY): {calculation.actual_apy:.2f}%

Target APY was {inputs.target_apy:g}%. {target_status}

Assess the downside risk, the quality of the premium relative to the risk, and the buffer against a drop. Be direct.
""".strip()


class RiskAnalyst:
    """Wraps the google-genai client for one-shot trade commentary"""

    def __init__(self, api_key: Optional[str] = None, model_name: str = GEMINI_MODEL, client=None):
        self.api_key = GEMINI_API_KEY if api_key is None else api_key
        self.model_name = model_name
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self._client is not None or (GEMINI_AVAILABLE and bool(self.api_key))

    def _get_client(self):
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def analyze(self, inputs: TradeInputs, calculation: TradeCalculation, current_price: float) -> str:
        if not self.is_configured:
            return NOT_CONFIGURED_MESSAGE

        prompt = build_risk_prompt(inputs, calculation, current_price)
        try:
            response = self._get_client().models.generate_content(
                model=self.model_name,
                contents=prompt,
            )
        except Exception as e:
            logger.error(f"Gemini analysis error: {e}")
            return FAILURE_MESSAGE

        return response.text or EMPTY_RESPONSE_MESSAGE


def analyze_trade_risk(inputs: TradeInputs, calculation: TradeCalculation, current_price: float) -> str:
    """Risk note using the configured Gemini key"""
    return RiskAnalyst().analyze(inputs, calculation, current_price)
