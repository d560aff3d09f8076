"""
Configuration for CSP Validator Pro
"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Paths
BASE_DIR = Path(__file__).parent
load_dotenv(BASE_DIR / ".env")

APP_NAME = "CSP Validator Pro"

# Default trade inputs
DEFAULT_TICKER = "SPY"
DEFAULT_TARGET_APY = 15  # percent
DEFAULT_TARGET_DISCOUNT = 5  # percent below current price

# Tickers offered in the selector (any symbol can still be typed)
SUPPORTED_TICKERS = ["SPY", "QQQ", "IWM", "TSLA", "AAPL", "AMD", "NVDA", "RIVN"]

# Option contract terms
CONTRACT_MULTIPLIER = 100  # shares per contract
DAYS_PER_YEAR = 365

# Gemini risk commentary
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "").strip()
GEMINI_MODEL = "gemini-2.5-flash"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
MAX_LOG_ENTRIES = 100  # request monitor history
