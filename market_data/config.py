"""
Configuration for the Market Data Service.
Reads the Polygon API key and polling settings from .env in the project root.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

_env_path = Path(__file__).parent.parent / ".env"
load_dotenv(_env_path)

# Polygon.io REST credentials (free tier works: NBBO falls back to prev close)
POLYGON_API_KEY: str = os.getenv("POLYGON_API_KEY", "").strip()
POLYGON_BASE_URL: str = os.getenv("POLYGON_BASE_URL", "https://api.polygon.io")

# Metadata refresh cadence in seconds
POLL_INTERVAL_SECONDS: float = float(os.getenv("MARKET_DATA_POLL_INTERVAL", "60"))

# Per-request HTTP timeout in seconds
REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("MARKET_DATA_TIMEOUT", "10"))

# Max contracts requested from the reference endpoint
CONTRACT_LIMIT: int = int(os.getenv("MARKET_DATA_CONTRACT_LIMIT", "1000"))
