"""
CSP Validator Pro - Streamlit Application
Validates whether a cash-secured put meets a yield target using live chain data
"""
import asyncio
import logging
from typing import Optional

import pandas as pd
import streamlit as st

# Page config must be first Streamlit command
st.set_page_config(
    page_title="CSP Validator Pro",
    page_icon="📉",
    layout="wide",
    initial_sidebar_state="expanded"
)

from calculations import CSPCalculator
from config import (
    APP_NAME,
    DEFAULT_TARGET_APY,
    DEFAULT_TARGET_DISCOUNT,
    DEFAULT_TICKER,
    LOG_LEVEL,
    MAX_LOG_ENTRIES,
    SUPPORTED_TICKERS,
)
from market_data import EventLogBus, MarketData, PartialQuote, normalize_ticker
from market_data.config import POLL_INTERVAL_SECONDS
from market_data.log_bus import ERROR_MARKER
from market_data.providers.polygon_provider import PolygonProvider
from market_data.quotes import QuoteWaterfallFetcher
from market_data.synchronizer import MetadataSynchronizer
from models import TradeCalculation, TradeInputs, TradeInputValidator
from risk_insight import analyze_trade_risk

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


# ============================================================
# MARKET DATA
# ============================================================
@st.cache_resource
def get_log_bus() -> EventLogBus:
    """One request monitor per server process"""
    return EventLogBus(max_entries=MAX_LOG_ENTRIES).attach()


async def _sync_once(ticker: str) -> Optional[MarketData]:
    provider = PolygonProvider()
    try:
        return await MetadataSynchronizer(provider).try_sync(ticker)
    finally:
        await provider.aclose()


async def _quote_once(contract_symbol: str) -> PartialQuote:
    provider = PolygonProvider()
    try:
        return await QuoteWaterfallFetcher(provider).fetch_contract_quote(contract_symbol)
    finally:
        await provider.aclose()


@st.cache_data(ttl=POLL_INTERVAL_SECONDS, show_spinner=False)
def load_market_data(ticker: str) -> Optional[MarketData]:
    """Metadata snapshot, refreshed at most once per polling interval"""
    return asyncio.run(_sync_once(ticker))


@st.cache_data(ttl=POLL_INTERVAL_SECONDS, show_spinner=False)
def load_quote(contract_symbol: str) -> PartialQuote:
    return asyncio.run(_quote_once(contract_symbol))


def refresh_data():
    """Force a new metadata sync on the next run"""
    st.cache_data.clear()
    st.rerun()


# ============================================================
# SESSION STATE
# ============================================================
def init_session_state():
    if 'inputs' not in st.session_state:
        st.session_state.inputs = TradeInputs(
            ticker=DEFAULT_TICKER,
            target_apy=DEFAULT_TARGET_APY,
            target_discount=DEFAULT_TARGET_DISCOUNT,
        )
    if 'last_market_data' not in st.session_state:
        st.session_state.last_market_data = None
    if 'risk_note' not in st.session_state:
        st.session_state.risk_note = None


def current_market_data(ticker: str) -> Optional[MarketData]:
    """Latest snapshot; a failed sync keeps the previous one on screen"""
    snapshot = load_market_data(ticker)
    if snapshot is not None:
        st.session_state.last_market_data = snapshot
        return snapshot
    previous = st.session_state.last_market_data
    if previous is not None and previous.ticker == ticker:
        return previous
    return None


def latest_error(entries) -> Optional[str]:
    for entry in reversed(entries):
        if ERROR_MARKER in entry:
            return entry.split(f"{ERROR_MARKER} ", 1)[-1].strip() or "Sync Error"
        if entry.endswith("Metadata sync complete."):
            return None
    return None


# ============================================================
# SIDEBAR
# ============================================================
def render_sidebar() -> TradeInputs:
    inputs: TradeInputs = st.session_state.inputs

    with st.sidebar:
        st.header("🎯 Trade Inputs")

        options = list(SUPPORTED_TICKERS)
        if inputs.ticker not in options:
            options.append(inputs.ticker)
        picked = st.selectbox("Ticker", options, index=options.index(inputs.ticker))
        custom = st.text_input("Other ticker", value="", placeholder="e.g. MSFT")
        ticker = normalize_ticker(custom) if custom.strip() else picked

        target_apy = st.number_input(
            "Target APY (%)", min_value=0.0, max_value=500.0,
            value=float(inputs.target_apy), step=1.0
        )
        target_discount = st.number_input(
            "Target discount (%)", min_value=0.0, max_value=99.0,
            value=float(inputs.target_discount), step=0.5,
            help="How far below the current price the strike should be"
        )

        if st.button("🔄 Refresh market data", use_container_width=True):
            refresh_data()

    if ticker != inputs.ticker:
        # Expirations of the old chain mean nothing for the new ticker
        inputs = inputs.with_ticker(ticker)
        st.session_state.risk_note = None
    inputs = TradeInputs(
        ticker=inputs.ticker,
        target_apy=target_apy,
        target_discount=target_discount,
        selected_date=inputs.selected_date,
    )
    st.session_state.inputs = inputs
    return inputs


# ============================================================
# MAIN PANELS
# ============================================================
def render_header(inputs: TradeInputs, market_data: Optional[MarketData], error_msg: Optional[str]):
    col1, col2, col3 = st.columns([3, 1, 1])
    with col1:
        st.title(APP_NAME)
        st.caption(
            "Falls back to the previous close when live bids are restricted, "
            "so free-tier keys still get a usable premium."
        )
    with col2:
        price = f"${market_data.current_price:,.2f}" if market_data else "SCANNING..."
        st.metric(inputs.ticker, price)
    with col3:
        st.metric("Status", "SYNC ERROR" if error_msg else "DATA SYNCED")

    if error_msg:
        st.error(f"⚠️ {error_msg}")


def render_expiration_selector(inputs: TradeInputs, market_data: MarketData) -> TradeInputs:
    if not market_data.chain:
        st.info("No open put expirations for this ticker.")
        return inputs

    labels = {e.date: f"{e.date}  ({e.days_to_expiration} DTE)" for e in market_data.chain}
    dates = list(labels)
    index = dates.index(inputs.selected_date) if inputs.selected_date in labels else None
    selected = st.selectbox(
        "Expiration", dates, index=index,
        format_func=lambda d: labels[d], placeholder="Select an expiration"
    )
    if selected != inputs.selected_date:
        inputs = inputs.with_selected_date(selected)
        st.session_state.inputs = inputs
        st.session_state.risk_note = None
    return inputs


def render_results(inputs: TradeInputs, calculation: Optional[TradeCalculation]):
    if calculation is None:
        st.info("Select an expiration to validate the trade.")
        return

    if calculation.is_target_met:
        st.success(f"✅ Target met — {calculation.actual_apy:.2f}% APY vs {inputs.target_apy:g}% target")
    else:
        st.warning(
            f"❌ Target missed — {calculation.actual_apy:.2f}% APY vs {inputs.target_apy:g}% target "
            f"(short ${calculation.credit_shortfall:,.2f})"
        )

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Strike", f"${calculation.calculated_strike:,.2f}",
                help=f"Nearest to target ${calculation.target_strike:,.2f}")
    col2.metric("Collateral", f"${calculation.collateral:,.0f}")
    col3.metric("DTE", calculation.dte)
    col4.metric("Net purchase price", f"${calculation.net_purchase_price:,.2f}")

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Premium / share", f"${calculation.actual_premium_per_share:,.2f}")
    col2.metric("Actual credit", f"${calculation.actual_total_credit:,.2f}")
    col3.metric("Required credit", f"${calculation.required_total_credit:,.2f}")
    col4.metric("Actual APY", f"{calculation.actual_apy:.2f}%")

    option = calculation.option
    st.caption(
        f"Contract {option.contract_symbol} — bid {option.bid if option.bid is not None else 'N/A'}, "
        f"ask {option.ask if option.ask is not None else 'N/A'}, "
        f"last {option.last if option.last is not None else 'N/A'}"
    )


def render_chain_table(market_data: MarketData, inputs: TradeInputs, calculation: Optional[TradeCalculation]):
    expiration = market_data.get_expiration(inputs.selected_date)
    if expiration is None:
        return
    df = pd.DataFrame(
        [{"Strike": c.strike, "Contract": c.contract_symbol} for c in expiration.strikes]
    )
    if df.empty:
        return
    df = df.sort_values("Strike").reset_index(drop=True)
    if calculation is not None:
        df["Selected"] = df["Contract"] == calculation.option.contract_symbol
    with st.expander(f"📋 Put chain for {expiration.date} ({len(df)} strikes)", expanded=False):
        st.dataframe(df, use_container_width=True, hide_index=True)


def render_risk_insight(inputs: TradeInputs, calculation: TradeCalculation, current_price: float):
    st.subheader("🤖 Risk insight")
    if st.button("Analyze trade risk"):
        with st.spinner("Asking Gemini..."):
            st.session_state.risk_note = analyze_trade_risk(inputs, calculation, current_price)
    if st.session_state.risk_note:
        st.markdown(st.session_state.risk_note)


def render_request_monitor(entries):
    has_errors = any(ERROR_MARKER in e for e in entries)
    title = "🔴 Network Request Monitor" if has_errors else "🟢 Network Request Monitor"
    with st.expander(title, expanded=False):
        if not entries:
            st.caption("No activity yet.")
        st.code("\n".join(entries), language=None)


# ============================================================
# MAIN
# ============================================================
def main():
    init_session_state()
    log_bus = get_log_bus()

    inputs = render_sidebar()
    header_slot = st.container()
    valid, message = TradeInputValidator.validate_inputs(inputs)
    if not valid:
        st.error(message)
        return

    with st.spinner(f"Syncing {inputs.ticker}..."):
        market_data = current_market_data(inputs.ticker)

    calculation = None
    if market_data is not None:
        inputs = render_expiration_selector(inputs, market_data)
        expiration = market_data.get_expiration(inputs.selected_date)
        quote = None
        if expiration is not None and expiration.strikes:
            target = CSPCalculator.target_strike(market_data.current_price, inputs.target_discount)
            contract = CSPCalculator.select_nearest_contract(expiration.strikes, target)
            if contract.contract_symbol:
                with st.spinner("Fetching premium..."):
                    quote = load_quote(contract.contract_symbol)
        calculation = CSPCalculator.calculate(
            market_data.current_price, inputs.target_discount, inputs.target_apy, expiration, quote
        )

    entries = log_bus.entries
    with header_slot:
        render_header(inputs, market_data, latest_error(entries))

    if market_data is not None:
        render_results(inputs, calculation)
        render_chain_table(market_data, inputs, calculation)
        if calculation is not None:
            render_risk_insight(inputs, calculation, market_data.current_price)

    render_request_monitor(entries)


main()
